"""
Text diff engine.

compute() turns two texts into an ordered list of DiffOp segments:

    EQUAL + DELETE segments, in order, rebuild the first text
    EQUAL + INSERT segments, in order, rebuild the second text

Two alignment modes:
    ALIGNED   lines are matched across positions (difflib.SequenceMatcher with
              autojunk off). A replaced line that is still similar to its
              counterpart is refined into character-level segments.
    LINEWISE  line i is compared with line i and nothing is re-aligned, so an
              inserted line shows as every following line changing.

A missing trailing newline is a real difference unless
ignore_trailing_newline is set. Bytes are decoded as UTF-8 with U+FFFD for
undecodable sequences; the same input always decodes the same way.

The engine is pure and holds no state between calls.
"""

import re
from dataclasses import dataclass
from difflib import SequenceMatcher

from rundiff.schema import DiffMode, DiffTag

# Replaced lines at least this similar get a character-level diff.
REFINE_THRESHOLD = 0.5

_LINE = re.compile(r"[^\n]*\n|[^\n]+")


@dataclass(frozen=True)
class DiffOp:
    """One diff segment."""

    tag: DiffTag
    text: str

    def to_dict(self) -> dict[str, str]:
        return {"tag": self.tag.value, "text": self.text}


@dataclass(frozen=True)
class BlockMove:
    """
    A block of lines deleted in one place and inserted verbatim elsewhere.

    Attributes:
        text: The moved lines
        delete_index: Index of the DELETE op in the op list
        insert_index: Index of the INSERT op in the op list
    """

    text: str
    delete_index: int
    insert_index: int


def decode(data: bytes | str) -> str:
    """Decode captured bytes for diffing."""
    if isinstance(data, str):
        return data
    return data.decode("utf-8", errors="replace")


def split_lines(text: str) -> list[str]:
    """Split text into lines, each keeping its trailing '\\n'."""
    return _LINE.findall(text)


def strip_trailing_newline(text: str) -> str:
    """Remove one trailing line break ('\\n' or '\\r\\n')."""
    if text.endswith("\r\n"):
        return text[:-2]
    if text.endswith("\n"):
        return text[:-1]
    return text


def compute(
    text_a: bytes | str,
    text_b: bytes | str,
    mode: DiffMode = DiffMode.ALIGNED,
    ignore_trailing_newline: bool = False,
) -> list[DiffOp]:
    """
    Diff two texts.

    Args:
        text_a: Old text
        text_b: New text
        mode: ALIGNED or LINEWISE
        ignore_trailing_newline: Strip one trailing line break from both first

    Returns:
        Ordered DiffOps; adjacent segments never share a tag
    """
    a = decode(text_a)
    b = decode(text_b)
    if ignore_trailing_newline:
        a = strip_trailing_newline(a)
        b = strip_trailing_newline(b)

    lines_a = split_lines(a)
    lines_b = split_lines(b)

    if mode == DiffMode.LINEWISE:
        ops = _linewise(lines_a, lines_b)
    else:
        ops = _aligned(lines_a, lines_b)
    return _coalesce(ops)


def is_identical(
    text_a: bytes | str,
    text_b: bytes | str,
    ignore_trailing_newline: bool = False,
) -> bool:
    """Whether two texts compare equal under the given newline handling."""
    a = decode(text_a)
    b = decode(text_b)
    if ignore_trailing_newline:
        return strip_trailing_newline(a) == strip_trailing_newline(b)
    return a == b


def source_text(ops: list[DiffOp]) -> str:
    """Rebuild the old text from EQUAL and DELETE segments."""
    return "".join(op.text for op in ops if op.tag != DiffTag.INSERT)


def target_text(ops: list[DiffOp]) -> str:
    """Rebuild the new text from EQUAL and INSERT segments."""
    return "".join(op.text for op in ops if op.tag != DiffTag.DELETE)


def detect_moves(ops: list[DiffOp]) -> list[BlockMove]:
    """
    Find deleted line blocks that reappear unchanged as an inserted block.

    Only whole-line blocks count; each insert is paired at most once.
    """
    moves: list[BlockMove] = []
    used: set[int] = set()
    inserts = [
        (i, op.text) for i, op in enumerate(ops)
        if op.tag == DiffTag.INSERT and op.text.endswith("\n")
    ]
    for i, op in enumerate(ops):
        if op.tag != DiffTag.DELETE or not op.text.endswith("\n"):
            continue
        for j, text in inserts:
            if j not in used and text == op.text:
                used.add(j)
                moves.append(BlockMove(text=op.text, delete_index=i, insert_index=j))
                break
    return moves


def changed_line_counts(ops: list[DiffOp]) -> tuple[int, int]:
    """Count (deleted, inserted) lines touched by the diff."""
    deleted = inserted = 0
    for op in ops:
        lines = max(1, op.text.count("\n"))
        if op.tag == DiffTag.DELETE:
            deleted += lines
        elif op.tag == DiffTag.INSERT:
            inserted += lines
    return deleted, inserted


# =============================================================================
# Alignment
# =============================================================================


def _aligned(lines_a: list[str], lines_b: list[str]) -> list[DiffOp]:
    ops: list[DiffOp] = []
    matcher = SequenceMatcher(None, lines_a, lines_b, autojunk=False)
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            ops.append(DiffOp(DiffTag.EQUAL, "".join(lines_a[i1:i2])))
        elif tag == "delete":
            ops.append(DiffOp(DiffTag.DELETE, "".join(lines_a[i1:i2])))
        elif tag == "insert":
            ops.append(DiffOp(DiffTag.INSERT, "".join(lines_b[j1:j2])))
        else:
            ops.extend(_refine_block(lines_a[i1:i2], lines_b[j1:j2]))
    return ops


def _refine_block(old: list[str], new: list[str]) -> list[DiffOp]:
    """Diff a replaced block pairwise, refining similar line pairs by character."""
    ops: list[DiffOp] = []
    for x, y in zip(old, new):
        ops.extend(_refine_line(x, y))
    if len(old) > len(new):
        ops.append(DiffOp(DiffTag.DELETE, "".join(old[len(new):])))
    elif len(new) > len(old):
        ops.append(DiffOp(DiffTag.INSERT, "".join(new[len(old):])))
    return ops


def _refine_line(x: str, y: str) -> list[DiffOp]:
    matcher = SequenceMatcher(None, x, y, autojunk=False)
    if matcher.ratio() < REFINE_THRESHOLD:
        return [DiffOp(DiffTag.DELETE, x), DiffOp(DiffTag.INSERT, y)]

    ops: list[DiffOp] = []
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            ops.append(DiffOp(DiffTag.EQUAL, x[i1:i2]))
            continue
        if i2 > i1:
            ops.append(DiffOp(DiffTag.DELETE, x[i1:i2]))
        if j2 > j1:
            ops.append(DiffOp(DiffTag.INSERT, y[j1:j2]))
    return ops


def _linewise(lines_a: list[str], lines_b: list[str]) -> list[DiffOp]:
    ops: list[DiffOp] = []
    for i in range(max(len(lines_a), len(lines_b))):
        x = lines_a[i] if i < len(lines_a) else None
        y = lines_b[i] if i < len(lines_b) else None
        if x == y:
            ops.append(DiffOp(DiffTag.EQUAL, x))
            continue
        if x is not None:
            ops.append(DiffOp(DiffTag.DELETE, x))
        if y is not None:
            ops.append(DiffOp(DiffTag.INSERT, y))
    return ops


def _coalesce(ops: list[DiffOp]) -> list[DiffOp]:
    """Merge adjacent same-tag segments and drop empty ones."""
    merged: list[DiffOp] = []
    for op in ops:
        if not op.text:
            continue
        if merged and merged[-1].tag == op.tag:
            merged[-1] = DiffOp(op.tag, merged[-1].text + op.text)
        else:
            merged.append(op)
    return merged
