"""
Command normalization and hashing.

Two invocations land in the same bucket when their normalized text is
identical. Normalization is purely lexical:
    - leading/trailing whitespace is dropped
    - runs of whitespace outside quotes collapse to one space
    - control operators (|, ||, &&, &) and redirections (>, >>, <, 2>, 2>&1, &>)
      get exactly one space on each side ("ls|head" -> "ls | head")
    - ";" sticks to the word before it, as typed in a shell ("a ;b" -> "a; b")
    - quoted strings and escaped characters are kept verbatim

normalize_command(normalize_command(s)) == normalize_command(s) for every s.
"""

import hashlib
from dataclasses import dataclass

# Longest first so "||" wins over "|" and ">>" over ">".
OPERATORS = (
    "<<<",
    "&&",
    "||",
    "|&",
    ">>",
    "&>",
    ">&",
    "<&",
    "<<",
    "|",
    ";",
    "&",
    ">",
    "<",
)

# Characters that may follow ">&" / "<&" as part of the same token (fd dup/close).
_FD_TARGET = set("0123456789-")

# Characters that are safe to leave unquoted when joining argv into a command.
_SAFE_CHARS = set("_-./:,@+%=")


@dataclass(frozen=True)
class CommandDescriptor:
    """
    Identity of a command for storage purposes.

    Attributes:
        text: The command as the user typed it
        normalized: Canonical spelling used for bucketing
        digest: SHA256 hex digest of the normalized form
    """

    text: str
    normalized: str
    digest: str


def describe_command(text: str) -> CommandDescriptor:
    """Build a descriptor for a command string."""
    normalized = normalize_command(text)
    return CommandDescriptor(text=text, normalized=normalized, digest=compute_digest(normalized))


def compute_digest(normalized: str) -> str:
    """Compute SHA256 hex digest of an already-normalized command."""
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def hash_command(text: str) -> str:
    """Normalize then hash a command string."""
    return compute_digest(normalize_command(text))


def normalize_command(text: str) -> str:
    """
    Canonicalize whitespace and operator spacing in a shell command.

    Args:
        text: Raw command text

    Returns:
        Normalized command text (empty string for blank input)
    """
    tokens = _tokenize(text.strip())
    parts: list[str] = []
    for token in tokens:
        if token == ";" and parts:
            parts[-1] += ";"
        else:
            parts.append(token)
    return " ".join(parts)


def _tokenize(text: str) -> list[str]:
    """Split command text into words and operators, keeping quotes intact."""
    tokens: list[str] = []
    word: list[str] = []
    i = 0
    n = len(text)

    def flush() -> None:
        if word:
            tokens.append("".join(word))
            word.clear()

    while i < n:
        c = text[i]

        if c.isspace():
            flush()
            i += 1
            continue

        if c == "\\":
            word.append(text[i : i + 2])
            i += 2
            continue

        if c == "'":
            end = text.find("'", i + 1)
            end = n if end == -1 else end + 1
            word.append(text[i:end])
            i = end
            continue

        if c == '"':
            j = i + 1
            while j < n and text[j] != '"':
                j += 2 if text[j] == "\\" else 1
            end = min(j + 1, n)
            word.append(text[i:end])
            i = end
            continue

        # fd-prefixed redirection: "2>file", "2>&1", "0<in" (only at word start)
        if c.isdigit() and not word:
            j = i
            while j < n and text[j].isdigit():
                j += 1
            if j < n and text[j] in "<>":
                op, end = _read_operator(text, j)
                tokens.append(text[i:j] + op)
                i = end
                continue

        if c in "|&;<>":
            flush()
            op, i = _read_operator(text, i)
            tokens.append(op)
            continue

        word.append(c)
        i += 1

    flush()
    return tokens


def _read_operator(text: str, i: int) -> tuple[str, int]:
    """Read the operator starting at text[i]; returns (operator, next index)."""
    for op in OPERATORS:
        if text.startswith(op, i):
            end = i + len(op)
            if op in (">&", "<&"):
                while end < len(text) and text[end] in _FD_TARGET:
                    end += 1
            return text[i:end], end
    return text[i], i + 1


def shell_quote(arg: str) -> str:
    """Quote one argument for /bin/sh unless it is made of safe characters."""
    if not arg:
        return "''"
    if all(ch.isascii() and (ch.isalnum() or ch in _SAFE_CHARS) for ch in arg):
        return arg
    return "'" + arg.replace("'", "'\\''") + "'"


def join_args_for_shell(args: list[str]) -> str:
    """
    Turn argv (as received by the CLI) into one shell command string.

    A single argument is passed through untouched so that
    `rundiff run "ls | head"` keeps its pipe; multiple arguments are quoted
    individually so `rundiff run echo "a b"` stays one argument.
    """
    if len(args) == 1:
        return args[0]
    return " ".join(shell_quote(arg) for arg in args)
