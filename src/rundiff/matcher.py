"""
Fuzzy matching over recorded commands.

Matching strategies, tried in priority order; the first one that matches
decides the score, and every tier's scores sit above every lower tier's:

    EXACT        case-sensitive substring     3000..3999
    PREFIX       case-insensitive prefix      2000..2999
    DIGIT        number equals short code     1500..1999
                 or a number in the text
    SUBSEQUENCE  skim-style, smart case          1..999

An empty query matches everything with score 0 (kind ALL), so ranking falls
back to recency.

All functions are pure; candidates are never mutated.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Iterable

from rundiff import shortcode

EXACT_BASE = 3000
PREFIX_BASE = 2000
DIGIT_BASE = 1500
SUBSEQUENCE_MAX = 999

# Subsequence scoring
SCORE_MATCH = 16
BONUS_BOUNDARY = 8
BONUS_CAMEL = 7
BONUS_CONSECUTIVE = 8
BONUS_FIRST_CHAR = 4
PENALTY_GAP_START = 3
PENALTY_GAP_EXTENSION = 1

_BOUNDARY_CHARS = set(" /\\-_.:|;,=&>'\"")
_NUMBER = re.compile(r"\d+")


class MatchKind(str, Enum):
    """Which strategy produced a match."""

    ALL = "all"
    EXACT = "exact"
    PREFIX = "prefix"
    DIGIT = "digit"
    SUBSEQUENCE = "subsequence"


@dataclass(frozen=True)
class MatchResult:
    """
    A successful match.

    Attributes:
        score: Higher is better; comparable across strategies
        kind: Strategy that matched
        indices: Positions in the text that matched the query
    """

    score: int
    kind: MatchKind
    indices: tuple[int, ...] = ()


@dataclass(frozen=True)
class Candidate:
    """
    Something that can be ranked.

    Attributes:
        text: Text matched against (usually a command)
        short_code: Short code for digit matching, if any
        timestamp: Used to break ties (newer first)
        payload: Caller data carried through ranking untouched
    """

    text: str
    short_code: str | None = None
    timestamp: datetime | None = None
    payload: Any = None


@dataclass(frozen=True)
class Ranked:
    """A candidate with its match."""

    candidate: Candidate
    match: MatchResult

    @property
    def score(self) -> int:
        return self.match.score


# =============================================================================
# Public API
# =============================================================================


def match(query: str, text: str, short_code: str | None = None) -> MatchResult | None:
    """
    Match a query against one text.

    Args:
        query: User query
        text: Candidate text
        short_code: Candidate short code, for all-digit queries

    Returns:
        MatchResult, or None when nothing matches
    """
    if not query:
        return MatchResult(score=0, kind=MatchKind.ALL)

    for strategy in (_exact, _prefix, _digit, _subsequence):
        result = strategy(query, text, short_code)
        if result is not None:
            return result
    return None


def score(query: str, text: str, short_code: str | None = None) -> int | None:
    """Score a query against a text; None means no match."""
    result = match(query, text, short_code)
    return result.score if result else None


def rank(query: str, candidates: Iterable[Candidate]) -> list[Ranked]:
    """
    Filter and order candidates by match quality.

    Non-matches are dropped. Equal scores go newer first; candidates without
    a timestamp count as oldest. An empty query keeps every candidate ordered
    by recency.
    """
    ranked = []
    for candidate in candidates:
        result = match(query, candidate.text, candidate.short_code)
        if result is not None:
            ranked.append(Ranked(candidate=candidate, match=result))
    ranked.sort(key=lambda r: (r.score, _recency(r.candidate)), reverse=True)
    return ranked


# =============================================================================
# Strategies
# =============================================================================


def _exact(query: str, text: str, short_code: str | None) -> MatchResult | None:
    pos = text.find(query)
    if pos < 0:
        return None
    length_bonus = min(len(query), 50) * 10
    position_bonus = max(0, 100 - pos)
    return MatchResult(
        score=EXACT_BASE + length_bonus + position_bonus,
        kind=MatchKind.EXACT,
        indices=tuple(range(pos, pos + len(query))),
    )


def _prefix(query: str, text: str, short_code: str | None) -> MatchResult | None:
    if not text.lower().startswith(query.lower()):
        return None
    return MatchResult(
        score=PREFIX_BASE + min(len(query), 100) * 8,
        kind=MatchKind.PREFIX,
        indices=tuple(range(len(query))),
    )


def _digit(query: str, text: str, short_code: str | None) -> MatchResult | None:
    if not query.isdigit() or not query.isascii():
        return None
    wanted = int(query)

    if short_code is not None and shortcode.is_valid(short_code):
        if short_code == query or shortcode.decode(short_code) == wanted:
            return MatchResult(score=DIGIT_BASE + 200, kind=MatchKind.DIGIT)

    for number in _NUMBER.finditer(text):
        if number.group().isascii() and int(number.group()) == wanted:
            return MatchResult(
                score=DIGIT_BASE + 100,
                kind=MatchKind.DIGIT,
                indices=tuple(range(number.start(), number.end())),
            )
    return None


def _subsequence(query: str, text: str, short_code: str | None) -> MatchResult | None:
    """
    Skim-style subsequence match with smart case.

    A query with no uppercase letters matches case-insensitively. Scoring
    rewards consecutive matches and matches at word boundaries, and
    penalizes gaps. The best alignment is found by dynamic programming.
    """
    if len(query) > len(text):
        return None

    case_sensitive = any(c.isupper() for c in query)
    q = query if case_sensitive else query.lower()
    t = text if case_sensitive else text.lower()
    m, n = len(q), len(t)

    bonuses = [_position_bonus(text, i) for i in range(n)]
    neg = float("-inf")
    # best[j][i]: best score with q[j] matched at t[i]; back[j][i]: where q[j-1] matched
    best = [[neg] * n for _ in range(m)]
    back = [[-1] * n for _ in range(m)]

    for i in range(n):
        if t[i] == q[0]:
            best[0][i] = SCORE_MATCH + bonuses[i] - min(i, 10) * PENALTY_GAP_EXTENSION

    for j in range(1, m):
        prev = best[j - 1]
        row = best[j]
        # running max of prev[k] + k over k <= i - 2, for gapped transitions
        run_max, run_arg = neg, -1
        for i in range(j, n):
            k = i - 2
            if k >= 0 and prev[k] + k > run_max:
                run_max, run_arg = prev[k] + k, k
            if t[i] != q[j]:
                continue

            candidate, parent = neg, -1
            if prev[i - 1] > neg:
                candidate = prev[i - 1] + BONUS_CONSECUTIVE
                parent = i - 1
            if run_max > neg:
                gapped = run_max - (i - 1) - PENALTY_GAP_START
                if gapped > candidate:
                    candidate, parent = gapped, run_arg
            if parent >= 0:
                row[i] = candidate + SCORE_MATCH + bonuses[i]
                back[j][i] = parent

    last = best[m - 1]
    end = max(range(n), key=lambda i: last[i], default=-1)
    if end < 0 or last[end] == neg:
        return None

    indices = [end]
    for j in range(m - 1, 0, -1):
        indices.append(back[j][indices[-1]])
    indices.reverse()

    raw = int(last[end])
    return MatchResult(
        score=max(1, min(SUBSEQUENCE_MAX, raw)),
        kind=MatchKind.SUBSEQUENCE,
        indices=tuple(indices),
    )


# =============================================================================
# Helpers
# =============================================================================


def _position_bonus(text: str, i: int) -> int:
    if i == 0:
        return BONUS_BOUNDARY + BONUS_FIRST_CHAR
    prev, cur = text[i - 1], text[i]
    if prev in _BOUNDARY_CHARS:
        return BONUS_BOUNDARY
    if prev.islower() and cur.isupper():
        return BONUS_CAMEL
    if not prev.isdigit() and cur.isdigit():
        return BONUS_CAMEL
    return 0


def _recency(candidate: Candidate) -> float:
    if candidate.timestamp is None:
        return float("-inf")
    return candidate.timestamp.timestamp()
