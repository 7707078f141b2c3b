"""
Bijective base-62 short codes.

Every execution of a command gets a short code in allocation order:
the 1st is "a", the 26th "z", the 27th "A", the 62nd "9", the 63rd "aa".
There is no zero digit, so every positive integer has exactly one code
and every code over the alphabet has exactly one integer.
"""

ALPHABET = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
BASE = len(ALPHABET)

_VALUES = {ch: i + 1 for i, ch in enumerate(ALPHABET)}


def encode(n: int) -> str:
    """
    Convert a positive integer to its short code.

    Args:
        n: Sequence number, starting at 1

    Returns:
        The bijective base-62 numeral for n

    Raises:
        ValueError: If n < 1
    """
    if n < 1:
        msg = f"Short codes start at 1, got {n}"
        raise ValueError(msg)

    digits = []
    while n > 0:
        n, rem = divmod(n - 1, BASE)
        digits.append(ALPHABET[rem])
    return "".join(reversed(digits))


def decode(code: str) -> int:
    """
    Convert a short code back to its sequence number.

    Raises:
        ValueError: If code is empty or contains characters outside the alphabet
    """
    if not code:
        msg = "Short code cannot be empty"
        raise ValueError(msg)

    n = 0
    for ch in code:
        value = _VALUES.get(ch)
        if value is None:
            msg = f"Invalid short code character {ch!r} in {code!r}"
            raise ValueError(msg)
        n = n * BASE + value
    return n


def is_valid(code: str) -> bool:
    """Whether code is a well-formed short code."""
    return bool(code) and all(ch in _VALUES for ch in code)
