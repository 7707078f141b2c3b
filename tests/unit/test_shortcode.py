"""
Unit tests for bijective base-62 short codes.

Tests cover:
- Single-character range and its ordering
- Rollover to two characters
- Decoding and validation
"""

import pytest

from rundiff import shortcode


class TestEncode:
    """Tests for encode()."""

    def test_first_code_is_a(self) -> None:
        """The first allocation is 'a'."""
        assert shortcode.encode(1) == "a"

    def test_single_characters_follow_alphabet(self) -> None:
        """1..62 map to the alphabet in order."""
        codes = [shortcode.encode(n) for n in range(1, 63)]
        assert codes == list(shortcode.ALPHABET)
        assert shortcode.encode(26) == "z"
        assert shortcode.encode(27) == "A"
        assert shortcode.encode(62) == "9"

    def test_rollover_to_two_characters(self) -> None:
        """63 is the first two-character code."""
        assert shortcode.encode(63) == "aa"
        assert shortcode.encode(64) == "ab"
        assert shortcode.encode(62 + 62) == "a9"
        assert shortcode.encode(62 + 62 + 1) == "ba"

    def test_rejects_zero_and_negative(self) -> None:
        """There is no code for zero."""
        with pytest.raises(ValueError):
            shortcode.encode(0)
        with pytest.raises(ValueError):
            shortcode.encode(-5)


class TestDecode:
    """Tests for decode() and is_valid()."""

    def test_inverse_of_encode(self) -> None:
        """decode(encode(n)) == n across one- two- and three-character codes."""
        for n in list(range(1, 5000)) + [62**2 + 62, 62**3, 10**7]:
            assert shortcode.decode(shortcode.encode(n)) == n

    def test_known_values(self) -> None:
        """Spot-check decoding."""
        assert shortcode.decode("g") == 7
        assert shortcode.decode("aa") == 63

    def test_rejects_invalid(self) -> None:
        """Empty codes and foreign characters are errors."""
        with pytest.raises(ValueError):
            shortcode.decode("")
        with pytest.raises(ValueError):
            shortcode.decode("a-b")

    def test_is_valid(self) -> None:
        """is_valid mirrors decode's acceptance."""
        assert shortcode.is_valid("aZ9")
        assert not shortcode.is_valid("")
        assert not shortcode.is_valid("a b")
