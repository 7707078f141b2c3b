"""
Unit tests for command normalization and hashing.

Tests cover:
- Whitespace collapsing
- Operator and redirection spacing
- Quoted strings left untouched
- Idempotence
- Digest equality for equivalent spellings
- Joining CLI argv into a command string
"""

import pytest

from rundiff.command import (
    compute_digest,
    describe_command,
    hash_command,
    join_args_for_shell,
    normalize_command,
    shell_quote,
)

SAMPLES = [
    "ls|head",
    "  ls   -la  ",
    "make test&&echo ok||echo fail",
    "cat a>b 2>&1",
    "sort <in.txt >>out.txt",
    "echo 'a   |  b'",
    'grep "x  y" file;ls',
    "cmd 2>/dev/null &",
    "echo a\\ \\ b",
    "",
]


class TestNormalize:
    """Tests for normalize_command()."""

    def test_pipe_spacing(self) -> None:
        """Pipes get one space on each side."""
        assert normalize_command("ls|head") == "ls | head"
        assert normalize_command("ls   |   head") == "ls | head"

    def test_whitespace_collapsed_and_trimmed(self) -> None:
        """Runs of whitespace collapse; ends are trimmed."""
        assert normalize_command("  ls \t  -la  ") == "ls -la"

    def test_logical_operators(self) -> None:
        """&& and || are single tokens with spaces around them."""
        assert normalize_command("a&&b||c") == "a && b || c"

    def test_redirections(self) -> None:
        """Redirections, including fd-prefixed ones, are canonical."""
        assert normalize_command("cat a>b") == "cat a > b"
        assert normalize_command("cmd 2>&1|less") == "cmd 2>&1 | less"
        assert normalize_command("cmd 2>err.log") == "cmd 2> err.log"
        assert normalize_command("cmd >>out") == "cmd >> out"

    def test_semicolon_attaches_to_previous_word(self) -> None:
        """A command separator reads like shell: 'a; b'."""
        assert normalize_command("a ;b") == "a; b"

    def test_quotes_preserved(self) -> None:
        """Whitespace and operators inside quotes are untouched."""
        assert normalize_command("echo 'a   |  b'") == "echo 'a   |  b'"
        assert normalize_command('echo "x&&y"') == 'echo "x&&y"'

    def test_digits_inside_word_are_not_fds(self) -> None:
        """Only a word-initial number can prefix a redirection."""
        assert normalize_command("echo a2>b") == "echo a2 > b"

    @pytest.mark.parametrize("text", SAMPLES)
    def test_idempotent(self, text: str) -> None:
        """normalize(normalize(s)) == normalize(s)."""
        once = normalize_command(text)
        assert normalize_command(once) == once


class TestDescriptor:
    """Tests for digests and descriptors."""

    def test_equivalent_spellings_share_digest(self) -> None:
        """'ls | head' and 'ls|head' land in the same bucket."""
        assert hash_command("ls | head") == hash_command("ls|head")

    def test_different_commands_differ(self) -> None:
        """Different commands get different digests."""
        assert hash_command("ls") != hash_command("ls -la")

    def test_descriptor_fields(self) -> None:
        """A descriptor keeps the raw text and hashes the normalized text."""
        d = describe_command("ls|head")
        assert d.text == "ls|head"
        assert d.normalized == "ls | head"
        assert d.digest == compute_digest("ls | head")
        assert len(d.digest) == 64


class TestShellJoin:
    """Tests for turning argv into a command string."""

    def test_single_argument_passes_through(self) -> None:
        """A single quoted argument keeps its shell syntax."""
        assert join_args_for_shell(["ls | head"]) == "ls | head"

    def test_simple_args(self) -> None:
        """Safe arguments are joined with spaces."""
        assert join_args_for_shell(["ls", "-la", "/tmp"]) == "ls -la /tmp"

    def test_args_with_spaces_are_quoted(self) -> None:
        """An argument with spaces stays one argument."""
        assert join_args_for_shell(["echo", "a b"]) == "echo 'a b'"

    def test_single_quote_escaped(self) -> None:
        """Embedded single quotes are escaped for sh."""
        assert shell_quote("it's") == "'it'\\''s'"

    def test_empty_argument(self) -> None:
        """An empty argument survives as ''."""
        assert join_args_for_shell(["printf", ""]) == "printf ''"
