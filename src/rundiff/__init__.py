"""
rundiff - Record shell command executions and compare past runs.

rundiff sits between you and your shell: it runs a command, shows its output
live, and files away a complete copy of what happened so a later run of the
same command can be diffed against it.
It provides:
- Live-tee capture of stdout and stderr
- A content-addressed store with short per-command codes (a, b, ..., aa)
- Fuzzy search over recorded commands
- Line-aligned and positional text diffs

Example usage:
    $ rundiff run make test
    $ rundiff diff make test
    $ rundiff ls make
"""

__version__ = "0.1.0"
__author__ = "rundiff Contributors"

__all__ = [
    "__version__",
    "__author__",
]
