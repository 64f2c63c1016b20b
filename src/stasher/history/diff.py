"""Line-level unified diff between two versions of a file.

The patch is display/audit material only. Restores always read the full
object by hash, never replay patches.
"""

from __future__ import annotations

import difflib
from typing import NamedTuple

NO_NEWLINE_MARKER = "\\ No newline at end of file\n"
DEV_NULL = "/dev/null"


class DiffResult(NamedTuple):
    patch: str
    lines_added: int
    lines_removed: int


def split_lines(text: str) -> list[str]:
    """Split on ``\\n`` only, keeping terminators.

    The final line has no terminator when the text does not end with a
    newline, which is what lets the patch show a missing trailing newline.
    """
    if not text:
        return []
    parts = text.split("\n")
    lines = [p + "\n" for p in parts[:-1]]
    if parts[-1]:
        lines.append(parts[-1])
    return lines


def diff_text(old_text: str, new_text: str, path: str) -> DiffResult:
    """Render a unified diff of *old_text* → *new_text* and count changed lines.

    An empty *old_text* (first snapshot of a path) yields a patch against
    ``/dev/null`` in which every line is an addition.

    Args:
        old_text: Previous content ("" if none).
        new_text: Current content.
        path: Path shown in the ``---``/``+++`` headers.

    Returns:
        DiffResult with counts that match the ``+``/``-`` lines of the patch.
    """
    old_lines = split_lines(old_text)
    new_lines = split_lines(new_text)
    fromfile = f"a/{path}" if old_lines else DEV_NULL
    tofile = f"b/{path}" if new_lines else DEV_NULL

    out: list[str] = []
    added = 0
    removed = 0
    for i, line in enumerate(difflib.unified_diff(old_lines, new_lines, fromfile, tofile)):
        # Lines 0 and 1 are the ---/+++ headers; a removed line "-- x" would
        # otherwise look like a header.
        if i >= 2:
            if line.startswith("+"):
                added += 1
            elif line.startswith("-"):
                removed += 1
        if line.endswith("\n"):
            out.append(line)
        else:
            out.append(line + "\n")
            out.append(NO_NEWLINE_MARKER)

    return DiffResult("".join(out), added, removed)


def diff_bytes(old: bytes, new: bytes, path: str) -> DiffResult:
    """Diff two raw contents, falling back to a one-line notice for binary data.

    Content that does not decode as UTF-8 is treated as binary: no line diff
    is attempted and both counts are zero.
    """
    try:
        old_text = old.decode("utf-8")
        new_text = new.decode("utf-8")
    except UnicodeDecodeError:
        return DiffResult(f"Binary file {path} differs\n", 0, 0)
    return diff_text(old_text, new_text, path)
