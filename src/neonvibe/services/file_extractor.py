"""Reconstruct named files from a partially received model response.

The model wraps every file in ``<file name="PATH">CONTENT</file>``. The text
is re-scanned from scratch on every fragment, so the scanner is a single
left-to-right walk using ``str.find`` rather than a backtracking regex.
"""

from __future__ import annotations

from typing import Dict, Optional, Tuple

OPEN_PREFIX = '<file name="'
OPEN_SUFFIX = ">"
CLOSE_MARKER = "</file>"


def _read_header(text: str, start: int) -> Optional[Tuple[str, int]]:
    """Parse the open marker at ``start``.

    Returns ``(name, content_start)`` or ``None`` when the header is
    malformed or not yet fully received.
    """

    name_start = start + len(OPEN_PREFIX)
    name_end = text.find('"', name_start)
    if name_end == -1 or name_end == name_start:
        return None
    if not text.startswith(OPEN_SUFFIX, name_end + 1):
        return None
    return text[name_start:name_end], name_end + 1 + len(OPEN_SUFFIX)


def _last_valid_open(text: str, start: int, end: int) -> int:
    found = -1
    pos = text.find(OPEN_PREFIX, start, end)
    while pos != -1:
        if _read_header(text, pos) is not None:
            found = pos
        pos = text.find(OPEN_PREFIX, pos + 1, end)
    return found


def extract_files(text: str) -> Dict[str, str]:
    """Return ``{path: content}`` for every marker block in ``text``.

    Complete blocks come first; a repeated name keeps its last occurrence. At
    most one trailing block whose close marker has not arrived yet is added
    verbatim, unless a complete block already claimed that name. Malformed
    markers are skipped. Never raises.
    """

    complete: Dict[str, str] = {}
    trailing: Optional[Tuple[str, str]] = None
    pos = 0
    next_close = -2  # cached position of the next close marker; -2 means unknown

    while True:
        start = text.find(OPEN_PREFIX, pos)
        if start == -1:
            break
        header = _read_header(text, start)
        if header is None:
            pos = start + 1
            continue
        name, content_start = header

        if next_close != -1 and next_close < content_start:
            next_close = text.find(CLOSE_MARKER, content_start)
        if next_close == -1:
            trailing = (name, text[content_start:])
            break

        # A close marker terminates the nearest preceding valid open marker:
        # an abandoned outer block yields nothing.
        inner = _last_valid_open(text, content_start, next_close)
        if inner != -1:
            pos = inner
            continue

        complete[name] = text[content_start:next_close]
        pos = next_close + len(CLOSE_MARKER)

    if trailing is not None and trailing[0] not in complete:
        complete[trailing[0]] = trailing[1]
    return complete
