"""Fold a generated file set into one self-contained HTML document."""

from __future__ import annotations

import re
from typing import Mapping, Optional

ENTRY_POINT = "index.html"

_LINK_RE = re.compile(r"""<link\b[^>]*?\bhref=["']([^"']+\.css)["'][^>]*>""", re.IGNORECASE)
_SCRIPT_RE = re.compile(r"""<script\b[^>]*?\bsrc=["']([^"']+\.js)["'][^>]*>\s*</script>""", re.IGNORECASE)


def _lookup(files: Mapping[str, str], ref: str) -> Optional[str]:
    if ref in files:
        return files[ref]
    if ref.startswith("./") and ref[2:] in files:
        return files[ref[2:]]
    return None


def bundle_files(files: Mapping[str, str]) -> str:
    """Inline local stylesheets and scripts into the entry document.

    Returns ``""`` when there is no ``index.html`` yet. References to paths
    that are not in ``files`` (CDN URLs included) are left as written.
    """

    html = files.get(ENTRY_POINT)
    if not html:
        return ""

    def _inline_style(match: re.Match) -> str:
        css = _lookup(files, match.group(1))
        if css is None:
            return match.group(0)
        return f"<style>\n{css}\n</style>"

    def _inline_script(match: re.Match) -> str:
        js = _lookup(files, match.group(1))
        if js is None:
            return match.group(0)
        return f"<script>\n{js}\n</script>"

    html = _LINK_RE.sub(_inline_style, html)
    return _SCRIPT_RE.sub(_inline_script, html)
