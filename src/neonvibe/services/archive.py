from __future__ import annotations

import io
import zipfile
from typing import Mapping

ARCHIVE_NAME = "neonvibe-repository.zip"


def build_archive(files: Mapping[str, str]) -> bytes:
    """Pack the file map into a ZIP, one member per path."""
    mem = io.BytesIO()
    with zipfile.ZipFile(mem, mode="w", compression=zipfile.ZIP_DEFLATED) as zf:
        for name in sorted(files):
            zf.writestr(name, files[name])
    return mem.getvalue()
