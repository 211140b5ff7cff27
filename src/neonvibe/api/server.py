"""Run the workspace API locally.

Run:
  python -m neonvibe.api.server
  # or: neonvibe-server
"""

from __future__ import annotations

import os

import uvicorn


def main() -> None:
    host = os.environ.get("NEONVIBE_HOST", "127.0.0.1")
    port = int(os.environ.get("NEONVIBE_PORT", "8765"))
    uvicorn.run("neonvibe.api.main:app", host=host, port=port, log_level="info")


if __name__ == "__main__":
    main()
