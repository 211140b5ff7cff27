import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
src_str = str(ROOT / "src")
if src_str not in sys.path:
    sys.path.insert(0, src_str)


@pytest.fixture(autouse=True)
def _isolated_workspace(monkeypatch):
    """Fresh stores per test and no real provider credentials from the environment."""
    from neonvibe.infrastructure import session_store, settings_store
    from neonvibe.services import workspace

    for key in ("GEMINI_API_KEY", "OPENROUTER_API_KEY", "GEMINI_MODEL", "OPENROUTER_MODEL", "OPENROUTER_BASE_URL"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("NEONVIBE_SESSION_STORE_IMPL", "memory")
    monkeypatch.setattr(session_store, "_store", None)
    monkeypatch.setattr(settings_store, "_settings_store", None)
    monkeypatch.setattr(workspace, "_workspace", None)
