from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from threading import RLock
from typing import Dict, List, Optional, Protocol

from ..domain.models import SavedSession

logger = logging.getLogger(__name__)


class SessionStore(Protocol):
    def list(self) -> List[SavedSession]: ...
    def get(self, session_id: str) -> Optional[SavedSession]: ...
    def save(self, record: SavedSession) -> SavedSession: ...
    def delete(self, session_id: str) -> bool: ...


class InMemorySessionStore:
    def __init__(self) -> None:
        self._sessions: Dict[str, SavedSession] = {}
        self._lock = RLock()

    def list(self) -> List[SavedSession]:
        with self._lock:
            # Newest first
            return sorted(self._sessions.values(), key=lambda s: s.last_modified, reverse=True)

    def get(self, session_id: str) -> Optional[SavedSession]:
        with self._lock:
            return self._sessions.get(session_id)

    def save(self, record: SavedSession) -> SavedSession:
        with self._lock:
            self._sessions[record.id] = record
            return record

    def delete(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None


class FileSessionStore(InMemorySessionStore):
    """JSON file-backed session history.

    Structure: a single JSON object mapping session id -> saved session dict.
    Thread-safe with a coarse RLock; records are written through on every save.
    """

    def __init__(self, file_path: Optional[str] = None) -> None:
        super().__init__()
        default_path = Path.cwd() / "run" / "sessions.json"
        self._path = Path(file_path or os.getenv("NEONVIBE_SESSIONS_FILE", str(default_path)))
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._load()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Failed to read session history %s: %s", self._path, exc)
            return
        for sid, raw in (data or {}).items():
            try:
                self._sessions[sid] = SavedSession.model_validate(raw)
            except ValueError:
                logger.warning("Skipping unreadable session record %s", sid)

    def _save(self) -> None:
        obj = {sid: rec.model_dump() for sid, rec in self._sessions.items()}
        self._path.write_text(json.dumps(obj, ensure_ascii=False, indent=2), encoding="utf-8")

    def save(self, record: SavedSession) -> SavedSession:
        with self._lock:
            super().save(record)
            self._save()
            return record

    def delete(self, session_id: str) -> bool:
        with self._lock:
            ok = super().delete(session_id)
            if ok:
                self._save()
            return ok


_store: SessionStore | None = None


def get_session_store() -> SessionStore:
    global _store
    if _store is not None:
        return _store
    impl = os.getenv("NEONVIBE_SESSION_STORE_IMPL", "memory").lower()
    if impl == "file":
        _store = FileSessionStore()
    else:
        _store = InMemorySessionStore()
    return _store
