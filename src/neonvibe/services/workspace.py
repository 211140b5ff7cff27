from __future__ import annotations

import logging
import os
from collections import OrderedDict
from threading import RLock
from typing import List, Optional

from ..domain.errors import TurnInProgress
from ..domain.models import GenerationSession, SavedSession
from ..infrastructure.session_store import SessionStore, get_session_store
from ..infrastructure.settings_store import SettingsStore, get_settings_store
from .generation import GenerationController, StreamFactory
from .stream_adapter import stream_app_generation

logger = logging.getLogger(__name__)


class Workspace:
    """Live controllers keyed by session id, backed by the session history.

    A session is persisted each time one of its turns reaches a terminal
    state. Loading a saved session restores messages, files and preview into
    a fresh Idle controller.

    At most ``max_live`` controllers are kept in memory. When the limit is
    exceeded the least recently used controllers that are idle and already
    saved are dropped; they are rebuilt from the store on the next access.
    """

    def __init__(
        self,
        store: SessionStore,
        settings_store: SettingsStore,
        stream_factory: StreamFactory = stream_app_generation,
        max_live: Optional[int] = None,
    ) -> None:
        self._store = store
        self._settings_store = settings_store
        self._stream_factory = stream_factory
        self._max_live = max_live if max_live is not None else int(os.getenv("NEONVIBE_MAX_LIVE_SESSIONS", "32"))
        self._controllers: "OrderedDict[str, GenerationController]" = OrderedDict()
        self._lock = RLock()

    @property
    def settings_store(self) -> SettingsStore:
        return self._settings_store

    def _persist(self, session: GenerationSession) -> None:
        self._store.save(session.to_record())
        self._evict_idle()

    def _evict_idle(self) -> None:
        with self._lock:
            excess = len(self._controllers) - self._max_live
            if excess <= 0:
                return
            for session_id, controller in list(self._controllers.items()):
                if excess <= 0:
                    break
                if controller.is_streaming or self._store.get(session_id) is None:
                    continue
                del self._controllers[session_id]
                excess -= 1
                logger.debug("Evicted idle session %s", session_id)

    def _make_controller(self, session: Optional[GenerationSession] = None) -> GenerationController:
        controller = GenerationController(
            settings=self._settings_store.get,
            session=session,
            stream_factory=self._stream_factory,
            on_turn_end=self._persist,
        )
        self._controllers[controller.session.session_id] = controller
        return controller

    def create_session(self) -> GenerationController:
        with self._lock:
            return self._make_controller()

    def get_controller(self, session_id: str) -> Optional[GenerationController]:
        with self._lock:
            controller = self._controllers.get(session_id)
            if controller is not None:
                self._controllers.move_to_end(session_id)
                return controller
            record = self._store.get(session_id)
            if record is None:
                return None
            self._evict_idle()
            logger.info("Loading saved session %s", session_id)
            return self._make_controller(GenerationSession.from_record(record))

    def list_sessions(self) -> List[SavedSession]:
        return self._store.list()

    def delete_session(self, session_id: str) -> bool:
        with self._lock:
            controller = self._controllers.get(session_id)
            if controller is not None and controller.is_streaming:
                raise TurnInProgress(session_id)
            dropped = self._controllers.pop(session_id, None) is not None
            removed = self._store.delete(session_id)
            return dropped or removed


_workspace: Workspace | None = None


def get_workspace() -> Workspace:
    global _workspace
    if _workspace is None:
        _workspace = Workspace(store=get_session_store(), settings_store=get_settings_store())
    return _workspace
