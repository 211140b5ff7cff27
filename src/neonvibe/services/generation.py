"""Drive one workspace session through streaming generation turns.

A turn moves Idle -> Streaming -> Complete | Cancelled | Errored. Every
fragment from the provider is folded into the in-progress model message, the
file map and the preview before the next fragment is requested, so a
published :class:`TurnUpdate` always pairs files and preview from the same
tick.

Cancellation is cooperative: :meth:`GenerationController.cancel` only sets a
flag, which is checked before each fragment is requested and again when it
arrives. A network read that is already in flight completes first, so the
worst-case latency is one fragment's arrival time. Once the flag is seen the
provider iterator is closed, which releases its connection.
"""

from __future__ import annotations

import inspect
import logging
from threading import RLock
from typing import Callable, Iterator, List, Optional, Sequence

from ..core.state_machine import is_valid_transition
from ..domain.errors import AdapterError, CredentialMissing, TurnInProgress
from ..domain.models import AISettings, GenerationSession, Message, TurnState, TurnUpdate
from ..observability.metrics import FRAGMENTS_TOTAL, TURNS_TOTAL
from .bundler import bundle_files
from .file_extractor import extract_files
from .stream_adapter import stream_app_generation

logger = logging.getLogger(__name__)
LOG = logging.getLogger("neonvibe.stream")

CANCELLED_NOTE = "\n\n*[Generation cancelled by user]*"
MISSING_KEY_MESSAGE = "Missing API Key. Please configure it in Settings."
FALLBACK_ERROR_MESSAGE = "Connection interrupted."

StreamFactory = Callable[[Sequence[Message], AISettings], Iterator[str]]


class TurnStream:
    """Iterator over one turn's updates.

    Closing it before the turn ends cancels the turn, including when no
    update was ever requested. If another thread is currently pulling an
    update, ``close`` only raises the cancel flag and that thread finishes
    the turn.
    """

    def __init__(self, controller: "GenerationController", updates: Iterator[TurnUpdate], settings: AISettings) -> None:
        self._controller = controller
        self._updates = updates
        self._settings = settings
        self._started = False

    def __iter__(self) -> "TurnStream":
        return self

    def __next__(self) -> TurnUpdate:
        self._started = True
        return next(self._updates)

    def close(self) -> None:
        state = inspect.getgeneratorstate(self._updates)
        if state == inspect.GEN_RUNNING:
            self._controller.cancel()
            return
        if not self._started:
            self._started = True
            self._controller._abandon(self._settings)
        self._updates.close()

    def __del__(self) -> None:
        if not self._started:
            self.close()


class GenerationController:
    """Owns one :class:`GenerationSession` and at most one running turn."""

    def __init__(
        self,
        settings: Callable[[], AISettings],
        session: Optional[GenerationSession] = None,
        stream_factory: StreamFactory = stream_app_generation,
        on_turn_end: Optional[Callable[[GenerationSession], None]] = None,
    ) -> None:
        self._settings = settings
        self._session = session or GenerationSession()
        self._stream_factory = stream_factory
        self._on_turn_end = on_turn_end
        self._lock = RLock()

    @property
    def session(self) -> GenerationSession:
        return self._session

    @property
    def is_streaming(self) -> bool:
        return self._session.streaming

    def _set_state(self, target: TurnState) -> None:
        current = self._session.state
        if not is_valid_transition(current, target):
            raise RuntimeError(f"Invalid turn transition {current.value} -> {target.value}")
        self._session.state = target

    def _snapshot(self, error: Optional[Exception] = None, error_text: Optional[str] = None) -> TurnUpdate:
        session = self._session
        return TurnUpdate(
            session_id=session.session_id,
            state=session.state,
            message=session.messages[-1].content if session.messages else "",
            files=dict(session.files),
            preview=session.preview,
            error=error_text,
            error_kind=getattr(error, "kind", None) if error is not None else None,
            needs_configuration=isinstance(error, CredentialMissing),
        )

    def start_turn(self, prompt: str) -> TurnStream:
        """Append ``prompt`` and return the iterator that runs the turn.

        The single-flight check happens here, eagerly, not on first iteration.

        Raises
        ------
        TurnInProgress
            If this session is already streaming.
        """

        with self._lock:
            session = self._session
            if session.streaming:
                raise TurnInProgress(session.session_id)
            settings = self._settings()
            self._set_state(TurnState.STREAMING)
            session.messages.append(Message(role="user", content=prompt))
            history = [m.model_copy() for m in session.messages]
            session.messages.append(Message(role="model", content=""))
            session.cancel_requested = False
            session.streaming = True
        LOG.info(
            "turn_started",
            extra={"session_id": session.session_id, "provider": settings.provider, "turns": len(history)},
        )
        return TurnStream(self, self._drive(history, settings), settings)

    def _abandon(self, settings: AISettings) -> None:
        """Finish a turn whose iterator was closed before it produced anything."""
        with self._lock:
            if not self._session.streaming:
                return
            self._session.cancel_requested = True
        self._finish(settings, None)

    def cancel(self) -> bool:
        """Request cancellation of the running turn; False when idle."""
        with self._lock:
            if not self._session.streaming:
                return False
            self._session.cancel_requested = True
            return True

    def snapshot(self) -> GenerationSession:
        """Copy of the session taken under the lock; files and preview are from the same tick."""
        with self._lock:
            return self._session.model_copy(deep=True)

    def _apply_fragment(self, accumulator: List[str], fragment: str) -> TurnUpdate:
        accumulator.append(fragment)
        full = "".join(accumulator)
        with self._lock:
            base = dict(self._session.files)
        # Union with override: files from earlier ticks are kept.
        merged = {**base, **extract_files(full)}
        preview = bundle_files(merged)
        with self._lock:
            session = self._session
            session.messages[-1] = Message(role="model", content=full)
            session.files = merged
            session.preview = preview
            return self._snapshot()

    def _drive(self, history: List[Message], settings: AISettings) -> Iterator[TurnUpdate]:
        session = self._session
        accumulator: List[str] = []
        fragments: Optional[Iterator[str]] = None
        error: Optional[Exception] = None
        try:
            fragments = iter(self._stream_factory(history, settings))
            while not session.cancel_requested:
                fragment = next(fragments, None)
                if fragment is None or session.cancel_requested:
                    break
                FRAGMENTS_TOTAL.labels(provider=settings.provider).inc()
                yield self._apply_fragment(accumulator, fragment)
        except GeneratorExit:
            # The consumer stopped listening mid-turn.
            session.cancel_requested = True
            self._finish(settings, None)
            raise
        except Exception as exc:
            if not isinstance(exc, AdapterError):
                logger.exception("Unexpected failure while streaming session %s", session.session_id)
            error = exc
        finally:
            close = getattr(fragments, "close", None)
            if close is not None:
                close()
        yield self._finish(settings, error)

    def _finish(self, settings: AISettings, error: Optional[Exception]) -> TurnUpdate:
        with self._lock:
            session = self._session
            current = session.messages[-1].content
            if error is not None:
                if isinstance(error, CredentialMissing):
                    text = MISSING_KEY_MESSAGE
                else:
                    text = str(error) or FALLBACK_ERROR_MESSAGE
                session.messages[-1] = Message(role="model", content=f"{current}\n\n**Error:** {text}")
                target = TurnState.ERRORED
            elif session.cancel_requested:
                session.messages[-1] = Message(role="model", content=current + CANCELLED_NOTE)
                target = TurnState.CANCELLED
            else:
                target = TurnState.COMPLETE
            session.streaming = False
            session.cancel_requested = False
            self._set_state(target)
            update = self._snapshot(error, text if error is not None else None)

        TURNS_TOTAL.labels(provider=settings.provider, state=target.value).inc()
        if error is not None:
            LOG.warning(
                "turn_failed",
                extra={"session_id": session.session_id, "kind": getattr(error, "kind", "unexpected"), "err": str(error)},
            )
        else:
            LOG.info(
                "turn_cancelled" if target is TurnState.CANCELLED else "turn_completed",
                extra={"session_id": session.session_id, "files": len(session.files)},
            )
        if self._on_turn_end is not None:
            self._on_turn_end(session)
        return update
