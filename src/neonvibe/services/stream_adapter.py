"""Provider stream adapter.

Normalises the two supported wire protocols into one lazy iterator of text
fragments:

* ``gemini``: the google-genai SDK streaming call; every chunk is already a
  complete text delta.
* ``openrouter``: an OpenAI-compatible ``text/event-stream`` body read as raw
  byte chunks and re-framed into ``data: <json>`` lines here.

Each call to :func:`stream_app_generation` opens a fresh connection. The
iterator is not resumable; closing it early releases the connection.
"""

from __future__ import annotations

import codecs
import json
import logging
import os
from abc import ABC, abstractmethod
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Type, Union

import requests
from google import genai
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..domain.errors import AdapterError, CredentialMissing, MalformedFrame, ProviderLogicError, TransportError
from ..domain.models import AISettings, Message
from .model_router import ProviderSelection, resolve_selection
from .prompts import get_system_prompt

logger = logging.getLogger(__name__)
LOG = logging.getLogger("neonvibe.stream")

_STREAM_TIMEOUT = (
    float(os.getenv("NEONVIBE_CONNECT_TIMEOUT", "5")),
    float(os.getenv("NEONVIBE_READ_TIMEOUT", "120")),
)

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"


def _build_session() -> requests.Session:
    session = requests.Session()
    # Only connection setup is retried; a request the provider has seen is never replayed.
    retry = Retry(total=2, connect=2, read=0, status=0, other=0, backoff_factor=0.5)
    adapter = HTTPAdapter(max_retries=retry, pool_connections=4, pool_maxsize=4)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def decode_frame(payload: str) -> Optional[str]:
    """Return the text delta carried by one ``data:`` payload, if any.

    Raises
    ------
    MalformedFrame
        If the payload is not a JSON object.
    ProviderLogicError
        If the provider reports an error inside the stream.
    """

    try:
        data = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise MalformedFrame(str(exc)) from exc
    if not isinstance(data, dict):
        raise MalformedFrame("frame is not a JSON object")

    error = data.get("error")
    if error:
        message = error.get("message") if isinstance(error, dict) else str(error)
        raise ProviderLogicError(message or "Provider reported an error mid-stream")

    choices = data.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return None
    delta = choices[0].get("delta") or {}
    content = delta.get("content") if isinstance(delta, dict) else None
    if isinstance(content, str) and content:
        return content
    return None


def iter_sse_fragments(chunks: Iterable[Union[bytes, str]]) -> Iterator[str]:
    """Re-frame raw body chunks into lines and yield each frame's text delta.

    Chunks carry no alignment guarantee: a trailing partial line (or a split
    UTF-8 sequence) stays buffered until the next chunk completes it. The
    ``[DONE]`` sentinel ends iteration without reading further chunks.
    """

    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buffer = ""
    for chunk in chunks:
        buffer += decoder.decode(chunk) if isinstance(chunk, bytes) else chunk
        lines = buffer.split("\n")
        buffer = lines.pop()
        for raw_line in lines:
            line = raw_line.strip()
            if not line.startswith(DATA_PREFIX):
                continue
            payload = line[len(DATA_PREFIX):]
            if payload == DONE_SENTINEL:
                LOG.debug("stream_done")
                return
            try:
                text = decode_frame(payload)
            except MalformedFrame as exc:
                LOG.warning("stream_frame_malformed", extra={"err": str(exc), "frame": payload[:200]})
                continue
            if text:
                yield text
    if buffer.strip():
        LOG.debug("stream_trailing_partial_line", extra={"length": len(buffer)})


class ProviderStream(ABC):
    """One provider's transport behind the common fragment interface."""

    name = ""

    def __init__(self, selection: ProviderSelection) -> None:
        if not selection.has_credentials:
            raise CredentialMissing(selection.name)
        self.selection = selection

    @abstractmethod
    def stream(self, history: Sequence[Message]) -> Iterator[str]:
        """Yield text fragments for ``history`` as they arrive."""


class GeminiStream(ProviderStream):
    name = "gemini"

    def _contents(self, history: Sequence[Message]) -> List[Dict[str, object]]:
        return [{"role": msg.role, "parts": [{"text": msg.content}]} for msg in history]

    def stream(self, history: Sequence[Message]) -> Iterator[str]:
        LOG.info(
            "stream_request",
            extra={"provider": self.name, "model": self.selection.model, "messages": len(history)},
        )
        received = False
        block_reason = None
        try:
            client = genai.Client(api_key=self.selection.api_key)
            response_stream = client.models.generate_content_stream(
                model=self.selection.model,
                contents=self._contents(history),
                config={"system_instruction": get_system_prompt()},
            )
            for chunk in response_stream:
                feedback = getattr(chunk, "prompt_feedback", None)
                if feedback is not None and getattr(feedback, "block_reason", None):
                    block_reason = str(feedback.block_reason)
                text = chunk.text
                if text:
                    received = True
                    yield text
        except AdapterError:
            raise
        except Exception as exc:
            LOG.warning("stream_transport_failed", extra={"provider": self.name, "err": str(exc)})
            raise TransportError(str(exc)) from exc

        if not received and block_reason:
            raise ProviderLogicError(f"Gemini declined to answer: {block_reason}")


class OpenRouterStream(ProviderStream):
    name = "openrouter"

    def __init__(self, selection: ProviderSelection, session: Optional[requests.Session] = None) -> None:
        super().__init__(selection)
        self._session = session or _build_session()

    def _messages(self, history: Sequence[Message]) -> List[Dict[str, str]]:
        messages = [{"role": "system", "content": get_system_prompt()}]
        for msg in history:
            messages.append({
                "role": "assistant" if msg.role == "model" else "user",
                "content": msg.content,
            })
        return messages

    def stream(self, history: Sequence[Message]) -> Iterator[str]:
        base_url = (self.selection.base_url or "").rstrip("/")
        payload = {
            "model": self.selection.model,
            "messages": self._messages(history),
            "stream": True,
        }
        headers = {
            "Authorization": f"Bearer {self.selection.api_key}",
            "Content-Type": "application/json",
            "X-Title": "NeonVibe",
        }
        LOG.info(
            "stream_request",
            extra={"provider": self.name, "model": self.selection.model, "messages": len(history)},
        )
        try:
            with self._session.post(
                f"{base_url}/chat/completions",
                json=payload,
                headers=headers,
                timeout=_STREAM_TIMEOUT,
                stream=True,
            ) as resp:
                if not 200 <= resp.status_code < 300:
                    body = resp.text
                    raise TransportError(f"OpenRouter Error: {body}", status_code=resp.status_code, body=body)
                yield from iter_sse_fragments(resp.iter_content(chunk_size=None))
        except requests.exceptions.RequestException as exc:
            LOG.warning("stream_transport_failed", extra={"provider": self.name, "err": str(exc)})
            raise TransportError(str(exc)) from exc


PROVIDER_STREAMS: Dict[str, Type[ProviderStream]] = {
    GeminiStream.name: GeminiStream,
    OpenRouterStream.name: OpenRouterStream,
}


def get_provider_stream(settings: AISettings, env: Optional[Mapping[str, str]] = None) -> ProviderStream:
    """Build the transport for ``settings``; fails fast without credentials."""

    selection = resolve_selection(settings, env)
    stream_cls = PROVIDER_STREAMS.get(selection.name)
    if stream_cls is None:
        raise ValueError(f"Unknown provider: {selection.name}")
    return stream_cls(selection)


def stream_app_generation(
    history: Sequence[Message],
    settings: AISettings,
    env: Optional[Mapping[str, str]] = None,
) -> Iterator[str]:
    """Return the fragment iterator for one generation request.

    ``CredentialMissing`` is raised here, before any connection is opened.
    """

    provider = get_provider_stream(settings, env)
    return provider.stream(list(history))
