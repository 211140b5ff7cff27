from __future__ import annotations

import json
from types import SimpleNamespace

import pytest
import requests

from neonvibe.domain.errors import CredentialMissing, ProviderLogicError, TransportError
from neonvibe.domain.models import AISettings, Message
from neonvibe.services import stream_adapter as sa
from neonvibe.services.model_router import ProviderSelection


def _frame(text: str) -> str:
    return "data: " + json.dumps({"choices": [{"delta": {"content": text}}]}, ensure_ascii=False) + "\n"


class FakeResponse:
    def __init__(self, chunks=(), status_code: int = 200, text: str = "") -> None:
        self._chunks = list(chunks)
        self.status_code = status_code
        self.text = text
        self.closed = False
        self.pulled = 0

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.closed = True
        return False

    def iter_content(self, chunk_size=None):
        for chunk in self._chunks:
            self.pulled += 1
            yield chunk


class FakeSession:
    def __init__(self, response=None, error: Exception | None = None) -> None:
        self.response = response
        self.error = error
        self.calls = []

    def post(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if self.error is not None:
            raise self.error
        return self.response


def _openrouter(session: FakeSession, key: str = "sk-test") -> sa.OpenRouterStream:
    selection = ProviderSelection(
        name="openrouter",
        model="anthropic/claude-3.5-sonnet",
        api_key=key,
        base_url="https://openrouter.ai/api/v1/",
    )
    return sa.OpenRouterStream(selection, session=session)


def test_frame_split_across_chunks_yields_once_then_stops():
    chunks = [
        b'data: {"choices":[{"delta":{"con',
        b'tent":"Hi"}}]}\n\ndata: [DONE]\n',
    ]
    assert list(sa.iter_sse_fragments(chunks)) == ["Hi"]


def test_done_sentinel_stops_reading_further_chunks():
    pulled = []

    def chunks():
        pulled.append(1)
        yield (_frame("a") + "data: [DONE]\n").encode()
        pulled.append(2)
        yield _frame("never").encode()

    assert list(sa.iter_sse_fragments(chunks())) == ["a"]
    assert pulled == [1]


def test_malformed_and_foreign_lines_are_skipped():
    body = (
        ": OPENROUTER PROCESSING\n"
        "event: ping\n"
        "data: {not json}\n"
        + _frame("one")
        + 'data: {"choices":[{"delta":{}}]}\n'
        + 'data: {"choices":[]}\n'
        + "data: [1, 2]\n"
        + _frame("")
        + _frame("two")
    )
    assert list(sa.iter_sse_fragments([body.encode()])) == ["one", "two"]


def test_crlf_lines_and_split_multibyte_characters():
    raw = _frame("néon ✨").replace("\n", "\r\n").encode("utf-8")
    cut = raw.index("✨".encode("utf-8")) + 1
    assert list(sa.iter_sse_fragments([raw[:cut], raw[cut:]])) == ["néon ✨"]


def test_trailing_partial_line_is_not_parsed():
    assert list(sa.iter_sse_fragments([_frame("a").encode(), b'data: {"choices":[{"delta":{"content":"b"}}]}'])) == ["a"]


def test_error_frame_raises_provider_logic_error():
    body = _frame("partial") + 'data: {"error": {"message": "Model overloaded"}}\n'
    gen = sa.iter_sse_fragments([body.encode()])
    assert next(gen) == "partial"
    with pytest.raises(ProviderLogicError, match="Model overloaded"):
        next(gen)


def test_openrouter_posts_expected_payload():
    response = FakeResponse(chunks=[(_frame("<file") + _frame(' name="a">')).encode(), b"data: [DONE]\n"])
    session = FakeSession(response)
    history = [Message(role="user", content="build"), Message(role="model", content="ok"), Message(role="user", content="more")]

    assert list(_openrouter(session).stream(history)) == ["<file", ' name="a">']

    url, kwargs = session.calls[0]
    assert url == "https://openrouter.ai/api/v1/chat/completions"
    assert kwargs["stream"] is True
    assert kwargs["headers"]["Authorization"] == "Bearer sk-test"
    body = kwargs["json"]
    assert body["stream"] is True
    assert body["model"] == "anthropic/claude-3.5-sonnet"
    assert [m["role"] for m in body["messages"]] == ["system", "user", "assistant", "user"]
    assert "<file name=" in body["messages"][0]["content"]
    assert response.closed


def test_openrouter_non_success_status_carries_body():
    session = FakeSession(FakeResponse(status_code=401, text='{"error":"No auth credentials found"}'))
    with pytest.raises(TransportError) as info:
        list(_openrouter(session).stream([Message(role="user", content="x")]))
    assert info.value.status_code == 401
    assert "No auth credentials found" in str(info.value)
    assert info.value.body == '{"error":"No auth credentials found"}'


def test_openrouter_connection_failure_is_transport_error():
    session = FakeSession(error=requests.exceptions.ConnectionError("connection refused"))
    with pytest.raises(TransportError, match="connection refused"):
        list(_openrouter(session).stream([Message(role="user", content="x")]))


def test_closing_openrouter_stream_early_releases_response():
    response = FakeResponse(chunks=[_frame("a").encode(), _frame("b").encode(), _frame("c").encode()])
    gen = _openrouter(FakeSession(response)).stream([Message(role="user", content="x")])
    assert next(gen) == "a"
    gen.close()
    assert response.closed
    assert response.pulled == 1


def test_missing_key_fails_before_any_network_activity(monkeypatch):
    def _no_network(*_a, **_k):
        raise AssertionError("network must not be touched")

    monkeypatch.setattr(sa, "_build_session", _no_network)
    monkeypatch.setattr(sa.genai, "Client", _no_network)
    history = [Message(role="user", content="x")]
    with pytest.raises(CredentialMissing):
        sa.stream_app_generation(history, AISettings(provider="openrouter", api_key=""))
    with pytest.raises(CredentialMissing):
        sa.stream_app_generation(history, AISettings(provider="gemini", api_key="  "))


class _StubModels:
    def __init__(self, chunks, error=None):
        self._chunks = chunks
        self._error = error
        self.calls = []

    def generate_content_stream(self, **kwargs):
        self.calls.append(kwargs)
        if self._error is not None:
            raise self._error
        return iter(self._chunks)


def _stub_genai(monkeypatch, chunks=(), error=None):
    models = _StubModels(list(chunks), error)
    created = []

    class StubClient:
        def __init__(self, api_key):
            created.append(api_key)
            self.models = models

    monkeypatch.setattr(sa.genai, "Client", StubClient)
    return models, created


def _chunk(text, block_reason=None):
    feedback = SimpleNamespace(block_reason=block_reason) if block_reason else None
    return SimpleNamespace(text=text, prompt_feedback=feedback)


def test_gemini_yields_non_empty_deltas(monkeypatch):
    models, created = _stub_genai(monkeypatch, [_chunk("Sure"), _chunk(""), _chunk(None), _chunk(", here")])
    settings = AISettings(provider="gemini", api_key="g-key", model="gemini-2.5-flash")
    history = [Message(role="user", content="make a todo app")]

    assert list(sa.stream_app_generation(history, settings)) == ["Sure", ", here"]
    assert created == ["g-key"]
    call = models.calls[0]
    assert call["model"] == "gemini-2.5-flash"
    assert call["contents"] == [{"role": "user", "parts": [{"text": "make a todo app"}]}]
    assert "index.html" in call["config"]["system_instruction"]


def test_gemini_library_failure_is_transport_error(monkeypatch):
    _stub_genai(monkeypatch, error=RuntimeError("429 RESOURCE_EXHAUSTED"))
    settings = AISettings(provider="gemini", api_key="g-key")
    with pytest.raises(TransportError, match="RESOURCE_EXHAUSTED"):
        list(sa.stream_app_generation([Message(role="user", content="x")], settings))


def test_gemini_blocked_prompt_is_provider_logic_error(monkeypatch):
    _stub_genai(monkeypatch, [_chunk(None, block_reason="SAFETY")])
    settings = AISettings(provider="gemini", api_key="g-key")
    with pytest.raises(ProviderLogicError, match="SAFETY"):
        list(sa.stream_app_generation([Message(role="user", content="x")], settings))


def test_gemini_empty_stream_ends_quietly(monkeypatch):
    _stub_genai(monkeypatch, [])
    settings = AISettings(provider="gemini", api_key="g-key")
    assert list(sa.stream_app_generation([Message(role="user", content="x")], settings)) == []


def test_environment_key_is_used_when_settings_key_empty(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "env-key")
    _, created = _stub_genai(monkeypatch, [_chunk("ok")])
    assert list(sa.stream_app_generation([Message(role="user", content="x")], AISettings(provider="gemini"))) == ["ok"]
    assert created == ["env-key"]
