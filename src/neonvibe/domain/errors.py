from __future__ import annotations

from typing import Optional


class AdapterError(Exception):
    """Fatal failure of a provider stream; ends the current turn."""

    kind = "adapter_error"


class CredentialMissing(AdapterError):
    kind = "credential_missing"

    def __init__(self, provider: str) -> None:
        super().__init__(f"API Key is required for {provider}. Please configure it in Settings.")
        self.provider = provider


class TransportError(AdapterError):
    kind = "transport_error"

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ProviderLogicError(AdapterError):
    """The provider accepted the request but produced nothing usable."""

    kind = "provider_logic_error"


class MalformedFrame(ValueError):
    """A single stream frame could not be decoded; skipped by the adapter."""


class TurnInProgress(RuntimeError):
    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session {session_id} is already generating")
        self.session_id = session_id
