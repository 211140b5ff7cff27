from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

Role = Literal["user", "model"]
ProviderName = Literal["gemini", "openrouter"]

# Relative path -> full textual content.
FileMap = Dict[str, str]


class TurnState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    COMPLETE = "complete"
    CANCELLED = "cancelled"
    ERRORED = "errored"


class Message(BaseModel):
    role: Role
    content: str = ""


class AISettings(BaseModel):
    provider: ProviderName = "gemini"
    api_key: str = ""
    model: str = ""


class AISettingsView(BaseModel):
    """Settings as returned to clients; the key itself is never echoed back."""

    provider: ProviderName
    model: str
    api_key_set: bool


class SavedSession(BaseModel):
    id: str
    title: str
    messages: List[Message] = Field(default_factory=list)
    project_files: FileMap = Field(default_factory=dict)
    preview_html: str = ""
    last_modified: int = 0


class GenerationSession(BaseModel):
    """Mutable state of one workspace conversation.

    ``preview`` always equals ``bundle_files(files)`` as of the last applied
    tick. ``cancel_requested`` is only ever True while ``streaming`` is True.
    """

    session_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    messages: List[Message] = Field(default_factory=list)
    files: FileMap = Field(default_factory=dict)
    preview: str = ""
    streaming: bool = False
    cancel_requested: bool = False
    state: TurnState = TurnState.IDLE

    @property
    def title(self) -> str:
        if not self.messages:
            return "Untitled Project"
        first = self.messages[0].content
        return first[:30] + ("..." if len(first) > 30 else "")

    def to_record(self) -> SavedSession:
        return SavedSession(
            id=self.session_id,
            title=self.title,
            messages=[m.model_copy() for m in self.messages],
            project_files=dict(self.files),
            preview_html=self.preview,
            last_modified=int(time.time() * 1000),
        )

    @classmethod
    def from_record(cls, record: SavedSession) -> "GenerationSession":
        return cls(
            session_id=record.id,
            messages=[m.model_copy() for m in record.messages],
            files=dict(record.project_files),
            preview=record.preview_html,
        )


class TurnUpdate(BaseModel):
    """Snapshot published after every applied fragment and once at the end of a turn."""

    session_id: str
    state: TurnState
    message: str
    files: FileMap = Field(default_factory=dict)
    preview: str = ""
    error: Optional[str] = None
    error_kind: Optional[str] = None
    needs_configuration: bool = False


class TurnRequest(BaseModel):
    prompt: str = Field(min_length=1)


class SessionSummary(BaseModel):
    id: str
    title: str
    last_modified: int
