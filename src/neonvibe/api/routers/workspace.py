from __future__ import annotations

from typing import Iterator, List

from fastapi import APIRouter, HTTPException, Response, status
from fastapi.responses import HTMLResponse, StreamingResponse
from starlette.background import BackgroundTask

from ...domain.errors import TurnInProgress
from ...domain.models import (
    AISettings,
    AISettingsView,
    GenerationSession,
    SessionSummary,
    TurnRequest,
)
from ...services.archive import ARCHIVE_NAME, build_archive
from ...services.generation import GenerationController, TurnStream
from ...services.workspace import get_workspace

router = APIRouter(tags=["workspace"])


def _settings_view(settings: AISettings) -> AISettingsView:
    return AISettingsView(provider=settings.provider, model=settings.model, api_key_set=bool(settings.api_key))


def _controller_or_404(session_id: str) -> GenerationController:
    controller = get_workspace().get_controller(session_id)
    if controller is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return controller


def _event_stream(updates: TurnStream) -> Iterator[str]:
    try:
        for update in updates:
            yield f"data: {update.model_dump_json()}\n\n"
    finally:
        # Client went away: closing the turn iterator cancels the generation.
        updates.close()


@router.get("/settings", response_model=AISettingsView)
def read_settings() -> AISettingsView:
    return _settings_view(get_workspace().settings_store.get())


@router.put("/settings", response_model=AISettingsView)
def update_settings(settings: AISettings) -> AISettingsView:
    return _settings_view(get_workspace().settings_store.save(settings))


@router.post("/sessions", response_model=GenerationSession, status_code=status.HTTP_201_CREATED)
def create_session() -> GenerationSession:
    return get_workspace().create_session().snapshot()


@router.get("/sessions", response_model=List[SessionSummary])
def list_sessions() -> List[SessionSummary]:
    return [
        SessionSummary(id=rec.id, title=rec.title, last_modified=rec.last_modified)
        for rec in get_workspace().list_sessions()
    ]


@router.get("/sessions/{session_id}", response_model=GenerationSession)
def get_session(session_id: str) -> GenerationSession:
    return _controller_or_404(session_id).snapshot()


@router.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_session(session_id: str) -> Response:
    try:
        removed = get_workspace().delete_session(session_id)
    except TurnInProgress as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    if not removed:
        raise HTTPException(status_code=404, detail="Session not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/sessions/{session_id}/turns")
def start_turn(session_id: str, req: TurnRequest) -> StreamingResponse:
    controller = _controller_or_404(session_id)
    try:
        updates = controller.start_turn(req.prompt)
    except TurnInProgress as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    headers = {"Cache-Control": "no-cache, no-transform", "X-Accel-Buffering": "no"}
    # Finishes the turn even if no event was ever pulled.
    return StreamingResponse(
        _event_stream(updates),
        media_type="text/event-stream",
        headers=headers,
        background=BackgroundTask(updates.close),
    )


@router.post("/sessions/{session_id}/cancel")
def cancel_turn(session_id: str) -> dict:
    controller = _controller_or_404(session_id)
    return {"cancelled": controller.cancel()}


@router.get("/sessions/{session_id}/preview", response_class=HTMLResponse)
def get_preview(session_id: str) -> HTMLResponse:
    return HTMLResponse(_controller_or_404(session_id).snapshot().preview)


@router.get("/sessions/{session_id}/files.zip")
def download_files(session_id: str) -> Response:
    files = _controller_or_404(session_id).snapshot().files
    if not files:
        raise HTTPException(status_code=404, detail="No files generated yet")
    headers = {"Content-Disposition": f"attachment; filename={ARCHIVE_NAME}"}
    return Response(content=build_archive(files), media_type="application/zip", headers=headers)
