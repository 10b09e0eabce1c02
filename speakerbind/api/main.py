from __future__ import annotations

"""
HTTP surface for session-scoped speaker identity workspaces.

Design intent:
- Keep API orchestration thin and typed; all rules live in the workspace.
- Map policy rejections to `ok=false` payloads and faults to HTTP errors.
- Never persist anything: workspaces live in process memory until they expire.
"""

import asyncio
import logging
from contextlib import asynccontextmanager, contextmanager
from typing import Any, AsyncIterator, Iterator, Literal, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from speakerbind.internal_core.config import SessionConfig, load_config
from speakerbind.internal_core.contracts import (
    EditResult,
    OverrideAction,
    RemovalRequest,
    ResolvedSegment,
    SaveResult,
    SessionStatus,
    SpeakerEntry,
    TranscriptSegment,
    ValidationError,
)
from speakerbind.overrides.tracker import InvalidOverrideError
from speakerbind.registry.store import UnknownSpeakerError
from speakerbind.session_store import InMemorySessionStore
from speakerbind.workspace import SpeakerWorkspace

logger = logging.getLogger(__name__)


class WorkspaceCreatedResponse(BaseModel):
    workspace_id: str
    status: SessionStatus


class InitializeSpeakersRequest(BaseModel):
    detected_speakers: list[str] = Field(default_factory=list)
    segments: list[TranscriptSegment] = Field(default_factory=list)
    existing_entries: list[SpeakerEntry] = Field(default_factory=list)


class SpeakersResponse(BaseModel):
    workspace_id: str
    entries: list[SpeakerEntry] = Field(default_factory=list)
    draft: list[SpeakerEntry] = Field(default_factory=list)
    detected_speakers: list[str] = Field(default_factory=list)
    pending_removal: Optional[str] = None
    has_pending_changes: bool = False
    editing: list[str] = Field(default_factory=list)
    validation_errors: dict[str, list[ValidationError]] = Field(default_factory=dict)
    mapped_count: int = 0
    unmapped_count: int = 0
    mapped_label: str = "0/0"


class UpdateFieldRequest(BaseModel):
    field: Literal["name", "role"]
    value: str = Field(default="", max_length=100)


class UpdateFieldResponse(BaseModel):
    speaker_id: str
    errors: list[ValidationError] = Field(default_factory=list)


class ExtendRequest(BaseModel):
    minutes: float = Field(gt=0.0, le=1440.0)


class OverrideRequest(BaseModel):
    new_name: str = Field(min_length=1, max_length=100)


class OverrideResponse(BaseModel):
    speaker_id: str
    display_name: str
    action: Optional[OverrideAction] = None


class ResolveResponse(BaseModel):
    speaker_id: str
    display_name: str


class TranscriptResolveRequest(BaseModel):
    segments: list[TranscriptSegment] = Field(default_factory=list)


class TranscriptResolveResponse(BaseModel):
    segments: list[ResolvedSegment] = Field(default_factory=list)
    tainted: bool = False


class SnapshotResponse(BaseModel):
    speakers: dict[str, str] = Field(default_factory=dict)


def _get_config() -> SessionConfig:
    existing = getattr(app.state, "speakerbind_config", None)
    if isinstance(existing, SessionConfig):
        return existing
    created = load_config()
    setattr(app.state, "speakerbind_config", created)
    return created


def _get_session_store() -> InMemorySessionStore:
    existing = getattr(app.state, "session_store", None)
    if isinstance(existing, InMemorySessionStore):
        return existing
    created = InMemorySessionStore(_get_config())
    setattr(app.state, "session_store", created)
    return created


async def _tick_loop(store: InMemorySessionStore, interval_sec: float) -> None:
    while True:
        await asyncio.sleep(interval_sec)
        try:
            store.tick_all()
            store.cleanup_expired_workspaces()
        except Exception:
            logger.exception("session tick failed")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    config = _get_config()
    logging.getLogger("speakerbind").setLevel(config.SPEAKERBIND_LOG_LEVEL.upper())
    store = _get_session_store()
    task = asyncio.create_task(_tick_loop(store, config.SPEAKERBIND_TICK_SECONDS))
    logger.info("speakerbind starting tick_seconds=%.1f", config.SPEAKERBIND_TICK_SECONDS)
    try:
        yield
    finally:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        store.shutdown()
        logger.info("speakerbind stopped")


app = FastAPI(title="speakerbind service", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(load_config().SPEAKERBIND_CORS_ORIGINS),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@contextmanager
def _open_workspace(workspace_id: str) -> Iterator[SpeakerWorkspace]:
    normalized = str(workspace_id or "").strip()
    if not normalized:
        raise HTTPException(status_code=400, detail="workspace_id is required.")
    store = _get_session_store()
    try:
        with store.workspace(normalized) as workspace:
            yield workspace
    except UnknownSpeakerError as exc:
        raise HTTPException(status_code=404, detail=str(exc.args[0])) from exc
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc.args[0] if exc.args else exc)) from exc
    except InvalidOverrideError as exc:
        raise HTTPException(
            status_code=400,
            detail=[error.model_dump() for error in exc.errors],
        ) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def _speakers_response(workspace_id: str, workspace: SpeakerWorkspace) -> SpeakersResponse:
    return SpeakersResponse(
        workspace_id=workspace_id,
        entries=workspace.entries(),
        draft=workspace.draft(),
        detected_speakers=workspace.registry.detected_ids,
        pending_removal=workspace.registry.pending_removal,
        has_pending_changes=workspace.has_pending_changes(),
        editing=sorted(workspace.edits.editing_ids),
        validation_errors=workspace.edits.all_errors(),
        mapped_count=workspace.get_mapped_count(),
        unmapped_count=workspace.get_unmapped_count(),
        mapped_label=workspace.mapped_label(),
    )


@app.get("/healthz")
async def healthz() -> dict[str, Any]:
    return {"status": "ok"}


@app.post("/workspaces", response_model=WorkspaceCreatedResponse)
async def create_workspace() -> WorkspaceCreatedResponse:
    store = _get_session_store()
    workspace_id = store.create_workspace()
    with _open_workspace(workspace_id) as workspace:
        return WorkspaceCreatedResponse(workspace_id=workspace_id, status=workspace.session_status())


@app.delete("/workspaces/{workspace_id}")
async def delete_workspace(workspace_id: str) -> dict[str, Any]:
    removed = _get_session_store().destroy_workspace(workspace_id, reason="user_request")
    if not removed:
        raise HTTPException(status_code=404, detail=f"Unknown workspace_id: {workspace_id}")
    return {"workspace_id": workspace_id, "destroyed": True}


# -- session lifecycle -------------------------------------------------------


@app.get("/workspaces/{workspace_id}/status", response_model=SessionStatus)
async def session_status(workspace_id: str) -> SessionStatus:
    with _open_workspace(workspace_id) as workspace:
        return workspace.session_status()


@app.post("/workspaces/{workspace_id}/extend", response_model=SessionStatus)
async def extend_session(workspace_id: str, request: ExtendRequest) -> SessionStatus:
    with _open_workspace(workspace_id) as workspace:
        return workspace.extend(request.minutes)


@app.post("/workspaces/{workspace_id}/keep-working", response_model=SessionStatus)
async def keep_working(workspace_id: str) -> SessionStatus:
    with _open_workspace(workspace_id) as workspace:
        return workspace.keep_working()


@app.post("/workspaces/{workspace_id}/warning/dismiss", response_model=SessionStatus)
async def dismiss_warning(workspace_id: str) -> SessionStatus:
    with _open_workspace(workspace_id) as workspace:
        return workspace.dismiss_warning()


@app.post("/workspaces/{workspace_id}/clear", response_model=SessionStatus)
async def clear_session(workspace_id: str) -> SessionStatus:
    with _open_workspace(workspace_id) as workspace:
        return workspace.clear()


# -- registry ----------------------------------------------------------------


@app.post("/workspaces/{workspace_id}/speakers/initialize", response_model=SpeakersResponse)
async def initialize_speakers(workspace_id: str, request: InitializeSpeakersRequest) -> SpeakersResponse:
    if not request.detected_speakers and not request.segments:
        raise HTTPException(status_code=400, detail="Provide one of: detected_speakers, segments.")
    with _open_workspace(workspace_id) as workspace:
        if request.detected_speakers:
            workspace.initialize(request.detected_speakers, request.existing_entries)
        else:
            workspace.initialize_from_segments(request.segments, request.existing_entries)
        return _speakers_response(workspace_id, workspace)


@app.get("/workspaces/{workspace_id}/speakers", response_model=SpeakersResponse)
async def list_speakers(workspace_id: str) -> SpeakersResponse:
    with _open_workspace(workspace_id) as workspace:
        return _speakers_response(workspace_id, workspace)


@app.post("/workspaces/{workspace_id}/speakers", response_model=SpeakerEntry)
async def add_speaker(workspace_id: str) -> SpeakerEntry:
    with _open_workspace(workspace_id) as workspace:
        return workspace.add_speaker()


@app.patch("/workspaces/{workspace_id}/speakers/{speaker_id}", response_model=UpdateFieldResponse)
async def update_speaker_field(
    workspace_id: str,
    speaker_id: str,
    request: UpdateFieldRequest,
) -> UpdateFieldResponse:
    with _open_workspace(workspace_id) as workspace:
        errors = workspace.update_field(speaker_id, request.field, request.value)
        return UpdateFieldResponse(speaker_id=speaker_id, errors=errors)


@app.post("/workspaces/{workspace_id}/speakers/{speaker_id}/edit", response_model=SpeakersResponse)
async def start_edit(workspace_id: str, speaker_id: str) -> SpeakersResponse:
    with _open_workspace(workspace_id) as workspace:
        workspace.start_edit(speaker_id)
        return _speakers_response(workspace_id, workspace)


@app.post("/workspaces/{workspace_id}/speakers/{speaker_id}/edit/confirm", response_model=EditResult)
async def confirm_edit(workspace_id: str, speaker_id: str) -> EditResult:
    with _open_workspace(workspace_id) as workspace:
        return workspace.confirm_edit(speaker_id)


@app.post("/workspaces/{workspace_id}/speakers/{speaker_id}/edit/cancel", response_model=SpeakersResponse)
async def cancel_edit(workspace_id: str, speaker_id: str) -> SpeakersResponse:
    with _open_workspace(workspace_id) as workspace:
        workspace.cancel_edit(speaker_id)
        return _speakers_response(workspace_id, workspace)


@app.post("/workspaces/{workspace_id}/speakers/{speaker_id}/remove", response_model=RemovalRequest)
async def request_removal(workspace_id: str, speaker_id: str) -> RemovalRequest:
    with _open_workspace(workspace_id) as workspace:
        return workspace.request_removal(speaker_id)


@app.post("/workspaces/{workspace_id}/speakers/remove/confirm", response_model=RemovalRequest)
async def confirm_removal(workspace_id: str) -> RemovalRequest:
    with _open_workspace(workspace_id) as workspace:
        return workspace.confirm_removal()


@app.post("/workspaces/{workspace_id}/speakers/remove/cancel", response_model=SpeakersResponse)
async def cancel_removal(workspace_id: str) -> SpeakersResponse:
    with _open_workspace(workspace_id) as workspace:
        workspace.cancel_removal()
        return _speakers_response(workspace_id, workspace)


@app.post("/workspaces/{workspace_id}/speakers/save", response_model=SaveResult)
async def save_speakers(workspace_id: str) -> SaveResult:
    with _open_workspace(workspace_id) as workspace:
        return workspace.save()


@app.post("/workspaces/{workspace_id}/speakers/discard", response_model=SpeakersResponse)
async def discard_speakers(workspace_id: str) -> SpeakersResponse:
    with _open_workspace(workspace_id) as workspace:
        workspace.discard()
        return _speakers_response(workspace_id, workspace)


# -- overrides and resolution ------------------------------------------------


@app.post("/workspaces/{workspace_id}/overrides/{speaker_id}", response_model=OverrideResponse)
async def apply_override(workspace_id: str, speaker_id: str, request: OverrideRequest) -> OverrideResponse:
    with _open_workspace(workspace_id) as workspace:
        action = workspace.apply_override(speaker_id, request.new_name)
        return OverrideResponse(
            speaker_id=speaker_id,
            display_name=workspace.resolve_display_name(speaker_id),
            action=action,
        )


@app.delete("/workspaces/{workspace_id}/overrides/{speaker_id}", response_model=OverrideResponse)
async def revert_override(workspace_id: str, speaker_id: str) -> OverrideResponse:
    with _open_workspace(workspace_id) as workspace:
        action = workspace.revert_override(speaker_id)
        return OverrideResponse(
            speaker_id=speaker_id,
            display_name=workspace.resolve_display_name(speaker_id),
            action=action,
        )


@app.get("/workspaces/{workspace_id}/resolve/{speaker_id}", response_model=ResolveResponse)
async def resolve_display_name(workspace_id: str, speaker_id: str) -> ResolveResponse:
    with _open_workspace(workspace_id) as workspace:
        return ResolveResponse(speaker_id=speaker_id, display_name=workspace.resolve_display_name(speaker_id))


@app.post("/workspaces/{workspace_id}/transcript/resolve", response_model=TranscriptResolveResponse)
async def resolve_transcript(workspace_id: str, request: TranscriptResolveRequest) -> TranscriptResolveResponse:
    with _open_workspace(workspace_id) as workspace:
        return TranscriptResolveResponse(
            segments=workspace.resolve_transcript(request.segments),
            tainted=workspace.confidence.is_tainted(),
        )


@app.get("/workspaces/{workspace_id}/snapshot", response_model=SnapshotResponse)
async def speaker_snapshot(workspace_id: str) -> SnapshotResponse:
    with _open_workspace(workspace_id) as workspace:
        return SnapshotResponse(speakers=dict(workspace.speaker_snapshot()))
