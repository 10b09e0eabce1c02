from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

SpeakerSource = Literal["AutoDetected", "ManuallyAdded"]

SpeakerField = Literal["name", "role"]

OverrideActionType = Literal["Override", "Revert"]

SessionPhase = Literal["Active", "Warning", "Expired"]

UNASSIGNED_LABEL = "Unassigned"


class SpeakerEntry(BaseModel):
    model_config = ConfigDict(extra="forbid")

    speaker_id: str = Field(min_length=1)
    name: str = ""
    role: str = ""
    source: SpeakerSource = "AutoDetected"
    original_name: str = ""
    original_role: str = ""
    is_overridden: bool = False
    overridden_at: Optional[datetime] = None


class ValidationError(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    field: SpeakerField
    message: str
    speaker_id: str


class OverrideAction(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    speaker_id: str
    action: OverrideActionType
    original_value: str
    new_value: str
    timestamp: datetime


class TranscriptSegment(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    start: float = Field(ge=0.0)
    end: float = Field(ge=0.0)
    text: str
    speaker: str
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _validate_window(self) -> "TranscriptSegment":
        if self.end < self.start:
            raise ValueError("TranscriptSegment.end must be >= TranscriptSegment.start")
        return self


class ResolvedSegment(BaseModel):
    model_config = ConfigDict(extra="forbid")

    start: float
    end: float
    text: str
    speaker: str
    confidence: Optional[float] = None
    display_name: str
    manually_reassigned: bool = False
    confidence_invalidated: bool = False


class SessionState(BaseModel):
    model_config = ConfigDict(extra="forbid")

    session_id: str
    started_at: float
    last_activity_at: float
    timeout_budget_minutes: float = Field(gt=0.0)
    warning_threshold_minutes: float = Field(ge=0.0)
    extension_minutes: float = 0.0
    warning_dismissed_at: Optional[float] = None


class SessionStatus(BaseModel):
    model_config = ConfigDict(extra="forbid")

    state: SessionPhase
    remaining_minutes: float
    session_id: str
    session_duration_minutes: float = 0.0
    last_activity_at: Optional[datetime] = None
    extension_minutes: float = 0.0
    warning_visible: bool = False
    override_count: int = 0
    has_overrides: bool = False
    data_size: str = "0 B"


class RemovalRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    ok: bool
    speaker_id: str
    display_name: str = ""
    message: str = ""


class SaveResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    ok: bool
    message: str = ""
    errors: Dict[str, List[ValidationError]] = Field(default_factory=dict)


class EditResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    ok: bool
    speaker_id: str
    errors: List[ValidationError] = Field(default_factory=list)


AuditEventType = Literal[
    "SESSION_CREATED",
    "SPEAKERS_INITIALIZED",
    "SPEAKER_ADDED",
    "SPEAKER_REMOVED",
    "SPEAKERS_SAVED",
    "SAVE_REJECTED",
    "OVERRIDE_APPLIED",
    "OVERRIDE_REVERTED",
    "SESSION_EXTENDED",
    "SESSION_CLEARED",
    "SESSION_EXPIRED",
]


class AuditEvent(BaseModel):
    model_config = ConfigDict(extra="forbid")

    ts_iso: str
    session_id: str
    type: AuditEventType
    code: str
    detail: str
