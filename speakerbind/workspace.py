from __future__ import annotations

"""
One user's speaker-identity workspace: registry, edits, overrides and the
session clock that bounds their lifetime.

Design intent:
- Every mutating call is a qualifying interaction and goes through the
  lifecycle manager first, so an overdue session is purged before it is used.
- Reads are side-effect free apart from running timers that have come due.
- All consumers (mapping dialog, summary panel, transcript panel) subscribe to
  the same change feed; nobody keeps a private copy of the registry.
"""

import logging
from typing import Iterable, Mapping, Optional, Sequence

from speakerbind.internal_core.audit import log_event
from speakerbind.internal_core.clock import Clock, Scheduler, SystemClock
from speakerbind.internal_core.config import SessionConfig, load_config
from speakerbind.internal_core.contracts import (
    AuditEvent,
    EditResult,
    OverrideAction,
    RemovalRequest,
    ResolvedSegment,
    SaveResult,
    SessionStatus,
    SpeakerEntry,
    SpeakerField,
    TranscriptSegment,
    ValidationError,
)
from speakerbind.internal_core.lifecycle import SessionLifecycleManager
from speakerbind.internal_core.pubsub import ChangeFeed, Listener
from speakerbind.overrides.confidence import ConfidenceInvalidation
from speakerbind.overrides.resolver import SegmentResolver
from speakerbind.overrides.tracker import OverrideTracker
from speakerbind.registry.editing import EditSession
from speakerbind.registry.store import ACTIVE_EDITS_MESSAGE, SpeakerRegistry

logger = logging.getLogger(__name__)


def detected_speakers(segments: Iterable[TranscriptSegment]) -> list[str]:
    """Speaker labels in order of first appearance."""
    seen: list[str] = []
    for segment in segments:
        label = segment.speaker.strip()
        if label and label not in seen:
            seen.append(label)
    return seen


class SpeakerWorkspace:
    def __init__(
        self,
        config: Optional[SessionConfig] = None,
        *,
        clock: Optional[Clock] = None,
    ) -> None:
        self.config = config or load_config()
        self.clock: Clock = clock or SystemClock()
        self.scheduler = Scheduler(self.clock)
        self.feed = ChangeFeed()
        self.audit_events: list[AuditEvent] = []
        self.tracker = OverrideTracker(self.feed, self.clock)
        self.registry = SpeakerRegistry(
            self.feed,
            tracker=self.tracker,
            clock=self.clock,
            speaker_prefix=self.config.SPEAKERBIND_SPEAKER_PREFIX,
        )
        self.edits = EditSession(self.registry, self.feed)
        self.confidence = ConfidenceInvalidation(self.registry, self.tracker)
        self.resolver = SegmentResolver(self.registry, self.tracker, self.confidence)
        self.lifecycle = SessionLifecycleManager(
            self.config,
            self.scheduler,
            self.feed,
            registry=self.registry,
            tracker=self.tracker,
            on_purge=self._on_purge,
            on_restart=self._on_restart,
        )
        log_event(self, "SESSION_CREATED", "created")

    @property
    def session_id(self) -> str:
        return self.lifecycle.session_id

    # -- subscription --------------------------------------------------------

    def subscribe(self, listener: Listener):
        return self.feed.subscribe(listener)

    # -- registry ------------------------------------------------------------

    def initialize(
        self,
        detected_ids: Sequence[str],
        existing_entries: Iterable[SpeakerEntry] = (),
    ) -> list[SpeakerEntry]:
        self.lifecycle.touch()
        entries = self.registry.initialize(detected_ids, existing_entries)
        log_event(self, "SPEAKERS_INITIALIZED", "initialized", f"entries={len(entries)}")
        return entries

    def initialize_from_segments(
        self,
        segments: Iterable[TranscriptSegment],
        existing_entries: Iterable[SpeakerEntry] = (),
    ) -> list[SpeakerEntry]:
        return self.initialize(detected_speakers(segments), existing_entries)

    def entries(self) -> list[SpeakerEntry]:
        self.lifecycle.sync()
        return self.registry.entries

    def draft(self) -> list[SpeakerEntry]:
        self.lifecycle.sync()
        return self.registry.draft

    def add_speaker(self) -> SpeakerEntry:
        self.lifecycle.touch()
        entry = self.registry.add_speaker()
        log_event(self, "SPEAKER_ADDED", "added", f"speaker_id={entry.speaker_id}")
        return entry

    def update_field(self, speaker_id: str, field: SpeakerField, value: str) -> list[ValidationError]:
        self.lifecycle.touch()
        return self.edits.update_draft(speaker_id, field, value)

    def request_removal(self, speaker_id: str) -> RemovalRequest:
        self.lifecycle.touch()
        return self.registry.request_removal(speaker_id)

    def confirm_removal(self) -> RemovalRequest:
        self.lifecycle.touch()
        result = self.registry.confirm_removal()
        if result.ok:
            log_event(self, "SPEAKER_REMOVED", "removed", f"speaker_id={result.speaker_id}")
        return result

    def cancel_removal(self) -> None:
        self.lifecycle.touch()
        self.registry.cancel_removal()

    def has_pending_changes(self) -> bool:
        self.lifecycle.sync()
        return self.registry.has_pending_changes()

    def save(self) -> SaveResult:
        self.lifecycle.touch()
        if self.edits.has_active_edits:
            log_event(self, "SAVE_REJECTED", "active_edits", f"editing={len(self.edits.editing_ids)}")
            return SaveResult(ok=False, message=ACTIVE_EDITS_MESSAGE)
        result = self.registry.save()
        if result.ok:
            log_event(self, "SPEAKERS_SAVED", "saved", f"entries={len(self.registry)}")
        else:
            self.edits.show_errors(result.errors)
            log_event(self, "SAVE_REJECTED", "invalid", f"speakers_with_errors={len(result.errors)}")
        return result

    def discard(self) -> None:
        self.lifecycle.touch()
        self.registry.discard()

    # -- edit lifecycle ------------------------------------------------------

    def start_edit(self, speaker_id: str) -> None:
        self.lifecycle.touch()
        self.edits.start_edit(speaker_id)

    def confirm_edit(self, speaker_id: str) -> EditResult:
        self.lifecycle.touch()
        return self.edits.confirm_edit(speaker_id)

    def cancel_edit(self, speaker_id: str) -> None:
        self.lifecycle.touch()
        self.edits.cancel_edit(speaker_id)

    # -- overrides -----------------------------------------------------------

    def apply_override(self, speaker_id: str, new_name: str) -> OverrideAction:
        self.lifecycle.touch()
        action = self.tracker.apply_override(
            speaker_id,
            new_name,
            original_value=self.resolver.registry_name(speaker_id),
        )
        log_event(self, "OVERRIDE_APPLIED", "override", f"speaker_id={action.speaker_id}")
        return action

    def revert_override(self, speaker_id: str) -> Optional[OverrideAction]:
        self.lifecycle.touch()
        action = self.tracker.revert_override(speaker_id)
        if action is not None:
            log_event(self, "OVERRIDE_REVERTED", "revert", f"speaker_id={speaker_id}")
        return action

    def overrides(self) -> Mapping[str, OverrideAction]:
        self.lifecycle.sync()
        return self.tracker.get_overrides()

    # -- derived views -------------------------------------------------------

    def resolve_display_name(self, speaker_id: str) -> str:
        self.lifecycle.sync()
        return self.resolver.resolve(speaker_id)

    def resolve_segment(self, segment: TranscriptSegment) -> ResolvedSegment:
        self.lifecycle.sync()
        return self.resolver.resolve_segment(segment)

    def resolve_transcript(self, segments: Iterable[TranscriptSegment]) -> list[ResolvedSegment]:
        self.lifecycle.sync()
        return self.resolver.resolve_transcript(segments)

    def is_invalidated(self, segment: TranscriptSegment) -> bool:
        self.lifecycle.sync()
        return self.confidence.is_invalidated(segment)

    def speaker_snapshot(self) -> Mapping[str, str]:
        self.lifecycle.sync()
        return self.resolver.snapshot()

    def get_mapped_count(self) -> int:
        self.lifecycle.sync()
        detected = set(self.registry.detected_ids)
        mapped = 0
        for entry in self.registry.entries:
            if self.tracker.is_overridden(entry.speaker_id):
                mapped += 1
            elif entry.speaker_id in detected and entry.name.strip():
                mapped += 1
        return mapped

    def get_unmapped_count(self) -> int:
        return len(self.entries()) - self.get_mapped_count()

    def mapped_label(self) -> str:
        return f"{self.get_mapped_count()}/{len(self.entries())}"

    # -- session -------------------------------------------------------------

    def session_status(self) -> SessionStatus:
        return self.lifecycle.status()

    def extend(self, minutes: float) -> SessionStatus:
        status = self.lifecycle.extend(minutes)
        log_event(self, "SESSION_EXTENDED", "extend", f"minutes={float(minutes):g}")
        return status

    def keep_working(self) -> SessionStatus:
        return self.extend(self.config.SPEAKERBIND_KEEP_WORKING_MINUTES)

    def extend_long(self) -> SessionStatus:
        return self.extend(self.config.SPEAKERBIND_EXTEND_MINUTES)

    def dismiss_warning(self) -> SessionStatus:
        self.lifecycle.dismiss_warning()
        return self.lifecycle.status()

    def clear(self) -> SessionStatus:
        self.lifecycle.clear()
        return self.lifecycle.status()

    def tick(self) -> int:
        return self.lifecycle.sync()

    def shutdown(self) -> None:
        self.lifecycle.shutdown()
        self.feed.clear()

    def _on_purge(self, reason: str) -> None:
        # The trail is session data too.
        self.audit_events.clear()
        if reason == "expired":
            log_event(self, "SESSION_EXPIRED", reason)
        elif reason == "shutdown":
            log_event(self, "SESSION_CLEARED", reason)

    def _on_restart(self, reason: str) -> None:
        # A fresh session starts with one marker stamped with its own id.
        self.audit_events.clear()
        event_type = "SESSION_CLEARED" if reason == "cleared" else "SESSION_EXPIRED"
        log_event(self, event_type, reason)
