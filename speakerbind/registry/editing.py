from __future__ import annotations

import logging
from typing import Mapping

from speakerbind.internal_core.contracts import EditResult, SpeakerField, ValidationError
from speakerbind.internal_core.pubsub import ChangeEvent, ChangeFeed
from speakerbind.registry.store import EditSnapshots, SpeakerRegistry
from speakerbind.registry.validation import validate_entry

logger = logging.getLogger(__name__)

_RESET_REASONS = {"initialized", "discarded", "purged", "saved"}


class EditSession:
    """Per-entry edit lifecycle over the registry draft.

    `start_edit` snapshots name/role, `confirm_edit` keeps the draft only when it
    validates, `cancel_edit` restores the snapshot. The error cache here is for
    display only; the rules live in `validation`.
    """

    def __init__(self, registry: SpeakerRegistry, feed: ChangeFeed) -> None:
        self._registry = registry
        self._feed = feed
        self._snapshots: dict[str, tuple[str, str]] = {}
        self._errors: dict[str, list[ValidationError]] = {}
        registry.attach_edit_snapshots(self.snapshots)
        feed.subscribe(self._on_change)

    @property
    def editing_ids(self) -> frozenset[str]:
        return frozenset(self._snapshots)

    @property
    def has_active_edits(self) -> bool:
        return bool(self._snapshots)

    @property
    def has_validation_errors(self) -> bool:
        return bool(self._errors)

    def is_editing(self, speaker_id: str) -> bool:
        return speaker_id in self._snapshots

    def snapshots(self) -> EditSnapshots:
        return dict(self._snapshots)

    def errors_for(self, speaker_id: str) -> list[ValidationError]:
        return list(self._errors.get(speaker_id, []))

    def all_errors(self) -> dict[str, list[ValidationError]]:
        return {speaker_id: list(errors) for speaker_id, errors in self._errors.items()}

    def start_edit(self, speaker_id: str) -> None:
        entry = self._registry.get_draft(speaker_id)
        if speaker_id in self._snapshots:
            return
        self._snapshots[speaker_id] = (entry.name, entry.role)
        self._feed.publish("edits", "edit_started", speaker_id=speaker_id)

    def update_draft(self, speaker_id: str, field: SpeakerField, value: str) -> list[ValidationError]:
        self._registry.update_field(speaker_id, field, value)
        errors = validate_entry(self._registry.get_draft(speaker_id), self._registry.draft)
        self._cache_errors(speaker_id, errors)
        return errors

    def confirm_edit(self, speaker_id: str) -> EditResult:
        entry = self._registry.get_draft(speaker_id)
        errors = validate_entry(entry, self._registry.draft)
        if errors:
            self._cache_errors(speaker_id, errors)
            logger.info("edit confirm rejected speaker_id=%s errors=%d", speaker_id, len(errors))
            self._feed.publish("edits", "edit_rejected", speaker_id=speaker_id)
            return EditResult(ok=False, speaker_id=speaker_id, errors=errors)

        self._snapshots.pop(speaker_id, None)
        self._errors.pop(speaker_id, None)
        self._feed.publish("edits", "edit_confirmed", speaker_id=speaker_id)
        return EditResult(ok=True, speaker_id=speaker_id)

    def cancel_edit(self, speaker_id: str) -> None:
        snapshot = self._snapshots.pop(speaker_id, None)
        self._errors.pop(speaker_id, None)
        if snapshot is not None:
            name, role = snapshot
            self._registry.restore_fields(speaker_id, name, role)
        self._feed.publish("edits", "edit_cancelled", speaker_id=speaker_id)

    def show_errors(self, errors_by_speaker: Mapping[str, list[ValidationError]]) -> None:
        self._errors = {speaker_id: list(errors) for speaker_id, errors in errors_by_speaker.items() if errors}
        self._feed.publish("edits", "errors_shown")

    def reset(self) -> None:
        self._snapshots = {}
        self._errors = {}

    def _cache_errors(self, speaker_id: str, errors: list[ValidationError]) -> None:
        if errors:
            self._errors[speaker_id] = list(errors)
        else:
            self._errors.pop(speaker_id, None)

    def _on_change(self, event: ChangeEvent) -> None:
        if event.topic != "registry":
            return
        if event.reason in _RESET_REASONS:
            self.reset()
        elif event.reason == "speaker_removed" and event.speaker_id is not None:
            self._snapshots.pop(event.speaker_id, None)
            self._errors.pop(event.speaker_id, None)
