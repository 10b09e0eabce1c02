from __future__ import annotations

"""
Shared, subscribable speaker registry for one transcript.

Design intent:
- One committed list that every consumer reads, plus one working draft that the
  mapping dialog edits; consumers never hold their own copies.
- Commits are all-or-nothing: the whole draft validates or nothing changes.
- Every successful mutation is published before control returns to the caller.
"""

import logging
import re
from typing import Callable, Iterable, Mapping, Optional, Sequence

from speakerbind.internal_core.clock import Clock, SystemClock
from speakerbind.internal_core.contracts import (
    RemovalRequest,
    SaveResult,
    SpeakerEntry,
    SpeakerField,
)
from speakerbind.internal_core.pubsub import ChangeFeed
from speakerbind.overrides.tracker import OverrideTracker
from speakerbind.registry.validation import validate_all

logger = logging.getLogger(__name__)

LAST_SPEAKER_MESSAGE = "Cannot remove the last remaining speaker. At least one speaker is required."
EMPTY_COMMIT_MESSAGE = "At least one speaker is required."
ACTIVE_EDITS_MESSAGE = "Finish or cancel the speakers you are editing before saving."
INVALID_COMMIT_MESSAGE = "Fix the highlighted speaker details before saving."

EditSnapshots = Mapping[str, tuple[str, str]]


class UnknownSpeakerError(KeyError):
    def __init__(self, speaker_id: str) -> None:
        self.speaker_id = speaker_id
        super().__init__(f"Unknown speaker_id: {speaker_id}")


def _fields_key(entry: SpeakerEntry, masked: EditSnapshots) -> tuple[str, str, str]:
    if entry.speaker_id in masked:
        name, role = masked[entry.speaker_id]
    else:
        name, role = entry.name, entry.role
    return (name.strip(), role.strip(), entry.source)


class SpeakerRegistry:
    def __init__(
        self,
        feed: ChangeFeed,
        *,
        tracker: Optional[OverrideTracker] = None,
        clock: Optional[Clock] = None,
        speaker_prefix: str = "Speaker ",
    ) -> None:
        self._feed = feed
        self._clock: Clock = clock or SystemClock()
        self._tracker = tracker
        self._prefix = speaker_prefix
        self._ordinal_re = re.compile(rf"^{re.escape(speaker_prefix)}(\d+)$")
        self._committed: list[SpeakerEntry] = []
        self._draft: list[SpeakerEntry] = []
        self._detected: list[str] = []
        self._pending_removal: Optional[str] = None
        self._edit_snapshots: Callable[[], EditSnapshots] = dict

    # -- read side -----------------------------------------------------------

    @property
    def entries(self) -> list[SpeakerEntry]:
        return [entry.model_copy() for entry in self._committed]

    @property
    def draft(self) -> list[SpeakerEntry]:
        return [entry.model_copy() for entry in self._draft]

    @property
    def detected_ids(self) -> list[str]:
        return list(self._detected)

    @property
    def pending_removal(self) -> Optional[str]:
        return self._pending_removal

    def __len__(self) -> int:
        return len(self._committed)

    def get(self, speaker_id: str) -> Optional[SpeakerEntry]:
        for entry in self._committed:
            if entry.speaker_id == speaker_id:
                return entry.model_copy()
        return None

    def get_draft(self, speaker_id: str) -> SpeakerEntry:
        return self._draft_entry(speaker_id).model_copy()

    def has_pending_changes(self, masked: Optional[EditSnapshots] = None) -> bool:
        snapshots = self._edit_snapshots() if masked is None else masked
        if [entry.speaker_id for entry in self._draft] != [entry.speaker_id for entry in self._committed]:
            return True
        committed = {entry.speaker_id: _fields_key(entry, {}) for entry in self._committed}
        return any(
            committed.get(entry.speaker_id) != _fields_key(entry, snapshots) for entry in self._draft
        )

    def attach_edit_snapshots(self, provider: Callable[[], EditSnapshots]) -> None:
        self._edit_snapshots = provider

    # -- write side ----------------------------------------------------------

    def initialize(
        self,
        detected_ids: Sequence[str],
        existing_entries: Iterable[SpeakerEntry] = (),
    ) -> list[SpeakerEntry]:
        existing: dict[str, SpeakerEntry] = {}
        for item in existing_entries:
            existing.setdefault(item.speaker_id, item)

        detected: list[str] = []
        for raw in detected_ids:
            speaker_id = str(raw or "").strip()
            if speaker_id and speaker_id not in detected:
                detected.append(speaker_id)

        merged: list[SpeakerEntry] = []
        for speaker_id in detected:
            prior = existing.get(speaker_id)
            if prior is None:
                merged.append(SpeakerEntry(speaker_id=speaker_id, source="AutoDetected"))
            else:
                merged.append(_seeded(prior))
        for speaker_id, prior in existing.items():
            if speaker_id not in detected and prior.source == "ManuallyAdded":
                merged.append(_seeded(prior))

        self._detected = detected
        self._committed = merged
        self._draft = [entry.model_copy() for entry in merged]
        self._pending_removal = None
        logger.info("registry initialized detected=%d entries=%d", len(detected), len(merged))
        self._feed.publish("registry", "initialized")
        return self.entries

    def next_speaker_id(self) -> str:
        ordinals = [0]
        candidates = list(self._detected)
        candidates.extend(entry.speaker_id for entry in self._draft)
        candidates.extend(entry.speaker_id for entry in self._committed)
        for speaker_id in candidates:
            match = self._ordinal_re.match(speaker_id)
            if match:
                ordinals.append(int(match.group(1)))
        return f"{self._prefix}{max(ordinals) + 1}"

    def add_speaker(self) -> SpeakerEntry:
        entry = SpeakerEntry(speaker_id=self.next_speaker_id(), source="ManuallyAdded")
        self._draft.insert(0, entry)
        logger.info("speaker added speaker_id=%s draft=%d", entry.speaker_id, len(self._draft))
        self._feed.publish("registry", "speaker_added", speaker_id=entry.speaker_id)
        return entry.model_copy()

    def update_field(self, speaker_id: str, field: SpeakerField, value: str) -> SpeakerEntry:
        if field not in ("name", "role"):
            raise ValueError(f"Unsupported speaker field: {field}")
        entry = self._draft_entry(speaker_id)
        setattr(entry, field, str(value if value is not None else ""))
        self._feed.publish("registry", "field_updated", speaker_id=speaker_id)
        return entry.model_copy()

    def restore_fields(self, speaker_id: str, name: str, role: str) -> SpeakerEntry:
        entry = self._draft_entry(speaker_id)
        entry.name = name
        entry.role = role
        self._feed.publish("registry", "fields_restored", speaker_id=speaker_id)
        return entry.model_copy()

    def request_removal(self, speaker_id: str) -> RemovalRequest:
        entry = self._draft_entry(speaker_id)
        if len(self._draft) <= 1:
            logger.info("removal rejected speaker_id=%s reason=last_speaker", speaker_id)
            return RemovalRequest(ok=False, speaker_id=speaker_id, message=LAST_SPEAKER_MESSAGE)
        self._pending_removal = speaker_id
        self._feed.publish("registry", "removal_requested", speaker_id=speaker_id)
        return RemovalRequest(
            ok=True,
            speaker_id=speaker_id,
            display_name=entry.name.strip() or entry.speaker_id,
        )

    remove_speaker = request_removal

    def confirm_removal(self) -> RemovalRequest:
        speaker_id = self._pending_removal
        self._pending_removal = None
        if speaker_id is None:
            return RemovalRequest(ok=False, speaker_id="", message="No speaker removal is pending.")
        if len(self._draft) <= 1:
            return RemovalRequest(ok=False, speaker_id=speaker_id, message=LAST_SPEAKER_MESSAGE)

        entry = self._draft_entry(speaker_id)
        self._draft = [item for item in self._draft if item.speaker_id != speaker_id]
        if self._tracker is not None:
            self._tracker.purge_speaker(speaker_id)
        logger.info("speaker removed speaker_id=%s draft=%d", speaker_id, len(self._draft))
        self._feed.publish("registry", "speaker_removed", speaker_id=speaker_id)
        return RemovalRequest(
            ok=True,
            speaker_id=speaker_id,
            display_name=entry.name.strip() or entry.speaker_id,
        )

    def cancel_removal(self) -> None:
        if self._pending_removal is None:
            return
        speaker_id = self._pending_removal
        self._pending_removal = None
        self._feed.publish("registry", "removal_cancelled", speaker_id=speaker_id)

    def commit(self, entries: Sequence[SpeakerEntry]) -> SaveResult:
        """Replace the committed registry with `entries` if and only if the whole set is valid."""
        editing = self._edit_snapshots()
        if editing:
            logger.info("commit rejected reason=active_edits editing=%d", len(editing))
            return SaveResult(ok=False, message=ACTIVE_EDITS_MESSAGE)
        if not entries:
            return SaveResult(ok=False, message=EMPTY_COMMIT_MESSAGE)

        ids = [entry.speaker_id for entry in entries]
        if len(set(ids)) != len(ids):
            raise ValueError("speaker_id values must be unique within a registry")

        errors = validate_all(entries)
        if errors:
            logger.info("commit rejected reason=validation speakers=%d", len(errors))
            return SaveResult(ok=False, message=INVALID_COMMIT_MESSAGE, errors=errors)

        committed = self._stamp_overrides(entries)
        self._committed = committed
        self._draft = [entry.model_copy() for entry in committed]
        self._pending_removal = None
        logger.info("registry committed entries=%d", len(committed))
        self._feed.publish("registry", "saved")
        return SaveResult(ok=True)

    def save(self) -> SaveResult:
        return self.commit(self._draft)

    def discard(self) -> None:
        self._draft = [entry.model_copy() for entry in self._committed]
        self._pending_removal = None
        self._feed.publish("registry", "discarded")

    def purge(self) -> None:
        self._committed = []
        self._draft = []
        self._detected = []
        self._pending_removal = None
        self._feed.publish("registry", "purged")

    def _stamp_overrides(self, entries: Sequence[SpeakerEntry]) -> list[SpeakerEntry]:
        """Copy `entries`, flagging any whose committed name or role was changed.

        The baseline is the prior committed entry's original value, else its
        current value. Assigning a first name to an unnamed speaker is not an
        override. Once set, the flag stays for the rest of the session.
        """
        prior_by_id = {entry.speaker_id: entry for entry in self._committed}
        stamped: list[SpeakerEntry] = []
        for entry in entries:
            item = entry.model_copy()
            prior = prior_by_id.get(item.speaker_id)
            if prior is not None:
                base_name = prior.original_name or prior.name
                base_role = prior.original_role or prior.role
                name_changed = bool(base_name.strip()) and base_name.strip() != item.name.strip()
                role_changed = bool(base_role.strip()) and base_role.strip() != item.role.strip()
                if name_changed or role_changed:
                    item.original_name = base_name
                    item.original_role = base_role
                    if not prior.is_overridden or item.name != prior.name or item.role != prior.role:
                        item.overridden_at = self._clock.wall()
                        logger.info("speaker override flagged speaker_id=%s", item.speaker_id)
                    else:
                        item.overridden_at = prior.overridden_at
                    item.is_overridden = True
                elif prior.is_overridden:
                    item.is_overridden = True
                    item.overridden_at = prior.overridden_at
            stamped.append(item)
        return stamped

    def _draft_entry(self, speaker_id: str) -> SpeakerEntry:
        for entry in self._draft:
            if entry.speaker_id == speaker_id:
                return entry
        raise UnknownSpeakerError(speaker_id)


def _seeded(prior: SpeakerEntry) -> SpeakerEntry:
    entry = prior.model_copy()
    if not entry.original_name:
        entry.original_name = entry.name
    if not entry.original_role:
        entry.original_role = entry.role
    return entry
