from __future__ import annotations

"""
Session-scoped log of speaker override/revert actions.

Design intent:
- Overrides are lighter than renaming a registry entry and never mutate it.
- Keep only the latest action per speaker for O(1) resolution lookups.
- Overrides replace the display name only; roles change through the registry.
- Hold everything in memory; the lifecycle manager is the only wholesale eraser.
"""

import logging
from types import MappingProxyType
from typing import Mapping, Optional

from speakerbind.internal_core.clock import Clock
from speakerbind.internal_core.contracts import OverrideAction, ValidationError
from speakerbind.internal_core.pubsub import ChangeFeed
from speakerbind.registry.validation import validate_name

logger = logging.getLogger(__name__)


class InvalidOverrideError(ValueError):
    def __init__(self, speaker_id: str, errors: list[ValidationError]) -> None:
        self.speaker_id = speaker_id
        self.errors = errors
        super().__init__("; ".join(error.message for error in errors) or "Invalid override")


class OverrideTracker:
    def __init__(self, feed: ChangeFeed, clock: Clock) -> None:
        self._feed = feed
        self._clock = clock
        self._latest: dict[str, OverrideAction] = {}
        self._active: dict[str, OverrideAction] = {}
        self._log: list[OverrideAction] = []

    @property
    def override_count(self) -> int:
        return len(self._active)

    def is_overridden(self, speaker_id: str) -> bool:
        return speaker_id in self._active

    def active_override(self, speaker_id: str) -> Optional[OverrideAction]:
        return self._active.get(speaker_id)

    def get_overrides(self) -> Mapping[str, OverrideAction]:
        return MappingProxyType(dict(self._active))

    def latest_actions(self) -> Mapping[str, OverrideAction]:
        return MappingProxyType(dict(self._latest))

    def history(self) -> list[OverrideAction]:
        return list(self._log)

    def apply_override(self, speaker_id: str, new_name: str, *, original_value: str = "") -> OverrideAction:
        speaker_id = str(speaker_id or "").strip()
        if not speaker_id:
            raise ValueError("speaker_id is required")
        errors = validate_name(new_name, (), speaker_id, required=True)
        if errors:
            raise InvalidOverrideError(speaker_id, errors)

        action = OverrideAction(
            speaker_id=speaker_id,
            action="Override",
            original_value=original_value,
            new_value=new_name.strip(),
            timestamp=self._clock.wall(),
        )
        self._record(action)
        self._active[speaker_id] = action
        logger.info("override applied speaker_id=%s active=%d", speaker_id, len(self._active))
        self._feed.publish("overrides", "override_applied", speaker_id=speaker_id)
        return action

    def revert_override(self, speaker_id: str) -> Optional[OverrideAction]:
        current = self._active.pop(speaker_id, None)
        if current is None:
            return None

        action = OverrideAction(
            speaker_id=speaker_id,
            action="Revert",
            original_value=current.new_value,
            new_value=current.original_value,
            timestamp=self._clock.wall(),
        )
        self._record(action)
        logger.info("override reverted speaker_id=%s active=%d", speaker_id, len(self._active))
        self._feed.publish("overrides", "override_reverted", speaker_id=speaker_id)
        return action

    def purge_speaker(self, speaker_id: str) -> bool:
        """Forget a removed speaker entirely. Only registry removal calls this."""
        existed = speaker_id in self._latest
        self._latest.pop(speaker_id, None)
        self._active.pop(speaker_id, None)
        self._log = [item for item in self._log if item.speaker_id != speaker_id]
        if existed:
            self._feed.publish("overrides", "speaker_purged", speaker_id=speaker_id)
        return existed

    def clear_all(self) -> None:
        self._latest = {}
        self._active = {}
        self._log = []
        self._feed.publish("overrides", "cleared")

    def _record(self, action: OverrideAction) -> None:
        self._latest[action.speaker_id] = action
        self._log.append(action)
