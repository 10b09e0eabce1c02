from __future__ import annotations

"""
Derived "is this confidence score still trustworthy" signal.

Design intent:
- Local half: the segment whose speaker carries an active override is flagged
  as manually reassigned.
- Global half (taint): any active override, manually added speaker or
  overridden registry entry marks every segment's confidence unreliable.
  Scope to be revisited with product owners; keep it global until then.
"""

from speakerbind.internal_core.contracts import TranscriptSegment
from speakerbind.overrides.tracker import OverrideTracker
from speakerbind.registry.store import SpeakerRegistry


class ConfidenceInvalidation:
    def __init__(self, registry: SpeakerRegistry, tracker: OverrideTracker) -> None:
        self._registry = registry
        self._tracker = tracker

    def is_manually_reassigned(self, segment: TranscriptSegment) -> bool:
        return self._tracker.is_overridden(segment.speaker)

    def is_tainted(self) -> bool:
        if self._tracker.override_count:
            return True
        for entry in self._registry.entries:
            if entry.is_overridden or entry.source == "ManuallyAdded":
                return True
        return False

    def is_invalidated(self, segment: TranscriptSegment) -> bool:
        return self.is_manually_reassigned(segment) or self.is_tainted()
