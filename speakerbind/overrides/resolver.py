from __future__ import annotations

from types import MappingProxyType
from typing import Iterable, Mapping

from speakerbind.internal_core.contracts import UNASSIGNED_LABEL, ResolvedSegment, TranscriptSegment
from speakerbind.overrides.confidence import ConfidenceInvalidation
from speakerbind.overrides.tracker import OverrideTracker
from speakerbind.registry.store import SpeakerRegistry


class SegmentResolver:
    """Display names for transcript segments: override, then registry name, then "Unassigned"."""

    def __init__(
        self,
        registry: SpeakerRegistry,
        tracker: OverrideTracker,
        confidence: ConfidenceInvalidation | None = None,
    ) -> None:
        self._registry = registry
        self._tracker = tracker
        self._confidence = confidence or ConfidenceInvalidation(registry, tracker)

    def resolve(self, speaker_id: str) -> str:
        override = self._tracker.active_override(speaker_id)
        if override is not None:
            return override.new_value
        return self.registry_name(speaker_id)

    def registry_name(self, speaker_id: str) -> str:
        """Committed name with overrides ignored; what a revert falls back to."""
        entry = self._registry.get(speaker_id)
        if entry is not None and entry.name.strip():
            return entry.name.strip()
        return UNASSIGNED_LABEL

    def resolve_segment(self, segment: TranscriptSegment) -> ResolvedSegment:
        # Text and timing pass through untouched; only the label is derived.
        return ResolvedSegment(
            start=segment.start,
            end=segment.end,
            text=segment.text,
            speaker=segment.speaker,
            confidence=segment.confidence,
            display_name=self.resolve(segment.speaker),
            manually_reassigned=self._confidence.is_manually_reassigned(segment),
            confidence_invalidated=self._confidence.is_invalidated(segment),
        )

    def resolve_transcript(self, segments: Iterable[TranscriptSegment]) -> list[ResolvedSegment]:
        return [self.resolve_segment(segment) for segment in segments]

    def snapshot(self) -> Mapping[str, str]:
        """Immutable id -> display name lookup, handed to summary/export consumers."""
        speaker_ids: list[str] = list(self._registry.detected_ids)
        for entry in self._registry.entries:
            if entry.speaker_id not in speaker_ids:
                speaker_ids.append(entry.speaker_id)
        for speaker_id in self._tracker.get_overrides():
            if speaker_id not in speaker_ids:
                speaker_ids.append(speaker_id)
        return MappingProxyType({speaker_id: self.resolve(speaker_id) for speaker_id in speaker_ids})
