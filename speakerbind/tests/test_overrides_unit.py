import pytest

from speakerbind.internal_core.clock import ManualClock
from speakerbind.internal_core.contracts import SpeakerEntry, TranscriptSegment
from speakerbind.internal_core.pubsub import ChangeFeed
from speakerbind.overrides.confidence import ConfidenceInvalidation
from speakerbind.overrides.resolver import SegmentResolver
from speakerbind.overrides.tracker import InvalidOverrideError, OverrideTracker
from speakerbind.registry.store import SpeakerRegistry


def _setup():
    clock = ManualClock()
    feed = ChangeFeed()
    tracker = OverrideTracker(feed, clock)
    registry = SpeakerRegistry(feed, tracker=tracker)
    registry.initialize(["Speaker 1", "Speaker 2", "Speaker 3"])
    confidence = ConfidenceInvalidation(registry, tracker)
    resolver = SegmentResolver(registry, tracker, confidence)
    return clock, feed, tracker, registry, confidence, resolver


def _segments() -> list[TranscriptSegment]:
    return [
        TranscriptSegment(start=0.0, end=1.5, text="How are you sleeping?", speaker="Speaker 1", confidence=0.91),
        TranscriptSegment(start=1.5, end=3.0, text="Not well lately.", speaker="Speaker 2", confidence=0.88),
        TranscriptSegment(start=3.0, end=4.0, text="Okay.", speaker="Speaker 3", confidence=0.75),
    ]


def test_apply_override_records_action_and_resolves_without_touching_registry() -> None:
    clock, _, tracker, registry, _, resolver = _setup()
    clock.advance(30.0)

    action = tracker.apply_override("Speaker 2", "  Bob ", original_value="Unassigned")

    assert action.action == "Override"
    assert action.new_value == "Bob"
    assert action.original_value == "Unassigned"
    assert action.timestamp == clock.wall()
    assert resolver.resolve("Speaker 2") == "Bob"
    assert registry.get("Speaker 2") == SpeakerEntry(speaker_id="Speaker 2")
    assert tracker.override_count == 1


def test_latest_override_wins() -> None:
    _, _, tracker, _, _, resolver = _setup()

    tracker.apply_override("Speaker 1", "Alice")
    tracker.apply_override("Speaker 1", "Alicia")

    assert resolver.resolve("Speaker 1") == "Alicia"
    assert len(tracker.history()) == 2
    assert tracker.override_count == 1


def test_revert_restores_pre_override_display_name() -> None:
    _, _, tracker, registry, _, resolver = _setup()
    registry.update_field("Speaker 1", "name", "Alice")
    registry.save()
    before = resolver.resolve("Speaker 1")

    tracker.apply_override("Speaker 1", "Dr Smith", original_value=before)
    reverted = tracker.revert_override("Speaker 1")

    assert resolver.resolve("Speaker 1") == before == "Alice"
    assert reverted is not None
    assert reverted.action == "Revert"
    assert reverted.new_value == "Alice"
    assert tracker.latest_actions()["Speaker 1"].action == "Revert"
    assert tracker.get_overrides() == {}


def test_revert_without_override_is_a_no_op() -> None:
    _, _, tracker, _, _, _ = _setup()

    assert tracker.revert_override("Speaker 3") is None
    assert tracker.history() == []


def test_apply_override_rejects_blank_and_invalid_names() -> None:
    _, _, tracker, _, _, _ = _setup()

    with pytest.raises(InvalidOverrideError) as blank:
        tracker.apply_override("Speaker 1", "   ")
    assert blank.value.errors[0].message == "Speaker name is required"

    with pytest.raises(InvalidOverrideError):
        tracker.apply_override("Speaker 1", "B0b")
    with pytest.raises(ValueError):
        tracker.apply_override("", "Bob")
    assert tracker.override_count == 0


def test_override_for_unregistered_label_is_allowed() -> None:
    _, _, tracker, _, _, resolver = _setup()

    tracker.apply_override("Speaker 9", "Guest")

    assert resolver.resolve("Speaker 9") == "Guest"
    assert resolver.snapshot()["Speaker 9"] == "Guest"


def test_resolve_falls_back_to_unassigned_and_is_idempotent() -> None:
    _, _, _, _, _, resolver = _setup()

    first = resolver.resolve("Speaker 3")
    second = resolver.resolve("Speaker 3")

    assert first == second == "Unassigned"
    assert resolver.resolve("nobody") == "Unassigned"


def test_resolve_segment_keeps_text_and_timing() -> None:
    _, _, tracker, _, _, resolver = _setup()
    tracker.apply_override("Speaker 2", "Bob")
    segment = _segments()[1]

    resolved = resolver.resolve_segment(segment)

    assert resolved.display_name == "Bob"
    assert (resolved.start, resolved.end, resolved.text) == (segment.start, segment.end, segment.text)
    assert resolved.confidence == segment.confidence
    assert resolved.manually_reassigned is True


def test_single_override_taints_every_segment() -> None:
    _, _, tracker, _, confidence, resolver = _setup()
    segments = _segments()
    assert not any(confidence.is_invalidated(segment) for segment in segments)

    tracker.apply_override("Speaker 2", "Bob")

    assert all(confidence.is_invalidated(segment) for segment in segments)
    flags = [item.manually_reassigned for item in resolver.resolve_transcript(segments)]
    assert flags == [False, True, False]


def test_manually_added_speaker_taints_after_commit() -> None:
    _, _, _, registry, confidence, _ = _setup()

    registry.add_speaker()
    assert confidence.is_tainted() is False

    registry.save()
    assert confidence.is_tainted() is True


def test_snapshot_is_read_only() -> None:
    _, _, tracker, registry, _, resolver = _setup()
    registry.update_field("Speaker 1", "name", "Alice")
    registry.save()
    tracker.apply_override("Speaker 3", "Carol")

    snapshot = resolver.snapshot()

    assert dict(snapshot) == {"Speaker 1": "Alice", "Speaker 2": "Unassigned", "Speaker 3": "Carol"}
    with pytest.raises(TypeError):
        snapshot["Speaker 1"] = "Mallory"  # type: ignore[index]


def test_tracker_publishes_and_clear_all_empties_everything() -> None:
    _, feed, tracker, _, _, _ = _setup()
    reasons: list[str] = []
    feed.subscribe(lambda event: reasons.append(event.reason))

    tracker.apply_override("Speaker 1", "Alice")
    tracker.revert_override("Speaker 1")
    tracker.clear_all()

    assert reasons == ["override_applied", "override_reverted", "cleared"]
    assert tracker.history() == []
    assert tracker.latest_actions() == {}
