from speakerbind.internal_core.contracts import SpeakerEntry
from speakerbind.registry.validation import find_duplicate, validate_all, validate_entry, validate_name, validate_role


def _entries(*names: str) -> list[SpeakerEntry]:
    return [SpeakerEntry(speaker_id=f"Speaker {idx}", name=name) for idx, name in enumerate(names, start=1)]


def test_validate_name_accepts_plain_name_and_empty_placeholder() -> None:
    registry = _entries("Alice", "")

    assert validate_name("Bob", registry, "Speaker 2") == []
    assert validate_name("   ", registry, "Speaker 2") == []
    assert validate_name("Mary-Jane O'Neil Jr.", registry, "Speaker 2") == []


def test_validate_name_required_rejects_blank() -> None:
    errors = validate_name("  ", (), "Speaker 1", required=True)

    assert len(errors) == 1
    assert errors[0].field == "name"
    assert errors[0].message == "Speaker name is required"
    assert errors[0].speaker_id == "Speaker 1"


def test_validate_name_reports_duplicate_case_insensitive_and_trimmed() -> None:
    registry = _entries("Alice", "Bob")

    errors = validate_name("  aLiCe ", registry, "Speaker 2")

    assert [error.message for error in errors] == ['Name "aLiCe" is already used by Speaker 1']


def test_validate_name_ignores_own_entry_when_checking_duplicates() -> None:
    registry = _entries("Alice", "Bob")

    assert validate_name("Alice", registry, "Speaker 1") == []


def test_validate_name_orders_duplicate_then_length_then_charset() -> None:
    registry = [SpeakerEntry(speaker_id="Speaker 1", name="7")]

    errors = validate_name("7", registry, "Speaker 2")

    assert [error.message for error in errors] == [
        'Name "7" is already used by Speaker 1',
        "Name must be at least 2 characters long",
        "Name contains invalid characters",
    ]


def test_validate_name_rejects_digits_and_symbols() -> None:
    for candidate in ("Speaker 1", "R2D2", "Ann@home", "Zoë"):
        errors = validate_name(candidate, (), "Speaker 9")
        assert [error.message for error in errors] == ["Name contains invalid characters"], candidate


def test_validate_role_uses_same_shape_rules_without_duplicate_check() -> None:
    assert validate_role("") == []
    assert validate_role("Clinician") == []
    messages = [error.message for error in validate_role("X", "Speaker 1")]
    assert messages == ["Role must be at least 2 characters long"]
    assert validate_role("Dr #1", "Speaker 1")[0].field == "role"


def test_validate_entry_combines_name_and_role_errors() -> None:
    entry = SpeakerEntry(speaker_id="Speaker 1", name="A", role="N/A")

    errors = validate_entry(entry, [entry])

    assert [(error.field, error.message) for error in errors] == [
        ("name", "Name must be at least 2 characters long"),
        ("role", "Role contains invalid characters"),
    ]


def test_validate_all_flags_both_sides_of_a_duplicate_pair() -> None:
    registry = _entries("Alice", "Bob", " alice")

    errors = validate_all(registry)

    assert sorted(errors) == ["Speaker 1", "Speaker 3"]
    assert errors["Speaker 1"][0].message == 'Name "Alice" is already used by Speaker 3'
    assert errors["Speaker 3"][0].message == 'Name "alice" is already used by Speaker 1'


def test_validate_all_returns_empty_for_committable_set() -> None:
    assert validate_all(_entries("Alice", "Bob", "")) == {}


def test_find_duplicate_skips_blank_names() -> None:
    registry = _entries("", "")

    assert find_duplicate("", registry, "Speaker 9") is None
    assert find_duplicate("Bob", registry, "Speaker 9") is None
