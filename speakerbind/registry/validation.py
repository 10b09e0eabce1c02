from __future__ import annotations

"""
Pure speaker name/role rules.

Design intent:
- Same rule set for per-keystroke feedback and the final pre-save check.
- Return structured errors; never raise, never touch UI or session state.
- An empty name means "not yet assigned" and is only rejected when required.
"""

import re
from typing import Iterable, Sequence

from speakerbind.internal_core.contracts import SpeakerEntry, SpeakerField, ValidationError

_ALLOWED_RE = re.compile(r"^[A-Za-z\s\-'.]+$")
_MIN_LENGTH = 2


def _check_shape(candidate: str, field: SpeakerField, speaker_id: str) -> list[ValidationError]:
    label = "Name" if field == "name" else "Role"
    errors: list[ValidationError] = []
    if len(candidate) < _MIN_LENGTH:
        errors.append(
            ValidationError(
                field=field,
                message=f"{label} must be at least {_MIN_LENGTH} characters long",
                speaker_id=speaker_id,
            )
        )
    if not _ALLOWED_RE.match(candidate):
        errors.append(
            ValidationError(
                field=field,
                message=f"{label} contains invalid characters",
                speaker_id=speaker_id,
            )
        )
    return errors


def find_duplicate(
    candidate: str,
    registry_snapshot: Iterable[SpeakerEntry],
    excluding_id: str,
) -> SpeakerEntry | None:
    key = candidate.strip().lower()
    if not key:
        return None
    for entry in registry_snapshot:
        if entry.speaker_id == excluding_id:
            continue
        other = entry.name.strip().lower()
        if other and other == key:
            return entry
    return None


def validate_name(
    candidate: str,
    registry_snapshot: Sequence[SpeakerEntry],
    excluding_id: str,
    *,
    required: bool = False,
) -> list[ValidationError]:
    trimmed = (candidate or "").strip()
    if not trimmed:
        if required:
            return [ValidationError(field="name", message="Speaker name is required", speaker_id=excluding_id)]
        return []

    errors: list[ValidationError] = []
    duplicate = find_duplicate(trimmed, registry_snapshot, excluding_id)
    if duplicate is not None:
        errors.append(
            ValidationError(
                field="name",
                message=f'Name "{trimmed}" is already used by {duplicate.speaker_id}',
                speaker_id=excluding_id,
            )
        )
    errors.extend(_check_shape(trimmed, "name", excluding_id))
    return errors


def validate_role(candidate: str, speaker_id: str = "") -> list[ValidationError]:
    trimmed = (candidate or "").strip()
    if not trimmed:
        return []
    return _check_shape(trimmed, "role", speaker_id)


def validate_entry(entry: SpeakerEntry, registry_snapshot: Sequence[SpeakerEntry]) -> list[ValidationError]:
    return validate_name(entry.name, registry_snapshot, entry.speaker_id) + validate_role(
        entry.role, entry.speaker_id
    )


def validate_all(entries: Sequence[SpeakerEntry]) -> dict[str, list[ValidationError]]:
    """Validate every entry against the others; an empty dict means the set is committable."""
    errors_by_speaker: dict[str, list[ValidationError]] = {}
    for entry in entries:
        errors = validate_entry(entry, entries)
        if errors:
            errors_by_speaker[entry.speaker_id] = errors
    return errors_by_speaker
