"""
intake.py — Structural validation and dedupe keys for raw submissions.

A raw report is a plain mapping (decoded JSON from the submission form).
``validate_report`` either returns a ValidatedReport or raises
ValidationError naming the first offending field; nothing is persisted
on failure.

Accepted keys:

    type                 one of AlertType (``terrorist`` accepted as ``terror``)
    location_text        non-empty string
    description          ≥ MIN_DESCRIPTION_LENGTH characters after trimming
    reported_severity    Low / Medium / High / Critical (case-insensitive)
    estimated_affected   integer ≥ 0 (default 0)
    threats              list of strings (default [])
    anonymous            bool (default False)
    reporter             {"name": str, "phone": str | None} unless anonymous

When ``anonymous`` is true any reporter block is discarded, so the two
can never disagree.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

from backend.app.alerts.models import (
    AlertType,
    ReportedSeverity,
    Reporter,
    normalize_threats,
)
from backend.app.core.errors import ValidationError

MIN_DESCRIPTION_LENGTH = 20

# Spellings used by older dashboard builds
TYPE_ALIASES: Dict[str, AlertType] = {
    "terrorist": AlertType.TERROR,
}


@dataclass(frozen=True)
class ValidatedReport:
    type: AlertType
    location_text: str
    description: str
    reported_severity: ReportedSeverity
    estimated_affected: int
    threats: Tuple[str, ...]
    reporter: Optional[Reporter]

    @property
    def dedupe_key(self) -> str:
        return dedupe_key(self.type, self.location_text)


def normalize_location(text: str) -> str:
    """Case- and whitespace-insensitive form of a location string."""
    return " ".join(text.split()).lower()


def dedupe_key(alert_type: AlertType, location_text: str) -> str:
    return f"{alert_type.value}|{normalize_location(location_text)}"


# ═══════════════════════════════════════════════════════════════════════════
# Field parsers
# ═══════════════════════════════════════════════════════════════════════════

def _parse_type(value: Any) -> AlertType:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("Alert type is required", field="type")
    key = value.strip().lower()
    if key in TYPE_ALIASES:
        return TYPE_ALIASES[key]
    try:
        return AlertType(key)
    except ValueError:
        valid = [t.value for t in AlertType]
        raise ValidationError(
            f"Invalid alert type '{value}'. Must be one of: {valid}",
            field="type",
        )


def _parse_location(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("Location is required", field="location_text")
    return value.strip()


def _parse_description(value: Any, min_length: int) -> str:
    if not isinstance(value, str):
        raise ValidationError("Description is required", field="description")
    text = value.strip()
    if len(text) < min_length:
        raise ValidationError(
            f"Description must be at least {min_length} characters",
            field="description",
            min_length=min_length,
            actual_length=len(text),
        )
    return text


def _parse_severity(value: Any) -> ReportedSeverity:
    if not isinstance(value, str):
        raise ValidationError("Severity is required", field="reported_severity")
    try:
        return ReportedSeverity.from_label(value)
    except KeyError:
        raise ValidationError(
            f"Invalid severity '{value}'. Must be one of: "
            f"{[s.label for s in ReportedSeverity]}",
            field="reported_severity",
        )


def _parse_affected(value: Any) -> int:
    if value is None:
        return 0
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(
            "Estimated affected must be a whole number",
            field="estimated_affected",
        )
    if value < 0:
        raise ValidationError(
            "Estimated affected cannot be negative",
            field="estimated_affected",
        )
    return value


def _parse_threats(value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    if not isinstance(value, (list, tuple, set, frozenset)) or not all(
        isinstance(t, str) for t in value
    ):
        raise ValidationError("Threats must be a list of strings", field="threats")
    return normalize_threats(list(value))


def _parse_reporter(raw: Mapping[str, Any]) -> Optional[Reporter]:
    if raw.get("anonymous", False):
        return None
    block = raw.get("reporter") or {}
    if not isinstance(block, Mapping):
        raise ValidationError("Reporter must be an object", field="reporter")
    name = block.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ValidationError(
            "Reporter name is required unless the report is anonymous",
            field="reporter.name",
        )
    phone = block.get("phone")
    if phone is not None and not isinstance(phone, str):
        raise ValidationError("Reporter phone must be a string", field="reporter.phone")
    return Reporter(name=name.strip(), phone=(phone.strip() or None) if phone else None)


def validate_report(
    raw: Mapping[str, Any],
    *,
    min_description_length: int = MIN_DESCRIPTION_LENGTH,
) -> ValidatedReport:
    """Validate a raw submission; first offending field wins."""
    if not isinstance(raw, Mapping):
        raise ValidationError("Report must be an object", field="report")

    return ValidatedReport(
        type=_parse_type(raw.get("type")),
        location_text=_parse_location(raw.get("location_text")),
        description=_parse_description(raw.get("description"), min_description_length),
        reported_severity=_parse_severity(raw.get("reported_severity")),
        estimated_affected=_parse_affected(raw.get("estimated_affected")),
        threats=_parse_threats(raw.get("threats")),
        reporter=_parse_reporter(raw),
    )
