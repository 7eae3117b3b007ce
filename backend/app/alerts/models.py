"""
models.py — Shared data structures for the alert lifecycle engine.

Defines:
    • AlertType         — fixed incident taxonomy
    • ReportedSeverity  — self-reported severity (input to scoring)
    • AlertState        — lifecycle states
    • PlanConfidence    — Full (collaborator) / Degraded (fallback table)
    • Reporter          — optional contact of a non-anonymous submitter
    • ResolvedLocation  — geocoder output
    • ResponsePlan      — plan attached to exactly one Alert
    • Alert             — the tracked incident

═══════════════════════════════════════════════════════════════════════════
LIFECYCLE
═══════════════════════════════════════════════════════════════════════════

    Submitted ─► Validating ─► Analyzing ─► Planned ─► Dispatched ─► Resolved
                     │            ▲  │         │  ▲         │
                     │            │  ▼         ▼  │         │
                     └───────► Failed ◄────────┘  └─────────┘
                                  │                (re-plan)
                                  └──────────────► Resolved

Severity (what the reporter said) and priority score (what the scorer
computed) are distinct fields; severity is one input to the score.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional, Tuple


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class AlertType(str, Enum):
    """Incident taxonomy offered by the reporting form."""
    FLOOD      = "flood"
    EARTHQUAKE = "earthquake"
    FIRE       = "fire"
    LANDSLIDE  = "landslide"
    CYCLONE    = "cyclone"
    ACCIDENT   = "accident"
    MEDICAL    = "medical"
    TERROR     = "terror"
    OTHER      = "other"


class ReportedSeverity(IntEnum):
    """Self-reported severity — integer ordering enables comparison."""
    LOW      = 1
    MEDIUM   = 2
    HIGH     = 3
    CRITICAL = 4

    @property
    def label(self) -> str:
        return self.name.capitalize()

    @classmethod
    def from_label(cls, value: str) -> "ReportedSeverity":
        return cls[value.strip().upper()]


class AlertState(str, Enum):
    """Lifecycle state of an Alert."""
    SUBMITTED  = "submitted"
    VALIDATING = "validating"
    ANALYZING  = "analyzing"
    PLANNED    = "planned"
    DISPATCHED = "dispatched"
    FAILED     = "failed"
    RESOLVED   = "resolved"

    @property
    def is_terminal(self) -> bool:
        return self is AlertState.RESOLVED

    @property
    def has_plan(self) -> bool:
        return self in (AlertState.PLANNED, AlertState.DISPATCHED)


class PlanConfidence(str, Enum):
    FULL     = "full"      # produced by the external plan generator
    DEGRADED = "degraded"  # produced by the static fallback table


# ═══════════════════════════════════════════════════════════════════════════
# Data Structures
# ═══════════════════════════════════════════════════════════════════════════

def _generate_id() -> str:
    return f"ALR-{uuid.uuid4().hex[:12].upper()}"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Reporter:
    """Contact details of a non-anonymous submitter."""
    name: str
    phone: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "phone": self.phone}


@dataclass(frozen=True)
class ResolvedLocation:
    """
    Geocoder output.

    An unresolved lookup is still a ResolvedLocation with lat/lng set to
    None and confidence 0 — the live map renders it at the country-level
    fallback instead of blocking the pipeline.
    """
    lat: Optional[float]
    lng: Optional[float]
    confidence: float = 0.0

    @classmethod
    def unresolved(cls) -> "ResolvedLocation":
        return cls(lat=None, lng=None, confidence=0.0)

    @property
    def is_resolved(self) -> bool:
        return self.lat is not None and self.lng is not None

    @property
    def low_confidence(self) -> bool:
        return not self.is_resolved or self.confidence < 0.3

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lat": self.lat,
            "lng": self.lng,
            "confidence": round(self.confidence, 3),
            "low_confidence": self.low_confidence,
        }


@dataclass(frozen=True)
class ResponsePlan:
    """Response plan attached to exactly one Alert."""
    evacuation_routes: Tuple[str, ...]
    resources_needed: Tuple[str, ...]
    instructions: Tuple[str, ...]
    required_teams: Tuple[str, ...]
    risk_analysis: str
    estimated_response_time_minutes: int
    confidence: PlanConfidence = PlanConfidence.FULL
    generated_at: datetime = field(default_factory=_now)

    def __post_init__(self) -> None:
        if self.estimated_response_time_minutes <= 0:
            raise ValueError("estimated_response_time_minutes must be positive")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "evacuation_routes": list(self.evacuation_routes),
            "resources_needed": list(self.resources_needed),
            "instructions": list(self.instructions),
            "required_teams": list(self.required_teams),
            "risk_analysis": self.risk_analysis,
            "estimated_response_time_minutes": self.estimated_response_time_minutes,
            "confidence": self.confidence.value,
            "generated_at": self.generated_at.isoformat(),
        }


@dataclass
class Alert:
    """
    A single reported incident and its processing state.

    Only the Alert Store mutates instances; everything handed to callers
    is a copy (see ``copy``).

    Attributes
    ----------
    alert_id : str
        ``ALR-`` + 12 hex chars, immutable.
    threats : tuple of str
        Sorted unique tags. Grows only through a dedupe merge.
    estimated_affected : int
        Raised (never lowered) only through a dedupe merge.
    notes : tuple of str
        Descriptions of merged duplicate submissions.
    attempts : int
        Plan generator calls made during the latest analysis round.
    """
    type: AlertType
    location_text: str
    description: str
    reported_severity: ReportedSeverity
    estimated_affected: int = 0
    threats: Tuple[str, ...] = ()
    reporter: Optional[Reporter] = None
    alert_id: str = field(default_factory=_generate_id)
    state: AlertState = AlertState.SUBMITTED
    resolved_location: Optional[ResolvedLocation] = None
    priority_score: Optional[int] = None
    plan: Optional[ResponsePlan] = None
    attempts: int = 0
    notes: Tuple[str, ...] = ()
    merge_count: int = 0
    failure_reason: Optional[str] = None
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    @property
    def is_anonymous(self) -> bool:
        return self.reporter is None

    @property
    def is_active(self) -> bool:
        return not self.state.is_terminal

    def copy(self) -> "Alert":
        # every nested value is immutable, a shallow replace is a full copy
        return replace(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alert_id": self.alert_id,
            "type": self.type.value,
            "location_text": self.location_text,
            "resolved_location": (
                self.resolved_location.to_dict() if self.resolved_location else None
            ),
            "description": self.description,
            "reported_severity": self.reported_severity.label,
            "estimated_affected": self.estimated_affected,
            "threats": list(self.threats),
            "reporter": self.reporter.to_dict() if self.reporter else None,
            "is_anonymous": self.is_anonymous,
            "priority_score": self.priority_score,
            "plan": self.plan.to_dict() if self.plan else None,
            "state": self.state.value,
            "attempts": self.attempts,
            "notes": list(self.notes),
            "merge_count": self.merge_count,
            "failure_reason": self.failure_reason,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


def normalize_threats(tags: List[str]) -> Tuple[str, ...]:
    """
    Trim, drop empties, dedupe case-insensitively (first spelling wins).

    >>> normalize_threats([" Flooding", "flooding", "Road Blockage", ""])
    ('Flooding', 'Road Blockage')
    """
    seen: Dict[str, str] = {}
    for tag in tags:
        clean = " ".join(tag.split())
        if clean and clean.lower() not in seen:
            seen[clean.lower()] = clean
    return tuple(sorted(seen.values(), key=str.lower))
