"""
scorer.py — Deterministic priority scoring for alerts.

Pure functions: no I/O, no clock, no randomness. Identical alert
attributes always produce an identical score.

═══════════════════════════════════════════════════════════════════════════
SCORING FORMULA
═══════════════════════════════════════════════════════════════════════════

    Step 1 — Base severity weight (self-reported):

        Low = 10    Medium = 35    High = 65    Critical = 90

    Step 2 — Affected-count adjustment (logarithmic, capped):

        A = min(20, floor(log10(estimated_affected + 1) × 8))

        0 people → 0,  9 → 8,  99 → 16,  999+ → 20 (cap)
        A tenfold jump in scale matters more than linear growth.

    Step 3 — Threat-tag adjustment:

        T = min(15, 3 × distinct_threat_count)

    Step 4 — Type volatility offset:

        earthquake / fire / terror   +5   (structural collapse, spread)
        landslide / cyclone          +3
        flood                        +2
        accident / medical / other    0

    Step 5 — Final:

        priority_score = clamp(base + A + T + offset, 0, 100)

Worked example — flood, High, 8000 affected, 2 threats:
    65 + min(20, floor(3.903 × 8) = 31) + 6 + 2 = 93
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, Iterable

from backend.app.alerts.models import Alert, AlertType, ReportedSeverity


# ═══════════════════════════════════════════════════════════════════════════
# Constants — Tunable Parameters
# ═══════════════════════════════════════════════════════════════════════════

SEVERITY_WEIGHTS: Dict[ReportedSeverity, int] = {
    ReportedSeverity.LOW: 10,
    ReportedSeverity.MEDIUM: 35,
    ReportedSeverity.HIGH: 65,
    ReportedSeverity.CRITICAL: 90,
}

AFFECTED_MULTIPLIER = 8
AFFECTED_CAP = 20

THREAT_WEIGHT = 3
THREAT_CAP = 15

TYPE_OFFSETS: Dict[AlertType, int] = {
    AlertType.EARTHQUAKE: 5,
    AlertType.FIRE: 5,
    AlertType.TERROR: 5,
    AlertType.LANDSLIDE: 3,
    AlertType.CYCLONE: 3,
    AlertType.FLOOD: 2,
    AlertType.ACCIDENT: 0,
    AlertType.MEDICAL: 0,
    AlertType.OTHER: 0,
}

SCORE_MIN = 0
SCORE_MAX = 100

# Dashboard colour thresholds
BAND_CRITICAL = 80
BAND_HIGH = 60
BAND_ELEVATED = 40


@dataclass(frozen=True)
class ScoreBreakdown:
    """Per-term contributions, useful for audit and the analysis view."""
    severity_base: int
    affected_adjustment: int
    threat_adjustment: int
    type_offset: int

    @property
    def raw_total(self) -> int:
        return (
            self.severity_base + self.affected_adjustment
            + self.threat_adjustment + self.type_offset
        )

    @property
    def score(self) -> int:
        return max(SCORE_MIN, min(SCORE_MAX, self.raw_total))

    def to_dict(self) -> Dict[str, int]:
        return {
            "severity_base": self.severity_base,
            "affected_adjustment": self.affected_adjustment,
            "threat_adjustment": self.threat_adjustment,
            "type_offset": self.type_offset,
            "score": self.score,
        }


# ═══════════════════════════════════════════════════════════════════════════
# Terms
# ═══════════════════════════════════════════════════════════════════════════

def affected_adjustment(estimated_affected: int) -> int:
    """Logarithmic head-count term, capped at AFFECTED_CAP."""
    if estimated_affected < 0:
        raise ValueError("estimated_affected must be non-negative")
    return min(
        AFFECTED_CAP,
        math.floor(math.log10(estimated_affected + 1) * AFFECTED_MULTIPLIER),
    )


def threat_adjustment(threats: Iterable[str]) -> int:
    distinct = {t.strip().lower() for t in threats if t.strip()}
    return min(THREAT_CAP, THREAT_WEIGHT * len(distinct))


def score_breakdown(
    alert_type: AlertType,
    severity: ReportedSeverity,
    estimated_affected: int,
    threats: Iterable[str],
) -> ScoreBreakdown:
    return ScoreBreakdown(
        severity_base=SEVERITY_WEIGHTS[severity],
        affected_adjustment=affected_adjustment(estimated_affected),
        threat_adjustment=threat_adjustment(threats),
        type_offset=TYPE_OFFSETS.get(alert_type, 0),
    )


def score(alert: Alert) -> int:
    """Priority score in [0, 100] for an alert."""
    return score_breakdown(
        alert.type,
        alert.reported_severity,
        alert.estimated_affected,
        alert.threats,
    ).score


def priority_band(priority_score: int) -> str:
    """Map a score to the dashboard's colour band."""
    if priority_score >= BAND_CRITICAL:
        return "critical"
    if priority_score >= BAND_HIGH:
        return "high"
    if priority_score >= BAND_ELEVATED:
        return "elevated"
    return "routine"
