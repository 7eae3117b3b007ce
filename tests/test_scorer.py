"""
test_scorer.py — Tests for deterministic priority scoring.

Covers:
    • Individual terms (severity base, affected, threats, type offset)
    • Boundaries (0 affected, 999 999 affected, threat cap, clamp)
    • Determinism over randomly generated attributes
    • Monotonicity in severity and in estimated affected
    • Worked flood example
    • Dashboard priority bands

Run with:
    pytest tests/test_scorer.py -v
"""

from __future__ import annotations

import random

import pytest

from backend.app.alerts.models import Alert, AlertType, ReportedSeverity
from backend.app.alerts.scorer import (
    AFFECTED_CAP,
    SEVERITY_WEIGHTS,
    THREAT_CAP,
    TYPE_OFFSETS,
    ScoreBreakdown,
    affected_adjustment,
    priority_band,
    score,
    score_breakdown,
    threat_adjustment,
)

THREAT_POOL = [
    "Flooding", "Fire", "Structural Damage", "Power Outage", "Gas Leak",
    "Road Blockage", "Landslide", "Trapped People", "Medical Emergency",
]


def _make_alert(
    alert_type: AlertType = AlertType.FLOOD,
    severity: ReportedSeverity = ReportedSeverity.HIGH,
    affected: int = 0,
    threats: tuple = (),
) -> Alert:
    return Alert(
        type=alert_type,
        location_text="Mumbai Coastal Area",
        description="Severe flooding in coastal areas, water rising",
        reported_severity=severity,
        estimated_affected=affected,
        threats=threats,
    )


def _random_attributes(rng: random.Random):
    return (
        rng.choice(list(AlertType)),
        rng.choice(list(ReportedSeverity)),
        rng.randint(0, 2_000_000),
        tuple(rng.sample(THREAT_POOL, rng.randint(0, len(THREAT_POOL)))),
    )


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Terms
# ═══════════════════════════════════════════════════════════════════════════

class TestSeverityBase:

    def test_weights(self):
        assert SEVERITY_WEIGHTS[ReportedSeverity.LOW] == 10
        assert SEVERITY_WEIGHTS[ReportedSeverity.MEDIUM] == 35
        assert SEVERITY_WEIGHTS[ReportedSeverity.HIGH] == 65
        assert SEVERITY_WEIGHTS[ReportedSeverity.CRITICAL] == 90

    def test_base_only_for_other_type(self):
        for severity, weight in SEVERITY_WEIGHTS.items():
            assert score(_make_alert(AlertType.OTHER, severity)) == weight


class TestAffectedAdjustment:

    def test_zero_affected_contributes_nothing(self):
        assert affected_adjustment(0) == 0

    def test_logarithmic_steps(self):
        assert affected_adjustment(9) == 8
        assert affected_adjustment(99) == 16

    def test_large_values_capped(self):
        assert affected_adjustment(999) == AFFECTED_CAP
        assert affected_adjustment(999_999) == AFFECTED_CAP
        assert affected_adjustment(10 ** 12) == AFFECTED_CAP

    def test_negative_rejected(self):
        with pytest.raises(ValueError):
            affected_adjustment(-1)


class TestThreatAdjustment:

    def test_three_points_per_threat(self):
        assert threat_adjustment([]) == 0
        assert threat_adjustment(["Fire"]) == 3
        assert threat_adjustment(["Fire", "Gas Leak"]) == 6

    def test_duplicates_counted_once(self):
        assert threat_adjustment(["Fire", "fire", " FIRE "]) == 3

    def test_cap(self):
        assert threat_adjustment(THREAT_POOL) == THREAT_CAP


class TestTypeOffset:

    def test_offsets(self):
        assert TYPE_OFFSETS[AlertType.EARTHQUAKE] == 5
        assert TYPE_OFFSETS[AlertType.FIRE] == 5
        assert TYPE_OFFSETS[AlertType.TERROR] == 5
        assert TYPE_OFFSETS[AlertType.LANDSLIDE] == 3
        assert TYPE_OFFSETS[AlertType.CYCLONE] == 3
        assert TYPE_OFFSETS[AlertType.FLOOD] == 2
        assert TYPE_OFFSETS[AlertType.ACCIDENT] == 0
        assert TYPE_OFFSETS[AlertType.MEDICAL] == 0
        assert TYPE_OFFSETS[AlertType.OTHER] == 0

    def test_every_type_has_offset(self):
        assert set(TYPE_OFFSETS) == set(AlertType)


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Properties
# ═══════════════════════════════════════════════════════════════════════════

class TestScoreProperties:

    def test_worked_flood_example(self):
        alert = _make_alert(
            AlertType.FLOOD, ReportedSeverity.HIGH, 8000, ("Flooding", "Power Outage"),
        )
        assert score(alert) == 93

    def test_clamped_to_100(self):
        breakdown = score_breakdown(
            AlertType.EARTHQUAKE, ReportedSeverity.CRITICAL, 1_000_000, THREAT_POOL,
        )
        assert breakdown.raw_total == 90 + 20 + 15 + 5
        assert breakdown.score == 100

    def test_clamp_floor(self):
        assert ScoreBreakdown(-50, 0, 0, 0).score == 0

    def test_deterministic_over_random_attributes(self):
        rng = random.Random(20240611)
        for _ in range(500):
            alert_type, severity, affected, threats = _random_attributes(rng)
            first = score(_make_alert(alert_type, severity, affected, threats))
            second = score(_make_alert(alert_type, severity, affected, threats))
            assert first == second
            assert 0 <= first <= 100

    def test_monotone_in_severity(self):
        rng = random.Random(7)
        severities = sorted(ReportedSeverity)
        for _ in range(200):
            alert_type, _, affected, threats = _random_attributes(rng)
            scores = [
                score(_make_alert(alert_type, s, affected, threats)) for s in severities
            ]
            assert scores == sorted(scores)

    def test_monotone_in_affected(self):
        rng = random.Random(11)
        for _ in range(200):
            alert_type, severity, affected, threats = _random_attributes(rng)
            more = affected + rng.randint(0, 100_000)
            assert score(_make_alert(alert_type, severity, affected, threats)) <= score(
                _make_alert(alert_type, severity, more, threats)
            )

    def test_breakdown_to_dict(self):
        d = score_breakdown(AlertType.FIRE, ReportedSeverity.LOW, 9, ["Fire"]).to_dict()
        assert d == {
            "severity_base": 10,
            "affected_adjustment": 8,
            "threat_adjustment": 3,
            "type_offset": 5,
            "score": 26,
        }


class TestPriorityBand:

    @pytest.mark.parametrize("value,band", [
        (100, "critical"), (80, "critical"), (79, "high"), (60, "high"),
        (59, "elevated"), (40, "elevated"), (39, "routine"), (0, "routine"),
    ])
    def test_thresholds(self, value, band):
        assert priority_band(value) == band
