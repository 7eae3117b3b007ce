"""
aggregator.py — Live, filterable index over active alerts.

Backs the dashboard list and the live map:

    • active-alert set (every non-Resolved alert)
    • per-severity and per-type counts
    • total estimated affected
    • filtered listing by {severity set, type set, free-text query}
    • map markers with a country-level fallback for unresolved locations

═══════════════════════════════════════════════════════════════════════════
CONSISTENCY
═══════════════════════════════════════════════════════════════════════════

The aggregator is a Store listener: ``apply`` runs inside the Store's
commit, so the index and the alert state change together. Each apply
builds a new immutable AggregatorSnapshot and swaps the reference
(copy-on-write). Readers grab the current reference once and work on it;
they never lock and never block writers or each other.

Invariant checked by ``is_consistent_with``:

    sum(severity_counts) == number of non-Resolved alerts in the Store
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set

from backend.app.alerts.events import AlertEvent
from backend.app.alerts.models import Alert, AlertType, ReportedSeverity
from backend.app.alerts.scorer import priority_band

logger = logging.getLogger(__name__)

DEFAULT_FALLBACK_LAT = 20.5937
DEFAULT_FALLBACK_LNG = 78.9629


@dataclass(frozen=True)
class AggregatorSnapshot:
    """Immutable view of the active index at one version."""
    version: int = 0
    alerts: Mapping[str, Alert] = field(default_factory=lambda: MappingProxyType({}))
    severity_counts: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))
    type_counts: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))
    total_affected: int = 0

    @property
    def total_active(self) -> int:
        return len(self.alerts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "total_active": self.total_active,
            "severity_counts": dict(self.severity_counts),
            "type_counts": dict(self.type_counts),
            "total_affected": self.total_affected,
        }


@dataclass(frozen=True)
class FilteredView:
    """Result of a filtered query over one snapshot."""
    version: int
    alerts: List[Alert]
    severity_counts: Dict[str, int]
    total_affected: int
    total_active: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "count": len(self.alerts),
            "total_active": self.total_active,
            "severity_counts": self.severity_counts,
            "total_affected": self.total_affected,
            "alerts": [a.to_dict() for a in self.alerts],
        }


def _empty_severity_counts() -> Dict[str, int]:
    return {s.label: 0 for s in sorted(ReportedSeverity, reverse=True)}


def _build_snapshot(alerts: Dict[str, Alert], version: int) -> AggregatorSnapshot:
    severity_counts = _empty_severity_counts()
    type_counts: Counter = Counter()
    total_affected = 0
    for alert in alerts.values():
        severity_counts[alert.reported_severity.label] += 1
        type_counts[alert.type.value] += 1
        total_affected += alert.estimated_affected
    return AggregatorSnapshot(
        version=version,
        alerts=MappingProxyType(alerts),
        severity_counts=MappingProxyType(severity_counts),
        type_counts=MappingProxyType(dict(type_counts)),
        total_affected=total_affected,
    )


def _sort_key(alert: Alert):
    score = alert.priority_score if alert.priority_score is not None else -1
    return (-score, -alert.created_at.timestamp(), alert.alert_id)


class LiveAggregator:
    """
    Usage:
        aggregator = LiveAggregator()
        aggregator.attach(store)
        view = aggregator.query(severities=["High"], text="mumbai")
    """

    def __init__(
        self,
        fallback_lat: float = DEFAULT_FALLBACK_LAT,
        fallback_lng: float = DEFAULT_FALLBACK_LNG,
    ):
        self.fallback_lat = fallback_lat
        self.fallback_lng = fallback_lng
        self._snapshot = AggregatorSnapshot()

    def attach(self, store) -> None:
        """Seed from the store's active alerts and listen for commits."""
        seeded = {a.alert_id: a for a in store.active_alerts()}
        self._snapshot = _build_snapshot(seeded, self._snapshot.version + 1)
        store.subscribe(self.apply)

    # ── Write side (called inside the Store commit) ──

    def apply(self, alert: Alert, event: AlertEvent) -> None:
        current = self._snapshot
        alerts = dict(current.alerts)
        if alert.is_active:
            alerts[alert.alert_id] = alert
        else:
            alerts.pop(alert.alert_id, None)
        self._snapshot = _build_snapshot(alerts, current.version + 1)

    # ── Read side ──

    def snapshot(self) -> AggregatorSnapshot:
        return self._snapshot

    def stats(self) -> Dict[str, Any]:
        return self._snapshot.to_dict()

    def get(self, alert_id: str) -> Optional[Alert]:
        alert = self._snapshot.alerts.get(alert_id)
        return alert.copy() if alert else None

    def query(
        self,
        severities: Optional[Iterable[ReportedSeverity]] = None,
        types: Optional[Iterable[AlertType]] = None,
        text: Optional[str] = None,
    ) -> FilteredView:
        """Filter active alerts; empty or None filters match everything."""
        snap = self._snapshot
        severity_set: Set[ReportedSeverity] = set(severities or ())
        type_set: Set[AlertType] = set(types or ())
        needle = (text or "").strip().lower()

        matched = [
            alert for alert in snap.alerts.values()
            if (not severity_set or alert.reported_severity in severity_set)
            and (not type_set or alert.type in type_set)
            and (not needle or self._matches_text(alert, needle))
        ]
        matched.sort(key=_sort_key)

        severity_counts = _empty_severity_counts()
        for alert in matched:
            severity_counts[alert.reported_severity.label] += 1

        return FilteredView(
            version=snap.version,
            alerts=[a.copy() for a in matched],
            severity_counts=severity_counts,
            total_affected=sum(a.estimated_affected for a in matched),
            total_active=snap.total_active,
        )

    @staticmethod
    def _matches_text(alert: Alert, needle: str) -> bool:
        if needle in alert.location_text.lower() or needle in alert.type.value:
            return True
        return any(needle in threat.lower() for threat in alert.threats)

    def map_markers(self, view: Optional[FilteredView] = None) -> List[Dict[str, Any]]:
        """
        One marker per alert. Alerts without a confident fix are placed at
        the country-level fallback and flagged ``approximate``.
        """
        view = view or self.query()
        markers = []
        for alert in view.alerts:
            location = alert.resolved_location
            approximate = location is None or not location.is_resolved
            markers.append({
                "alert_id": alert.alert_id,
                "type": alert.type.value,
                "severity": alert.reported_severity.label,
                "priority_score": alert.priority_score,
                "band": (
                    priority_band(alert.priority_score)
                    if alert.priority_score is not None else None
                ),
                "state": alert.state.value,
                "lat": self.fallback_lat if approximate else location.lat,
                "lng": self.fallback_lng if approximate else location.lng,
                "approximate": approximate,
                "low_confidence": location.low_confidence if location else True,
                "estimated_affected": alert.estimated_affected,
            })
        return markers

    def is_consistent_with(self, store) -> bool:
        snap = self._snapshot
        active_ids = {a.alert_id for a in store.active_alerts()}
        return (
            sum(snap.severity_counts.values()) == len(active_ids)
            and set(snap.alerts) == active_ids
        )
