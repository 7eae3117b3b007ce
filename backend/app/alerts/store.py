"""
store.py — Alert Store: ownership, state machine and per-alert exclusivity.

The Store is the only writer of Alert records. Every change goes through
a single commit step that:

    1. validates the requested state path against ALLOWED_TRANSITIONS
    2. applies the field changes and advances ``updated_at``
    3. notifies listeners (the Live Aggregator) with a copy of the alert
    4. appends exactly one AlertEvent to the change feed

Steps 2–4 run under one writer lock with no ``await`` in between, so a
reader never observes a state without its index entry or vice versa.

═══════════════════════════════════════════════════════════════════════════
STATE MACHINE
═══════════════════════════════════════════════════════════════════════════

    From          Allowed targets
    ──────────    ─────────────────────────────────────
    submitted     validating
    validating    analyzing, failed
    analyzing     analyzing (re-analysis), planned, failed
    planned       dispatched, analyzing (re-plan), failed
    dispatched    analyzing (re-plan), resolved
    failed        analyzing (merge / re-plan), resolved
    resolved      — terminal —

═══════════════════════════════════════════════════════════════════════════
CONCURRENCY
═══════════════════════════════════════════════════════════════════════════

``lock(alert_id)`` hands out one asyncio.Lock per alert. The pipeline
holds it across each read-decide-commit sequence so merges and re-plans
racing an in-flight analysis serialise instead of losing updates.
Different alerts never contend. Locks are weakly held, so the map
only contains alerts that currently have a holder or waiter. Resolved alerts move to cold storage:
point lookups still find them, the active index does not.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import weakref
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from backend.app.alerts.events import AlertEvent, AlertEventType, ChangeFeed
from backend.app.alerts.intake import ValidatedReport
from backend.app.alerts.models import (
    Alert,
    AlertState,
    ResolvedLocation,
    ResponsePlan,
    normalize_threats,
)
from backend.app.core.errors import InvalidTransitionError, NotFoundError

logger = logging.getLogger(__name__)

Listener = Callable[[Alert, AlertEvent], None]
Clock = Callable[[], datetime]


ALLOWED_TRANSITIONS: Dict[AlertState, Tuple[AlertState, ...]] = {
    AlertState.SUBMITTED: (AlertState.VALIDATING,),
    AlertState.VALIDATING: (AlertState.ANALYZING, AlertState.FAILED),
    AlertState.ANALYZING: (AlertState.ANALYZING, AlertState.PLANNED, AlertState.FAILED),
    AlertState.PLANNED: (AlertState.DISPATCHED, AlertState.ANALYZING, AlertState.FAILED),
    AlertState.DISPATCHED: (AlertState.ANALYZING, AlertState.RESOLVED),
    AlertState.FAILED: (AlertState.ANALYZING, AlertState.RESOLVED),
    AlertState.RESOLVED: (),
}


def can_transition(current: AlertState, target: AlertState) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, ())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _serialise(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if hasattr(value, "value"):
        return value.value
    if isinstance(value, tuple):
        return list(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class AlertStore:
    """In-memory indexed store of Alerts (production: a database)."""

    def __init__(self, feed: Optional[ChangeFeed] = None, clock: Clock = _utcnow):
        self._feed = feed or ChangeFeed()
        self._clock = clock
        self._active: Dict[str, Alert] = {}
        self._cold: Dict[str, Alert] = {}
        self._dedupe_index: Dict[str, str] = {}
        self._locks: weakref.WeakValueDictionary = weakref.WeakValueDictionary()
        self._listeners: List[Listener] = []
        self._commit_lock = threading.Lock()

    # ── Wiring ──

    @property
    def feed(self) -> ChangeFeed:
        return self._feed

    def now(self) -> datetime:
        return self._clock()

    def subscribe(self, listener: Listener) -> None:
        """Register a synchronous listener called inside every commit."""
        self._listeners.append(listener)

    def lock(self, alert_id: str) -> asyncio.Lock:
        """Per-alert mutual exclusion handle."""
        if alert_id not in self._active and alert_id not in self._cold:
            raise NotFoundError("Alert", alert_id=alert_id)
        lock = self._locks.get(alert_id)
        if lock is None:
            lock = self._locks[alert_id] = asyncio.Lock()
        return lock

    # ── Reads ──

    def get(self, alert_id: str) -> Alert:
        """Point lookup over active and cold storage (returns a copy)."""
        alert = self._active.get(alert_id) or self._cold.get(alert_id)
        if alert is None:
            raise NotFoundError("Alert", alert_id=alert_id)
        return alert.copy()

    def active_alerts(self) -> List[Alert]:
        return [a.copy() for a in list(self._active.values())]

    def all_alerts(self) -> List[Alert]:
        return self.active_alerts() + [a.copy() for a in list(self._cold.values())]

    def __len__(self) -> int:
        return len(self._active) + len(self._cold)

    def __contains__(self, alert_id: str) -> bool:
        return alert_id in self._active or alert_id in self._cold

    def find_live_duplicate(self, key: str, window: timedelta) -> Optional[str]:
        """Id of the live alert with this dedupe key created inside the window."""
        alert_id = self._dedupe_index.get(key)
        if alert_id is None:
            return None
        alert = self._active.get(alert_id)
        if alert is None:
            return None
        if self._clock() - alert.created_at > window:
            return None
        return alert_id

    # ── Commit ──

    def _commit(
        self,
        alert_id: str,
        event_type: AlertEventType,
        *,
        path: Iterable[AlertState] = (),
        **changes: Any,
    ) -> Alert:
        with self._commit_lock:
            alert = self._active.get(alert_id)
            if alert is None:
                if alert_id in self._cold:
                    target = next(iter(path), AlertState.RESOLVED)
                    raise InvalidTransitionError(
                        alert_id, AlertState.RESOLVED.value, target.value,
                    )
                raise NotFoundError("Alert", alert_id=alert_id)

            state = alert.state
            for target in path:
                if not can_transition(state, target):
                    raise InvalidTransitionError(alert_id, state.value, target.value)
                state = target

            for name, value in changes.items():
                setattr(alert, name, value)
            alert.state = state
            alert.updated_at = self._clock()

            if state.is_terminal:
                self._retire(alert)

            fields = {name: _serialise(value) for name, value in changes.items()}
            event = AlertEvent(
                sequence=self._feed.next_sequence(),
                event_type=event_type,
                alert_id=alert_id,
                state=state.value,
                fields=fields,
            )

            snapshot = alert.copy()
            for listener in self._listeners:
                listener(snapshot, event)
            self._feed.publish(event)

        logger.debug(
            "%s %s → %s", event_type.value, alert_id, state.value,
            extra={"alert_id": alert_id, "state": state.value, "event": event_type.value},
        )
        return snapshot

    def _require_active(self, alert_id: str, target: AlertState) -> Alert:
        alert = self._active.get(alert_id)
        if alert is None:
            if alert_id in self._cold:
                raise InvalidTransitionError(alert_id, AlertState.RESOLVED.value, target.value)
            raise NotFoundError("Alert", alert_id=alert_id)
        return alert

    def _retire(self, alert: Alert) -> None:
        self._active.pop(alert.alert_id, None)
        self._cold[alert.alert_id] = alert
        for key, indexed_id in list(self._dedupe_index.items()):
            if indexed_id == alert.alert_id:
                del self._dedupe_index[key]

    # ── Operations ──

    def create(self, report: ValidatedReport) -> Alert:
        now = self._clock()
        alert = Alert(
            type=report.type,
            location_text=report.location_text,
            description=report.description,
            reported_severity=report.reported_severity,
            estimated_affected=report.estimated_affected,
            threats=report.threats,
            reporter=report.reporter,
            created_at=now,
            updated_at=now,
        )
        with self._commit_lock:
            self._active[alert.alert_id] = alert
            self._dedupe_index[report.dedupe_key] = alert.alert_id
            event = AlertEvent(
                sequence=self._feed.next_sequence(),
                event_type=AlertEventType.CREATED,
                alert_id=alert.alert_id,
                state=alert.state.value,
                fields=alert.to_dict(),
            )
            snapshot = alert.copy()
            for listener in self._listeners:
                listener(snapshot, event)
            self._feed.publish(event)

        logger.info(
            "Alert created: %s %s at '%s'",
            alert.alert_id, alert.type.value, alert.location_text,
            extra={"alert_id": alert.alert_id, "alert_type": alert.type.value},
        )
        return snapshot

    def merge(self, alert_id: str, report: ValidatedReport) -> Alert:
        """Fold a duplicate submission into an existing live alert."""
        current = self._require_active(alert_id, AlertState.ANALYZING)
        return self._commit(
            alert_id,
            AlertEventType.MERGED,
            threats=normalize_threats(list(current.threats) + list(report.threats)),
            estimated_affected=max(current.estimated_affected, report.estimated_affected),
            notes=current.notes + (report.description,),
            merge_count=current.merge_count + 1,
        )

    def begin_analysis(self, alert_id: str, priority_score: int) -> Alert:
        """Walk the alert into Analyzing and record a fresh score (one commit)."""
        current = self._require_active(alert_id, AlertState.ANALYZING)
        if current.state is AlertState.SUBMITTED:
            path: Tuple[AlertState, ...] = (AlertState.VALIDATING, AlertState.ANALYZING)
        else:
            path = (AlertState.ANALYZING,)
        return self._commit(
            alert_id,
            AlertEventType.SCORED,
            path=path,
            priority_score=priority_score,
            plan=None,
            attempts=0,
            failure_reason=None,
        )

    def attach_plan(self, alert_id: str, plan: ResponsePlan, attempts: int) -> Alert:
        return self._commit(
            alert_id,
            AlertEventType.PLANNED,
            path=(AlertState.PLANNED,),
            plan=plan,
            attempts=attempts,
        )

    def set_location(
        self,
        alert_id: str,
        location: ResolvedLocation,
        *,
        overwrite: bool = False,
    ) -> Optional[Alert]:
        """
        Record geocoder output. Set-once unless ``overwrite`` (manual
        re-geocode); returns None when the write was skipped.
        """
        current = self._active.get(alert_id)
        if current is None:
            if alert_id in self._cold:
                return None
            raise NotFoundError("Alert", alert_id=alert_id)
        if current.resolved_location is not None and not overwrite:
            return None
        return self._commit(
            alert_id, AlertEventType.LOCATED, resolved_location=location,
        )

    def dispatch(self, alert_id: str) -> Alert:
        return self._commit(
            alert_id, AlertEventType.DISPATCHED, path=(AlertState.DISPATCHED,),
        )

    def fail(self, alert_id: str, reason: str) -> Alert:
        return self._commit(
            alert_id,
            AlertEventType.FAILED,
            path=(AlertState.FAILED,),
            failure_reason=reason,
        )

    def resolve(self, alert_id: str) -> Alert:
        snapshot = self._commit(
            alert_id, AlertEventType.RESOLVED, path=(AlertState.RESOLVED,),
        )
        logger.info("Alert resolved: %s", alert_id, extra={"alert_id": alert_id})
        return snapshot
