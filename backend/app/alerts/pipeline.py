"""
pipeline.py — Intake Pipeline: drives each alert through its lifecycle.

This is the central coordinator that:
    1. Validates a raw submission (fail fast, nothing persisted)
    2. Deduplicates against live alerts inside the dedupe window
    3. Creates the alert, or merges into the existing one
    4. Scores it (synchronous, pure) on entry to Analyzing
    5. Runs geocoding and plan generation concurrently
    6. Applies timeout / retry / fallback to plan generation
    7. Commits Planned (or Failed on a fatal error)

═══════════════════════════════════════════════════════════════════════════
ORCHESTRATION FLOW
═══════════════════════════════════════════════════════════════════════════

    submit(raw)
        │  validate_report ──► ValidationError (no alert created)
        ▼
    dedupe hit? ──yes──► merge (AlertMerged) ──┐
        │ no                                   │ cancel in-flight planning
        ▼                                      ▼
    create (AlertCreated) ───────────► analysis task
                                          │
                        ┌─────────────────┴──────────────────┐
                        ▼                                    ▼
              begin_analysis (AlertScored)        geocode task (best effort)
                        │                          hard timeout → unresolved
                        ▼                                    │
              plan with retry / fallback                     ▼
                        │                        set_location (AlertLocated)
                        ▼                        may land after Planned
              attach_plan (AlertPlanned)

═══════════════════════════════════════════════════════════════════════════
RETRY & FALLBACK STRATEGY
═══════════════════════════════════════════════════════════════════════════

    Collaborator       Timeout    Retries    Backoff
    ──────────────     ───────    ───────    ─────────────────────────
    Plan generator     10s        2          exponential, base 1s
    Geocoder           3s         0          — (unresolved marker)

Backoff formula (exponential):
    delay = base × 2^(attempt - 1)
    Attempt 1 fails → wait 1s, attempt 2 fails → wait 2s, attempt 3.

Only transient failures (timeout, transport error, HTTP 429 / 5xx) are
retried. A non-transient rejection goes straight to the fallback table.
Every failure path still ends in Planned with a Degraded plan; only a
missing fallback-table entry or a programming error ends in Failed.

Each alert has at most one analysis task. A merge or re-plan cancels the
in-flight task for that alert only and starts a fresh one.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from backend.app.alerts.collaborators.fallback_plans import build_fallback_plan
from backend.app.alerts.collaborators.geocoder import Geocoder
from backend.app.alerts.collaborators.plan_generator import PlanGenerator
from backend.app.alerts.intake import MIN_DESCRIPTION_LENGTH, validate_report
from backend.app.alerts.models import Alert, AlertState, ResolvedLocation, ResponsePlan
from backend.app.alerts.scorer import score
from backend.app.alerts.store import AlertStore, can_transition
from backend.app.core.errors import (
    ConcurrencyConflict,
    FatalPipelineError,
    InvalidTransitionError,
    PlanGenerationError,
    TransientCollaboratorError,
)

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


# ═══════════════════════════════════════════════════════════════════════════
# Retry Configuration
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class RetryConfig:
    """Plan-generator retry parameters."""
    max_retries: int = 2
    backoff_base_seconds: float = 1.0
    backoff_type: str = "exponential"  # "exponential" or "linear"


def _compute_backoff(config: RetryConfig, attempt: int) -> float:
    """
    Delay before the next attempt.

    Parameters
    ----------
    config : RetryConfig
    attempt : int
        Attempt that just failed (1-based).

    Returns
    -------
    float
        Delay in seconds.
    """
    if config.backoff_type == "exponential":
        return config.backoff_base_seconds * (2 ** (attempt - 1))
    return config.backoff_base_seconds * attempt


@dataclass(frozen=True)
class PipelineConfig:
    dedupe_window: timedelta = timedelta(minutes=30)
    min_description_length: int = MIN_DESCRIPTION_LENGTH
    geocoder_timeout_seconds: float = 3.0
    planner_timeout_seconds: float = 10.0
    planner_retry: RetryConfig = field(default_factory=RetryConfig)

    @classmethod
    def from_settings(cls, settings) -> "PipelineConfig":
        return cls(
            dedupe_window=timedelta(minutes=settings.DEDUPE_WINDOW_MINUTES),
            min_description_length=settings.MIN_DESCRIPTION_LENGTH,
            geocoder_timeout_seconds=settings.GEOCODER_TIMEOUT_SECONDS,
            planner_timeout_seconds=settings.PLANNER_TIMEOUT_SECONDS,
            planner_retry=RetryConfig(
                max_retries=settings.PLANNER_MAX_RETRIES,
                backoff_base_seconds=settings.PLANNER_BACKOFF_BASE_SECONDS,
            ),
        )


# ═══════════════════════════════════════════════════════════════════════════
# Plan generation with timeout / retry / fallback
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class PlanOutcome:
    plan: ResponsePlan
    attempts: int
    degraded: bool
    last_error: Optional[str] = None


async def generate_with_policy(
    generator: Optional[PlanGenerator],
    alert: Alert,
    *,
    timeout_seconds: float,
    retry: RetryConfig,
    sleep: Sleep = asyncio.sleep,
) -> PlanOutcome:
    """
    Ask the generator for a plan under a hard per-call timeout, retrying
    transient failures; fall back to the static table when out of attempts.

    Raises FatalPipelineError only when the fallback table has no entry.
    """
    attempts = 0
    last_error: Optional[str] = None

    if generator is not None:
        for attempt in range(1, retry.max_retries + 2):  # initial + retries
            attempts = attempt
            try:
                plan = await asyncio.wait_for(generator.generate(alert), timeout_seconds)
                return PlanOutcome(plan=plan, attempts=attempts, degraded=False)
            except asyncio.TimeoutError:
                last_error = f"timeout after {timeout_seconds:.1f}s"
            except TransientCollaboratorError as e:
                last_error = e.message
            except PlanGenerationError as e:
                last_error = e.message
                logger.warning(
                    "Plan generator rejected %s: %s — using fallback",
                    alert.alert_id, e.message,
                    extra={"alert_id": alert.alert_id, "attempt": attempt},
                )
                break

            if attempt <= retry.max_retries:
                delay = _compute_backoff(retry, attempt)
                logger.info(
                    "Retry %d/%d for %s plan in %.1fs (%s)",
                    attempt, retry.max_retries, alert.alert_id, delay, last_error,
                    extra={"alert_id": alert.alert_id, "attempt": attempt},
                )
                await sleep(delay)
            else:
                logger.warning(
                    "Plan generator exhausted %d attempts for %s: %s",
                    attempts, alert.alert_id, last_error,
                    extra={"alert_id": alert.alert_id, "attempt": attempt},
                )

    plan = build_fallback_plan(alert)
    return PlanOutcome(plan=plan, attempts=attempts, degraded=True, last_error=last_error)


# ═══════════════════════════════════════════════════════════════════════════
# Intake Pipeline
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class SubmissionResult:
    alert_id: str
    merged: bool


class IntakePipeline:
    """
    Usage:
        pipeline = IntakePipeline(store, geocoder=StaticGeocoder())
        alert_id = await pipeline.submit(raw_report)
        await pipeline.drain()          # wait for background processing
    """

    def __init__(
        self,
        store: AlertStore,
        *,
        geocoder: Optional[Geocoder] = None,
        plan_generator: Optional[PlanGenerator] = None,
        config: Optional[PipelineConfig] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.store = store
        self.geocoder = geocoder
        self.plan_generator = plan_generator
        self.config = config or PipelineConfig()
        self._sleep = sleep
        self._analysis_tasks: Dict[str, asyncio.Task] = {}
        self._geocode_tasks: Dict[str, asyncio.Task] = {}

    # ── Submission ──

    async def submit(self, raw: Mapping[str, Any]) -> str:
        """Validate, dedupe and enqueue a report. Returns the alert id."""
        return (await self.submit_report(raw)).alert_id

    async def submit_report(self, raw: Mapping[str, Any]) -> SubmissionResult:
        report = validate_report(
            raw, min_description_length=self.config.min_description_length,
        )
        key = report.dedupe_key
        window = self.config.dedupe_window

        while True:
            existing_id = self.store.find_live_duplicate(key, window)
            if existing_id is None:
                # no await between the miss and the create
                alert = self.store.create(report)
                self._schedule_analysis(alert.alert_id)
                return SubmissionResult(alert_id=alert.alert_id, merged=False)

            async with self.store.lock(existing_id):
                if self.store.find_live_duplicate(key, window) == existing_id:
                    merged = self.store.merge(existing_id, report)
                    logger.info(
                        "Duplicate report merged into %s (merge #%d)",
                        existing_id, merged.merge_count,
                        extra={"alert_id": existing_id, "event": "AlertMerged"},
                    )
                    self._schedule_analysis(existing_id)
                    return SubmissionResult(alert_id=existing_id, merged=True)
            # resolved or superseded while we waited; look the key up again

    # ── Analysis task management ──

    def _schedule_analysis(self, alert_id: str) -> None:
        previous = self._analysis_tasks.get(alert_id)
        if previous is not None and not previous.done():
            previous.cancel()
            logger.info(
                "Cancelled in-flight planning for %s", alert_id,
                extra={"alert_id": alert_id},
            )
        task = asyncio.create_task(self._analyze(alert_id), name=f"analyze-{alert_id}")
        self._analysis_tasks[alert_id] = task
        task.add_done_callback(
            lambda t, aid=alert_id: self._forget(self._analysis_tasks, aid, t)
        )

    @staticmethod
    def _forget(registry: Dict[str, asyncio.Task], alert_id: str, task: asyncio.Task) -> None:
        if registry.get(alert_id) is task:
            del registry[alert_id]

    def is_processing(self, alert_id: str) -> bool:
        """True while an analysis or geocode task for the alert is pending."""
        return any(
            task is not None and not task.done()
            for task in (self._analysis_tasks.get(alert_id), self._geocode_tasks.get(alert_id))
        )

    async def _analyze(self, alert_id: str) -> None:
        started = time.perf_counter()
        try:
            async with self.store.lock(alert_id):
                current = self.store.get(alert_id)
                if not current.is_active:
                    return
                alert = self.store.begin_analysis(alert_id, score(current))

            logger.info(
                "Analyzing %s: priority %d", alert_id, alert.priority_score,
                extra={"alert_id": alert_id, "priority_score": alert.priority_score},
            )

            if alert.resolved_location is None and alert_id not in self._geocode_tasks:
                self._start_geocode(alert_id, alert.location_text)

            outcome = await generate_with_policy(
                self.plan_generator,
                alert,
                timeout_seconds=self.config.planner_timeout_seconds,
                retry=self.config.planner_retry,
                sleep=self._sleep,
            )

            async with self.store.lock(alert_id):
                if self._analysis_tasks.get(alert_id) is not asyncio.current_task():
                    raise ConcurrencyConflict(alert_id, "superseded by a newer analysis")
                self.store.attach_plan(alert_id, outcome.plan, outcome.attempts)

            duration_ms = (time.perf_counter() - started) * 1000
            logger.info(
                "Planned %s in %.0fms (%s, %d attempt(s))",
                alert_id, duration_ms, outcome.plan.confidence.value, outcome.attempts,
                extra={"alert_id": alert_id, "duration_ms": duration_ms},
            )
        except asyncio.CancelledError:
            raise
        except ConcurrencyConflict as e:
            logger.info("Dropped stale plan: %s", e.message, extra={"alert_id": alert_id})
        except FatalPipelineError as e:
            logger.error(
                "Fatal pipeline error for %s: %s | details=%s",
                alert_id, e.message, e.details, extra={"alert_id": alert_id},
            )
            await self._fail(alert_id, e.message)
        except Exception as e:
            logger.exception("Unexpected error analyzing %s", alert_id, extra={"alert_id": alert_id})
            await self._fail(alert_id, f"{type(e).__name__}: {e}")

    async def _fail(self, alert_id: str, reason: str) -> None:
        async with self.store.lock(alert_id):
            current = self.store.get(alert_id)
            if not can_transition(current.state, AlertState.FAILED):
                logger.warning(
                    "Cannot mark %s failed from %s: %s",
                    alert_id, current.state.value, reason,
                    extra={"alert_id": alert_id},
                )
                return
            self.store.fail(alert_id, reason)

    # ── Geocoding ──

    def _start_geocode(self, alert_id: str, location_text: str) -> asyncio.Task:
        task = asyncio.create_task(
            self._geocode(alert_id, location_text), name=f"geocode-{alert_id}",
        )
        self._geocode_tasks[alert_id] = task
        task.add_done_callback(
            lambda t, aid=alert_id: self._forget(self._geocode_tasks, aid, t)
        )
        return task

    async def _geocode(self, alert_id: str, location_text: str) -> None:
        location = await self.resolve_location(location_text)
        async with self.store.lock(alert_id):
            self.store.set_location(alert_id, location)

    async def resolve_location(self, location_text: str) -> ResolvedLocation:
        """Geocode under the hard timeout; any failure yields the unresolved marker."""
        if self.geocoder is None:
            return ResolvedLocation.unresolved()
        try:
            result = await asyncio.wait_for(
                self.geocoder.resolve(location_text),
                self.config.geocoder_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Geocoder timed out after %.1fs for '%s'",
                self.config.geocoder_timeout_seconds, location_text,
            )
            return ResolvedLocation.unresolved()
        except TransientCollaboratorError as e:
            logger.warning("Geocoder unavailable for '%s': %s", location_text, e.message)
            return ResolvedLocation.unresolved()
        except Exception:
            logger.exception("Geocoder failed for '%s'", location_text)
            return ResolvedLocation.unresolved()
        return result or ResolvedLocation.unresolved()

    # ── Operator hooks ──

    async def dispatch(self, alert_id: str) -> Alert:
        async with self.store.lock(alert_id):
            return self.store.dispatch(alert_id)

    async def replan(self, alert_id: str) -> Alert:
        """Force a fresh score and plan; cancels this alert's in-flight call."""
        async with self.store.lock(alert_id):
            current = self.store.get(alert_id)
            if not can_transition(current.state, AlertState.ANALYZING):
                raise InvalidTransitionError(
                    alert_id, current.state.value, AlertState.ANALYZING.value,
                )
            self._schedule_analysis(alert_id)
            logger.info("Re-plan requested for %s", alert_id, extra={"alert_id": alert_id})
            return current

    async def resolve(self, alert_id: str) -> Alert:
        async with self.store.lock(alert_id):
            return self.store.resolve(alert_id)

    async def regeocode(self, alert_id: str) -> Alert:
        """Manual re-geocode: the only path that overwrites a location."""
        current = self.store.get(alert_id)
        if not current.is_active:
            raise InvalidTransitionError(alert_id, current.state.value, "geocode")
        location = await self.resolve_location(current.location_text)
        async with self.store.lock(alert_id):
            updated = self.store.set_location(alert_id, location, overwrite=True)
            return updated if updated is not None else self.store.get(alert_id)

    # ── Lifecycle ──

    async def drain(self) -> None:
        """Wait until no analysis or geocode task is pending."""
        while True:
            pending = [
                t for t in list(self._analysis_tasks.values()) + list(self._geocode_tasks.values())
                if not t.done()
            ]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def close(self) -> None:
        tasks = list(self._analysis_tasks.values()) + list(self._geocode_tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        for collaborator in (self.geocoder, self.plan_generator):
            if collaborator is not None:
                await collaborator.close()
