"""
service.py — Wires the alert engine together from settings.

    ChangeFeed ◄── AlertStore ──► LiveAggregator (listener)
                       ▲
                 IntakePipeline ──► Geocoder, PlanGenerator

One AlertService instance lives on ``app.state.alerts`` for the lifetime
of the FastAPI application.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from backend.app.alerts.aggregator import LiveAggregator
from backend.app.alerts.collaborators.geocoder import (
    DEFAULT_CLIENT_TIMEOUT_SECONDS,
    Geocoder,
    HttpGeocoder,
    StaticGeocoder,
)
from backend.app.alerts.collaborators.plan_generator import HttpPlanGenerator, PlanGenerator
from backend.app.alerts.events import ChangeFeed
from backend.app.alerts.pipeline import IntakePipeline, PipelineConfig
from backend.app.alerts.store import AlertStore, Clock, _utcnow

logger = logging.getLogger(__name__)


@dataclass
class AlertService:
    store: AlertStore
    aggregator: LiveAggregator
    pipeline: IntakePipeline

    @property
    def feed(self) -> ChangeFeed:
        return self.store.feed

    async def close(self) -> None:
        await self.pipeline.close()


def _client_timeout(deadline_seconds: float) -> float:
    # the httpx client must never fire before the pipeline's own deadline
    return max(DEFAULT_CLIENT_TIMEOUT_SECONDS, deadline_seconds + 1.0)


def build_geocoder(settings) -> Geocoder:
    if settings.GEOCODER_URL:
        return HttpGeocoder(
            settings.GEOCODER_URL,
            user_agent=settings.GEOCODER_USER_AGENT,
            timeout=_client_timeout(settings.GEOCODER_TIMEOUT_SECONDS),
            fallback=StaticGeocoder(),
        )
    return StaticGeocoder()


def build_plan_generator(settings) -> Optional[PlanGenerator]:
    if settings.PLANNER_API_URL:
        return HttpPlanGenerator(
            settings.PLANNER_API_URL,
            api_key=settings.PLANNER_API_KEY,
            timeout=_client_timeout(settings.PLANNER_TIMEOUT_SECONDS),
        )
    return None


def build_alert_service(
    settings,
    *,
    geocoder: Optional[Geocoder] = None,
    plan_generator: Optional[PlanGenerator] = None,
    clock: Clock = _utcnow,
) -> AlertService:
    """
    Build the full service graph. Explicit collaborators override the
    ones derived from settings (used by tests).
    """
    feed = ChangeFeed(
        buffer_size=settings.FEED_BUFFER_SIZE,
        subscriber_queue_size=settings.FEED_SUBSCRIBER_QUEUE_SIZE,
    )
    store = AlertStore(feed=feed, clock=clock)
    aggregator = LiveAggregator(
        fallback_lat=settings.MAP_FALLBACK_LAT,
        fallback_lng=settings.MAP_FALLBACK_LNG,
    )
    aggregator.attach(store)

    geocoder = geocoder if geocoder is not None else build_geocoder(settings)
    if plan_generator is None:
        plan_generator = build_plan_generator(settings)
    if plan_generator is None:
        logger.warning("No PLANNER_API_URL configured — all plans will be Degraded")

    pipeline = IntakePipeline(
        store,
        geocoder=geocoder,
        plan_generator=plan_generator,
        config=PipelineConfig.from_settings(settings),
    )
    logger.info(
        "Alert service ready (geocoder=%s, planner=%s)",
        geocoder.name, plan_generator.name if plan_generator else "fallback-only",
    )
    return AlertService(store=store, aggregator=aggregator, pipeline=pipeline)
