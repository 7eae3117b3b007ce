"""
FastAPI route: emergency alert intake, live dashboard and operator hooks.

Provides endpoints to:
    POST /api/v1/alerts                    — submit a report (201)
    GET  /api/v1/alerts                    — filtered active listing
    GET  /api/v1/alerts/stats              — unfiltered dashboard counters
    GET  /api/v1/alerts/map                — live map markers
    GET  /api/v1/alerts/events             — change-feed poll
    GET  /api/v1/alerts/{id}               — point lookup (active or resolved)
    POST /api/v1/alerts/{id}/dispatch      — Planned → Dispatched
    POST /api/v1/alerts/{id}/replan        — force a fresh score and plan
    POST /api/v1/alerts/{id}/resolve       — Dispatched / Failed → Resolved
    POST /api/v1/alerts/{id}/geocode       — manual re-geocode
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request

from backend.app.alerts.aggregator import FilteredView
from backend.app.alerts.intake import TYPE_ALIASES
from backend.app.alerts.models import AlertType, ReportedSeverity
from backend.app.alerts.service import AlertService
from backend.app.api.schemas import EventPage, SubmitAlertRequest, SubmitAlertResponse
from backend.app.core.errors import ValidationError

router = APIRouter(prefix="/api/v1/alerts", tags=["alerts"])


# ---------------------------------------------------------------------------
# Helper Functions
# ---------------------------------------------------------------------------

def get_service(request: Request) -> AlertService:
    return request.app.state.alerts


def _parse_severities(values: List[str]) -> List[ReportedSeverity]:
    parsed = []
    for value in values:
        try:
            parsed.append(ReportedSeverity.from_label(value))
        except KeyError:
            raise ValidationError(
                f"Invalid severity '{value}'. Must be one of: "
                f"{[s.label for s in ReportedSeverity]}",
                field="severity",
            )
    return parsed


def _parse_types(values: List[str]) -> List[AlertType]:
    parsed = []
    for value in values:
        key = value.strip().lower()
        try:
            parsed.append(TYPE_ALIASES.get(key) or AlertType(key))
        except ValueError:
            raise ValidationError(
                f"Invalid alert type '{value}'. Must be one of: "
                f"{[t.value for t in AlertType]}",
                field="type",
            )
    return parsed


def _filtered(
    service: AlertService,
    severity: List[str],
    alert_type: List[str],
    q: Optional[str],
) -> FilteredView:
    return service.aggregator.query(
        severities=_parse_severities(severity),
        types=_parse_types(alert_type),
        text=q,
    )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post(
    "",
    response_model=SubmitAlertResponse,
    status_code=201,
    summary="Submit an emergency report",
    description=(
        "Validates the report, merges it into a live duplicate (same type and "
        "location within the dedupe window) or creates a new alert, and "
        "starts scoring, geocoding and plan generation in the background."
    ),
)
async def submit_alert(
    body: SubmitAlertRequest,
    service: AlertService = Depends(get_service),
) -> SubmitAlertResponse:
    result = await service.pipeline.submit_report(body.to_raw())
    return SubmitAlertResponse(alert_id=result.alert_id, merged=result.merged)


@router.get("", summary="List active alerts")
async def list_alerts(
    severity: List[str] = Query(default=[], description="Repeatable: Low / Medium / High / Critical"),
    type: List[str] = Query(default=[], description="Repeatable alert type"),
    q: Optional[str] = Query(None, description="Matches location, type or threats"),
    service: AlertService = Depends(get_service),
) -> Dict[str, Any]:
    return _filtered(service, severity, type, q).to_dict()


@router.get("/stats", summary="Dashboard counters")
async def alert_stats(service: AlertService = Depends(get_service)) -> Dict[str, Any]:
    return service.aggregator.stats()


@router.get("/map", summary="Live map markers")
async def alert_map(
    severity: List[str] = Query(default=[]),
    type: List[str] = Query(default=[]),
    q: Optional[str] = Query(None),
    service: AlertService = Depends(get_service),
) -> Dict[str, Any]:
    view = _filtered(service, severity, type, q)
    aggregator = service.aggregator
    return {
        "version": view.version,
        "center": {"lat": aggregator.fallback_lat, "lng": aggregator.fallback_lng},
        "markers": aggregator.map_markers(view),
    }


@router.get("/events", response_model=EventPage, summary="Poll the change feed")
async def alert_events(
    since: int = Query(0, ge=0, description="Return events after this sequence"),
    limit: int = Query(100, ge=1, le=1000),
    service: AlertService = Depends(get_service),
) -> EventPage:
    events = service.feed.since(since, limit)
    return EventPage(
        events=[e.to_dict() for e in events],
        last_sequence=service.feed.last_sequence,
        count=len(events),
    )


@router.get("/{alert_id}", summary="Get one alert")
async def get_alert(
    alert_id: str,
    service: AlertService = Depends(get_service),
) -> Dict[str, Any]:
    alert = service.store.get(alert_id)
    data = alert.to_dict()
    data["processing"] = service.pipeline.is_processing(alert_id)
    return data


@router.post("/{alert_id}/dispatch", summary="Mark a planned alert as dispatched")
async def dispatch_alert(
    alert_id: str,
    service: AlertService = Depends(get_service),
) -> Dict[str, Any]:
    return (await service.pipeline.dispatch(alert_id)).to_dict()


@router.post("/{alert_id}/replan", status_code=202, summary="Force a fresh plan")
async def replan_alert(
    alert_id: str,
    service: AlertService = Depends(get_service),
) -> Dict[str, Any]:
    alert = await service.pipeline.replan(alert_id)
    return {"alert_id": alert.alert_id, "state": alert.state.value, "replanning": True}


@router.post("/{alert_id}/resolve", summary="Resolve an alert")
async def resolve_alert(
    alert_id: str,
    service: AlertService = Depends(get_service),
) -> Dict[str, Any]:
    return (await service.pipeline.resolve(alert_id)).to_dict()


@router.post("/{alert_id}/geocode", summary="Re-run geocoding")
async def geocode_alert(
    alert_id: str,
    service: AlertService = Depends(get_service),
) -> Dict[str, Any]:
    return (await service.pipeline.regeocode(alert_id)).to_dict()
