"""
plan_generator.py — Response-plan generation collaborator.

``HttpPlanGenerator`` POSTs an alert snapshot to an external AI planning
service and parses the returned plan. The model behind the service is
opaque to this codebase.

Request body:

    {
      "alert_id": "ALR-…", "type": "flood", "location_text": "…",
      "description": "…", "notes": [...], "reported_severity": "High",
      "estimated_affected": 8000, "threats": [...], "priority_score": 93,
      "resolved_location": {...} | null
    }

Response body (either spelling of the response time is accepted):

    {
      "evacuation_routes": [...], "resources_needed": [...],
      "instructions": [...], "required_teams": [...],
      "risk_analysis": "…",
      "estimated_response_time_minutes": 15
          | "estimated_response_time": "15-20 minutes"
    }

Error classification:

    timeout / transport error / HTTP 429 / HTTP 5xx  → TransientCollaboratorError
    other HTTP 4xx / malformed body                  → PlanGenerationError
    no evacuation routes or no instructions          → PlanGenerationError
"""

from __future__ import annotations

import abc
import logging
import re
from typing import Any, Dict, List, Optional

import httpx

from backend.app.alerts.models import Alert, PlanConfidence, ResponsePlan
from backend.app.core.errors import PlanGenerationError, TransientCollaboratorError

logger = logging.getLogger(__name__)

_MINUTES_RE = re.compile(r"\d+")

# Client-side ceiling; the pipeline's asyncio.wait_for is the real deadline
DEFAULT_CLIENT_TIMEOUT_SECONDS = 30.0


class PlanGenerator(abc.ABC):
    """Produce a ResponsePlan for an alert snapshot. May be slow or fail."""

    name = "plan-generator"

    @abc.abstractmethod
    async def generate(self, alert: Alert) -> ResponsePlan:
        ...

    async def close(self) -> None:
        return None


def alert_snapshot_payload(alert: Alert) -> Dict[str, Any]:
    """Fields the planning service sees. Reporter contact is never sent."""
    return {
        "alert_id": alert.alert_id,
        "type": alert.type.value,
        "location_text": alert.location_text,
        "description": alert.description,
        "notes": list(alert.notes),
        "reported_severity": alert.reported_severity.label,
        "estimated_affected": alert.estimated_affected,
        "threats": list(alert.threats),
        "priority_score": alert.priority_score,
        "resolved_location": (
            alert.resolved_location.to_dict() if alert.resolved_location else None
        ),
    }


def _string_list(body: Dict[str, Any], key: str) -> tuple:
    value = body.get(key, [])
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise PlanGenerationError(f"'{key}' must be a list of strings")
    return tuple(v.strip() for v in value if v.strip())


def _response_minutes(body: Dict[str, Any]) -> int:
    value = body.get("estimated_response_time_minutes")
    if value is None:
        value = body.get("estimated_response_time")
    if isinstance(value, bool):
        value = None
    if isinstance(value, (int, float)):
        minutes = int(value)
    elif isinstance(value, str):
        # "15-20 minutes" → 20: take the conservative upper bound
        numbers: List[int] = [int(n) for n in _MINUTES_RE.findall(value)]
        minutes = max(numbers) if numbers else 0
    else:
        minutes = 0
    if minutes <= 0:
        raise PlanGenerationError("missing or non-positive response time")
    return minutes


def parse_plan(body: Any) -> ResponsePlan:
    """Validate a planning-service response into a Full-confidence plan."""
    if not isinstance(body, dict):
        raise PlanGenerationError("response body is not an object")
    # some deployments wrap the plan: {"plan": {...}}
    if isinstance(body.get("plan"), dict):
        body = body["plan"]

    risk = body.get("risk_analysis", "")
    if isinstance(risk, list):
        risk = "; ".join(str(r) for r in risk)
    if not isinstance(risk, str):
        raise PlanGenerationError("'risk_analysis' must be text")

    routes = _string_list(body, "evacuation_routes")
    instructions = _string_list(body, "instructions")
    if not routes:
        raise PlanGenerationError("plan has no evacuation routes")
    if not instructions:
        raise PlanGenerationError("plan has no instructions")

    return ResponsePlan(
        evacuation_routes=routes,
        resources_needed=_string_list(body, "resources_needed"),
        instructions=instructions,
        required_teams=_string_list(body, "required_teams"),
        risk_analysis=risk.strip(),
        estimated_response_time_minutes=_response_minutes(body),
        confidence=PlanConfidence.FULL,
    )


class HttpPlanGenerator(PlanGenerator):
    """
    JSON-over-HTTP planning service client.

    Usage:
        generator = HttpPlanGenerator("http://planner:8080/v1/plans", api_key="…")
        plan = await generator.generate(alert)
    """

    name = "http-plan-generator"

    def __init__(
        self,
        url: str,
        *,
        api_key: Optional[str] = None,
        timeout: float = DEFAULT_CLIENT_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.api_key = api_key
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        if self._owns_client and self._client and not self._client.is_closed:
            await self._client.aclose()

    async def generate(self, alert: Alert) -> ResponsePlan:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        try:
            response = await self._get_client().post(
                self.url, json=alert_snapshot_payload(alert), headers=headers,
            )
        except httpx.TimeoutException as e:
            raise TransientCollaboratorError(self.name, "timeout", error=str(e))
        except httpx.TransportError as e:
            raise TransientCollaboratorError(self.name, "transport error", error=str(e))

        if response.status_code == 429 or response.status_code >= 500:
            raise TransientCollaboratorError(
                self.name, f"HTTP {response.status_code}",
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            raise PlanGenerationError(
                f"HTTP {response.status_code}", status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError:
            raise PlanGenerationError("response body is not JSON")
        return parse_plan(body)
