"""
Pydantic schemas for the alert API.

Separated from the route handler so they are reusable across
the codebase (background workers, tests).

Submission fields are deliberately loose: the domain validator in
``backend.app.alerts.intake`` is the single authority on what a valid
report is, and reports every failure with the offending field name.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class ReporterInput(BaseModel):
    """Contact block for a non-anonymous report."""
    name: Optional[Any] = Field(None, examples=["Priya Sharma"])
    phone: Optional[Any] = Field(None, examples=["+919876543210"])


class SubmitAlertRequest(BaseModel):
    """Raw emergency report as sent by the reporting form."""

    model_config = ConfigDict(extra="ignore")

    type: Optional[Any] = Field(
        None, examples=["flood"],
        description="flood / earthquake / fire / landslide / cyclone / "
                    "accident / medical / terror / other",
    )
    location_text: Optional[Any] = Field(None, examples=["Mumbai Coastal Area"])
    description: Optional[Any] = Field(
        None,
        examples=["Severe flooding in coastal areas, water level rising rapidly"],
        description="At least 20 characters",
    )
    reported_severity: Optional[Any] = Field(
        None, examples=["High"], description="Low / Medium / High / Critical",
    )
    estimated_affected: Optional[Any] = Field(0, examples=[5000])
    threats: Optional[Any] = Field(
        default_factory=list, examples=[["Flooding", "Power Outage"]],
    )
    anonymous: bool = Field(False)
    reporter: Optional[ReporterInput] = None

    def to_raw(self) -> Dict[str, Any]:
        raw = self.model_dump()
        if self.reporter is None:
            raw.pop("reporter")
        return raw


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class SubmitAlertResponse(BaseModel):
    alert_id: str = Field(..., examples=["ALR-3F9A1C2B7D4E"])
    merged: bool = Field(..., description="True when folded into a live duplicate")


class EventPage(BaseModel):
    """One page of the change feed."""
    events: List[Dict[str, Any]]
    last_sequence: int
    count: int
