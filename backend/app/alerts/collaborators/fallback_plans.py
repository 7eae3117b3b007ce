"""
fallback_plans.py — Static response-plan table used when the plan
generator is unavailable.

Plans are keyed only by alert type and reported severity, so they are
generic by construction. Every synthesized plan carries
``confidence = Degraded``.

    Severity    estimated response time (min)
    ────────    ─────────────────────────────
    Critical    10
    High        20
    Medium      40
    Low         60

A missing entry is a configuration bug, never a user-facing path: it
raises FatalPipelineError and the alert moves to Failed.
"""

from __future__ import annotations

from typing import Dict, Mapping, Optional, Tuple

from backend.app.alerts.models import (
    Alert,
    AlertType,
    PlanConfidence,
    ReportedSeverity,
    ResponsePlan,
)
from backend.app.core.errors import FatalPipelineError

RESPONSE_MINUTES: Dict[ReportedSeverity, int] = {
    ReportedSeverity.CRITICAL: 10,
    ReportedSeverity.HIGH: 20,
    ReportedSeverity.MEDIUM: 40,
    ReportedSeverity.LOW: 60,
}

# type → (evacuation routes, resources, instructions, teams, risk note)
PlanTemplate = Tuple[Tuple[str, ...], Tuple[str, ...], Tuple[str, ...], Tuple[str, ...], str]

PLAN_TEMPLATES: Dict[AlertType, PlanTemplate] = {
    AlertType.FLOOD: (
        ("Nearest elevated arterial road out of the flood zone",
         "Boat evacuation points at designated ghats and jetties"),
        ("Rescue Boats", "Life Jackets", "Medical Teams",
         "Temporary Shelter", "Food & Water Supply"),
        ("Evacuate low-lying areas immediately",
         "Move to higher ground or designated shelters",
         "Avoid walking or driving in floodwaters",
         "Stay tuned for emergency broadcasts"),
        ("NDRF", "Medical", "Disaster Response", "Police"),
        "Risk of waterborne disease and structural damage near water bodies",
    ),
    AlertType.EARTHQUAKE: (
        ("Open ground away from tall structures",
         "Main highway corridor to the nearest relief camp"),
        ("Search & Rescue Teams", "Medical Supplies",
         "Temporary Shelter", "Food & Water"),
        ("Evacuate unstable buildings",
         "Expect aftershocks and stay clear of damaged structures",
         "Set up emergency shelters in open areas",
         "Activate field hospitals"),
        ("NDRF", "Medical", "Fire Department", "Police"),
        "Aftershocks likely; risk of secondary collapse and trapped victims",
    ),
    AlertType.FIRE: (
        ("Upwind exit routes away from smoke",
         "Nearest stairwell exits to the assembly point"),
        ("Fire Trucks", "Breathing Apparatus", "Masks", "Ambulances"),
        ("Evacuate immediately using stairs, not lifts",
         "Close doors and windows behind you",
         "Cover nose and mouth with a wet cloth",
         "Report missing persons at the assembly point"),
        ("Fire Department", "Medical", "Police"),
        "Fire may spread with wind; risk of smoke inhalation and explosions",
    ),
    AlertType.LANDSLIDE: (
        ("Valley-side road away from the slope",
         "Designated relief camp on stable ground"),
        ("Earth Movers", "Search & Rescue Teams", "Medical Supplies", "Tarpaulins"),
        ("Move away from the slide path and river channels",
         "Watch for further ground movement or cracks",
         "Do not attempt to cross debris flows"),
        ("NDRF", "Medical", "Public Works"),
        "Further slope failure possible, especially with continued rain",
    ),
    AlertType.CYCLONE: (
        ("Inland route to the nearest cyclone shelter",
         "Coastal evacuation corridor to higher ground"),
        ("Cyclone Shelters", "Generators", "Food & Water Supply", "Medical Teams"),
        ("Move to a cyclone shelter or sturdy building",
         "Stay away from windows and the coastline",
         "Secure loose objects and disconnect power",
         "Follow official storm-surge warnings"),
        ("NDRF", "Coast Guard", "Medical", "Electricity Board"),
        "High winds and storm surge; flooding of coastal and low-lying areas",
    ),
    AlertType.ACCIDENT: (
        ("Clear diversion route around the incident site",),
        ("Ambulances", "Tow Trucks", "Traffic Cones", "First Aid Kits"),
        ("Keep the area clear for emergency vehicles",
         "Do not move seriously injured persons",
         "Divert traffic away from the site"),
        ("Traffic Police", "Medical", "Fire Department"),
        "Risk of secondary collisions and fuel leaks at the scene",
    ),
    AlertType.MEDICAL: (
        ("Ambulance access corridor to the nearest hospital",),
        ("Ambulances", "Paramedics", "Medical Supplies", "Oxygen"),
        ("Keep the patient still and monitor breathing",
         "Clear access for paramedics",
         "Share medical history with responders"),
        ("Medical", "Paramedics"),
        "Outcome depends on response time; keep access routes clear",
    ),
    AlertType.TERROR: (
        ("Cordoned exit away from the threat perimeter",
         "Safe assembly point outside the security zone"),
        ("Armed Response Units", "Bomb Disposal", "Ambulances", "Barricades"),
        ("Move away from the area and shelter in place if trapped",
         "Follow instructions from security personnel",
         "Do not share responder movements publicly"),
        ("Police", "Anti-Terror Squad", "Medical", "Fire Department"),
        "Threat may be ongoing; risk of secondary devices",
    ),
    AlertType.OTHER: (
        ("Nearest safe assembly point designated by local authorities",),
        ("First Aid Kits", "Communication Equipment", "Temporary Shelter"),
        ("Move to a safe location",
         "Follow instructions from local authorities",
         "Stay tuned for emergency broadcasts"),
        ("Disaster Response", "Police", "Medical"),
        "Situation unclassified; responders to assess on arrival",
    ),
}


def build_fallback_plan(
    alert: Alert,
    *,
    templates: Optional[Mapping[AlertType, PlanTemplate]] = None,
    response_minutes: Optional[Mapping[ReportedSeverity, int]] = None,
) -> ResponsePlan:
    """Synthesize a Degraded plan for ``alert`` from the static tables."""
    templates = PLAN_TEMPLATES if templates is None else templates
    response_minutes = RESPONSE_MINUTES if response_minutes is None else response_minutes

    template = templates.get(alert.type)
    minutes = response_minutes.get(alert.reported_severity)
    if template is None or minutes is None:
        raise FatalPipelineError(
            alert.alert_id,
            "fallback table has no entry",
            alert_type=alert.type.value,
            severity=alert.reported_severity.label,
        )

    routes, resources, instructions, teams, risk = template
    return ResponsePlan(
        evacuation_routes=routes,
        resources_needed=resources,
        instructions=instructions,
        required_teams=teams,
        risk_analysis=f"{risk}. Reported severity {alert.reported_severity.label}.",
        estimated_response_time_minutes=minutes,
        confidence=PlanConfidence.DEGRADED,
    )
