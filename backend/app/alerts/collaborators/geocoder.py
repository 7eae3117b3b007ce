"""
geocoder.py — Free-text location → coordinates.

Implementations:
    • HttpGeocoder   — Nominatim-compatible ``/search`` endpoint over httpx,
                       optionally backed by a StaticGeocoder when the remote
                       service has no match
    • StaticGeocoder — city table with substring matching, used when no
                       geocoding service is configured

═══════════════════════════════════════════════════════════════════════════
CONFIDENCE
═══════════════════════════════════════════════════════════════════════════

    Source                         confidence
    ────────────────────────────   ──────────────────────────────
    Nominatim hit                  result ``importance`` (0–1), floor 0.3
    Static city-table match        0.6 (city centroid only)
    No match                       None → pipeline stores "unresolved"

The pipeline applies the hard timeout; collaborators only classify errors.
"""

from __future__ import annotations

import abc
import logging
from typing import Dict, Optional, Tuple

import httpx

from backend.app.alerts.models import ResolvedLocation
from backend.app.core.errors import TransientCollaboratorError

logger = logging.getLogger(__name__)

CITY_CONFIDENCE = 0.6
MIN_REMOTE_CONFIDENCE = 0.3
DEFAULT_CLIENT_TIMEOUT_SECONDS = 30.0

# City centroids known to the reporting dashboard
CITY_TABLE: Dict[str, Tuple[float, float]] = {
    "delhi": (28.6139, 77.2090),
    "mumbai": (19.0760, 72.8777),
    "chennai": (13.0827, 80.2707),
    "kolkata": (22.5726, 88.3639),
    "bangalore": (12.9716, 77.5946),
    "bengaluru": (12.9716, 77.5946),
    "hyderabad": (17.3850, 78.4867),
    "pune": (18.5204, 73.8567),
    "ahmedabad": (23.0225, 72.5714),
}


class Geocoder(abc.ABC):
    """Resolve a free-text location. Return None when unresolved."""

    name = "geocoder"

    @abc.abstractmethod
    async def resolve(self, location_text: str) -> Optional[ResolvedLocation]:
        ...

    async def close(self) -> None:
        return None


class StaticGeocoder(Geocoder):
    """Substring match against a fixed city table."""

    name = "static-geocoder"

    def __init__(self, table: Optional[Dict[str, Tuple[float, float]]] = None):
        self.table = dict(table if table is not None else CITY_TABLE)

    async def resolve(self, location_text: str) -> Optional[ResolvedLocation]:
        normalized = location_text.lower()
        for city, (lat, lng) in self.table.items():
            if city in normalized:
                return ResolvedLocation(lat=lat, lng=lng, confidence=CITY_CONFIDENCE)
        return None


class HttpGeocoder(Geocoder):
    """
    Nominatim-compatible HTTP geocoder.

    Usage:
        geocoder = HttpGeocoder("https://nominatim.openstreetmap.org",
                                fallback=StaticGeocoder())
        location = await geocoder.resolve("Mumbai Coastal Area")
    """

    name = "http-geocoder"

    def __init__(
        self,
        base_url: str,
        *,
        user_agent: str = "relief-alert-engine/1.0",
        timeout: float = DEFAULT_CLIENT_TIMEOUT_SECONDS,
        fallback: Optional[Geocoder] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.user_agent = user_agent
        self.timeout = timeout
        self.fallback = fallback
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                headers={"User-Agent": self.user_agent}, timeout=self.timeout,
            )
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        if self._owns_client and self._client and not self._client.is_closed:
            await self._client.aclose()

    async def resolve(self, location_text: str) -> Optional[ResolvedLocation]:
        params = {"q": location_text, "format": "json", "limit": 1}
        try:
            response = await self._get_client().get(f"{self.base_url}/search", params=params)
        except httpx.TimeoutException as e:
            raise TransientCollaboratorError(self.name, "timeout", error=str(e))
        except httpx.TransportError as e:
            raise TransientCollaboratorError(self.name, "transport error", error=str(e))

        if response.status_code == 429 or response.status_code >= 500:
            raise TransientCollaboratorError(
                self.name, f"HTTP {response.status_code}",
                status_code=response.status_code,
            )

        results = []
        if response.status_code == 200:
            try:
                results = response.json()
            except ValueError:
                logger.warning("Geocoder returned non-JSON body for '%s'", location_text)
        else:
            logger.warning(
                "Geocoder HTTP %d for '%s'", response.status_code, location_text,
            )

        if results:
            hit = results[0]
            try:
                importance = float(hit.get("importance", MIN_REMOTE_CONFIDENCE))
                return ResolvedLocation(
                    lat=float(hit["lat"]),
                    lng=float(hit["lon"]),
                    confidence=max(MIN_REMOTE_CONFIDENCE, min(1.0, importance)),
                )
            except (KeyError, TypeError, ValueError):
                logger.warning("Malformed geocoder hit for '%s': %s", location_text, hit)

        if self.fallback is not None:
            return await self.fallback.resolve(location_text)
        return None
