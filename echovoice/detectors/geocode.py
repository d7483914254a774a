"""
echovoice/detectors/geocode.py — Position sources and reverse geocoding.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol, runtime_checkable

import httpx

from echovoice.core.errors import PermissionDeniedError, ResourceUnavailableError
from echovoice.core.logger import get_logger

#: Label used when a position was obtained but could not be named.
UNNAMED_LOCATION = "Location detected"

_AMENITY_LABELS: dict[str, str] = {
    "hospital": "Hospital",
    "clinic": "Clinic",
    "restaurant": "Restaurant",
    "cafe": "Cafe",
    "shop": "Shop",
    "supermarket": "Store",
    "school": "School",
    "university": "University",
    "bank": "Bank",
    "pharmacy": "Pharmacy",
    "library": "Library",
    "gym": "Gym",
    "park": "Park",
}


@dataclass(frozen=True)
class Position:
    latitude: float
    longitude: float
    accuracy_m: Optional[float] = None


@runtime_checkable
class PositionProvider(Protocol):
    async def current_position(self) -> Position:
        """
        Raises:
            PermissionDeniedError: Location access was not granted.
            ResourceUnavailableError: No position source is available.
        """
        ...


@runtime_checkable
class ReverseGeocoder(Protocol):
    async def label_for(self, position: Position) -> str:
        ...


class FixedPositionProvider:
    """Returns configured coordinates, gated on the user's location consent."""

    def __init__(
        self,
        latitude: Optional[float],
        longitude: Optional[float],
        consent: bool,
    ) -> None:
        self._latitude = latitude
        self._longitude = longitude
        self._consent = consent

    async def current_position(self) -> Position:
        if not self._consent:
            raise PermissionDeniedError("location access not granted")
        if self._latitude is None or self._longitude is None:
            raise ResourceUnavailableError("no position configured")
        return Position(self._latitude, self._longitude)


def label_from_address(payload: dict) -> str:
    """
    Build a readable label from a Nominatim ``reverse`` response.

    Street address, then road, suburb, and city in that order; a known
    amenity type replaces the address entirely.
    """
    address = payload.get("address") or {}
    label = "Unknown Location"
    if address.get("house_number") and address.get("road"):
        label = f"{address['house_number']} {address['road']}"
    elif address.get("road"):
        label = address["road"]
    elif address.get("suburb") or address.get("neighbourhood"):
        label = address.get("suburb") or address.get("neighbourhood")
    elif address.get("city") or address.get("town") or address.get("village"):
        label = address.get("city") or address.get("town") or address.get("village")

    amenity = address.get("amenity")
    if amenity in _AMENITY_LABELS:
        label = _AMENITY_LABELS[amenity]
    return label


class NominatimGeocoder:
    """
    OpenStreetMap Nominatim reverse lookup.

    Lookup failures are not errors: the label degrades to
    :data:`UNNAMED_LOCATION` and a warning is logged.
    """

    def __init__(
        self,
        url: str = "https://nominatim.openstreetmap.org/reverse",
        user_agent: str = "EchoVoice/1.0",
        timeout_s: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._url = url
        self._headers = {"User-Agent": user_agent}
        self._timeout = timeout_s
        self._client = client
        self._log = get_logger()

    async def label_for(self, position: Position) -> str:
        params = {
            "format": "json",
            "lat": position.latitude,
            "lon": position.longitude,
            "zoom": 18,
            "addressdetails": 1,
        }
        try:
            if self._client is not None:
                response = await self._client.get(
                    self._url, params=params, headers=self._headers, timeout=self._timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.get(self._url, params=params, headers=self._headers)
            response.raise_for_status()
            return label_from_address(response.json())
        except (httpx.HTTPError, ValueError) as exc:
            self._log.warn("location", "geocode_failed", {"error": str(exc)})
            return UNNAMED_LOCATION
