# Overview: Static location reference checks (state / LGA / ward / coordinates) and distance math.

from __future__ import annotations

import json
from functools import lru_cache
from math import asin, cos, radians, sin, sqrt
from pathlib import Path

from medhub.validation import ValidationError


COORDINATE_TOLERANCE = 0.0001
LOCATIONS_PATH = Path(__file__).parent / "data" / "locations.json"


@lru_cache(maxsize=1)
def load_locations() -> list[dict]:
    with LOCATIONS_PATH.open(encoding="utf-8") as fh:
        return json.load(fh)


def _find(entries: list[dict], key: str, name: str) -> dict | None:
    wanted = name.strip().lower()
    for entry in entries:
        if entry[key].lower() == wanted:
            return entry
    return None


def validate_location(state: str, lga: str, ward: str, latitude: float, longitude: float) -> dict:
    """
    Check a submitted (state, LGA, ward, lat/lng) tuple against the reference
    dataset. Names match case-insensitively; coordinates must sit within
    COORDINATE_TOLERANCE degrees of the ward's reference point.

    Returns the canonical names and reference coordinates.
    """
    state_data = _find(load_locations(), "state", state or "")
    if not state_data:
        raise ValidationError("Invalid state", {"state": "Invalid state"})

    lga_data = _find(state_data["lgas"], "name", lga or "")
    if not lga_data:
        raise ValidationError("Invalid LGA for selected state", {"lga": "Invalid LGA for selected state"})

    ward_data = _find(lga_data["wards"], "name", ward or "")
    if not ward_data:
        raise ValidationError("Invalid ward for selected LGA", {"ward": "Invalid ward for selected LGA"})

    lat_diff = abs(ward_data["latitude"] - float(latitude))
    lng_diff = abs(ward_data["longitude"] - float(longitude))
    if lat_diff > COORDINATE_TOLERANCE or lng_diff > COORDINATE_TOLERANCE:
        raise ValidationError(
            "Coordinates do not match selected ward",
            {"latitude": "Coordinates do not match selected ward"},
        )

    return {
        "state": state_data["state"],
        "lga": lga_data["name"],
        "ward": ward_data["name"],
        "latitude": ward_data["latitude"],
        "longitude": ward_data["longitude"],
    }


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great circle distance between two points on the earth (km)."""
    lon1, lat1, lon2, lat2 = map(radians, [lon1, lat1, lon2, lat2])
    dlon = lon2 - lon1
    dlat = lat2 - lat1
    a = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    return 2 * asin(sqrt(a)) * 6371
