"""
Location scoring.

Pure, deterministic proximity scoring between a task location and a provider
location. Location descriptors are dicts of the form:

    {
        'locality': 'Osu',
        'city': 'Accra',
        'region': 'Greater Accra',
        'gpsCoordinates': {'latitude': 5.556, 'longitude': -0.182},
        'isAddressVerified': True
    }
"""
import math
from typing import Dict, Any, Optional, Tuple

from .utils import same_place

EARTH_RADIUS_KM = 6371

# (max distance km, fraction of slot) - first band that fits wins
DISTANCE_BANDS = [
    (5, 1.0),
    (10, 0.8),
    (20, 0.6),
    (50, 0.3),
]

# Categorical fallback when GPS is missing on either side
LOCALITY_FRACTION = 1.0
CITY_FRACTION = 0.7
REGION_FRACTION = 0.5

LOCALITY = 'locality'
CITY = 'city'
REGION = 'region'


def get_coordinates(location: Optional[Dict[str, Any]]) -> Optional[Tuple[float, float]]:
    """Return (lat, lon) if the descriptor carries usable GPS coordinates."""
    if not location:
        return None
    coords = location.get('gpsCoordinates') or {}
    lat = coords.get('latitude')
    lon = coords.get('longitude')
    if lat is None or lon is None:
        return None
    return float(lat), float(lon)


def haversine_km(origin: Tuple[float, float], destination: Tuple[float, float]) -> float:
    """Great-circle distance in kilometers."""
    lat1, lon1 = origin
    lat2, lon2 = destination
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def distance_between(a: Optional[Dict[str, Any]], b: Optional[Dict[str, Any]]) -> Optional[float]:
    """Distance in km when both descriptors have GPS, else None."""
    origin = get_coordinates(a)
    destination = get_coordinates(b)
    if origin is None or destination is None:
        return None
    return haversine_km(origin, destination)


def distance_fraction(distance_km: float) -> float:
    for limit, fraction in DISTANCE_BANDS:
        if distance_km <= limit:
            return fraction
    return 0.0


def area_match(task_location: Optional[Dict[str, Any]], provider_location: Optional[Dict[str, Any]]) -> Optional[str]:
    """Most specific shared area: 'locality', 'city', 'region' or None."""
    task_location = task_location or {}
    provider_location = provider_location or {}
    if same_place(task_location.get('locality'), provider_location.get('locality')):
        return LOCALITY
    if same_place(task_location.get('city'), provider_location.get('city')):
        return CITY
    if same_place(task_location.get('region'), provider_location.get('region')):
        return REGION
    return None


def area_fraction(match: Optional[str]) -> float:
    if match == LOCALITY:
        return LOCALITY_FRACTION
    if match == CITY:
        return CITY_FRACTION
    if match == REGION:
        return REGION_FRACTION
    return 0.0


def score_location(
    task_location: Optional[Dict[str, Any]],
    provider_location: Optional[Dict[str, Any]],
    max_points: float,
    max_distance_km: Optional[float] = None,
    remote: bool = False
) -> Tuple[float, Optional[float]]:
    """
    Score how close a provider is to a task.

    Args:
        task_location: Task location descriptor
        provider_location: Provider location descriptor
        max_points: Maximum points available for this scoring slot
        max_distance_km: Optional travel limit set on the task
        remote: True if the task can be done remotely

    Returns:
        Tuple of (score in [0, max_points], distance in km or None)
    """
    distance = distance_between(task_location, provider_location)

    if remote:
        return float(max_points), distance

    if distance is not None:
        if max_distance_km is not None and distance > float(max_distance_km):
            return 0.0, distance
        return max_points * distance_fraction(distance), distance

    return max_points * area_fraction(area_match(task_location, provider_location)), None


def in_area(
    task_location: Optional[Dict[str, Any]],
    provider_location: Optional[Dict[str, Any]],
    max_distance_km: Optional[float] = None
) -> bool:
    """
    True if the provider can reach the task.

    With GPS on both sides this is decided by distance alone: within the
    travel limit and inside some distance band. Otherwise the two
    descriptors must share a locality, city or region.
    """
    distance = distance_between(task_location, provider_location)
    if distance is not None:
        if max_distance_km is not None and distance > float(max_distance_km):
            return False
        return distance_fraction(distance) > 0
    return area_match(task_location, provider_location) is not None
