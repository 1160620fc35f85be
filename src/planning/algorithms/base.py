"""
Shared geometry primitives for the matching algorithms
"""
from dataclasses import dataclass
import math


EARTH_RADIUS_KM = 6371.0


@dataclass(frozen=True)
class Location:
    """Point on the globe, decimal degrees"""
    lat: float
    lng: float


def haversine_distance(loc1: Location, loc2: Location) -> float:
    """
    Great-circle distance between two points in km

    Uses the haversine formula on a sphere of radius 6371 km.
    """
    lat1, lon1 = math.radians(loc1.lat), math.radians(loc1.lng)
    lat2, lon2 = math.radians(loc2.lat), math.radians(loc2.lng)

    dlat = lat2 - lat1
    dlon = lon2 - lon1

    a = math.sin(dlat/2)**2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon/2)**2
    # float error can push a a hair above 1 for antipodal points
    c = 2 * math.asin(math.sqrt(min(1.0, a)))

    return EARTH_RADIUS_KM * c
