from math import asin, cos, radians, sin, sqrt

from clockin.errors import OutsideGeofence
from clockin.schemas import GeoPoint

EARTH_RADIUS_M = 6371000.0


def distance_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    lat1_rad = radians(lat1)
    lon1_rad = radians(lon1)
    lat2_rad = radians(lat2)
    lon2_rad = radians(lon2)

    delta_lat = lat2_rad - lat1_rad
    delta_lon = lon2_rad - lon1_rad

    a = sin(delta_lat / 2) ** 2 + cos(lat1_rad) * cos(lat2_rad) * sin(delta_lon / 2) ** 2
    c = 2 * asin(sqrt(min(1.0, a)))
    return EARTH_RADIUS_M * c


def distance_between(origin: GeoPoint, target: GeoPoint) -> float:
    return distance_m(origin.latitude, origin.longitude, target.latitude, target.longitude)


def assert_within_geofence(location: GeoPoint, center: GeoPoint, radius_m: float) -> float:
    """Raise OutsideGeofence when ``location`` is strictly farther than ``radius_m``.

    A point exactly on the boundary is accepted. Returns the measured distance.
    """
    distance = distance_between(location, center)
    if distance > radius_m:
        raise OutsideGeofence(f"Outside allowed geofence. Distance: {round(distance)}m.")
    return distance
