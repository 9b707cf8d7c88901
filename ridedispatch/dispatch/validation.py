"""Guards for GPS input and offered prices."""
import logging
import math
from typing import Optional

from ridedispatch.errors import InvalidInput

logger = logging.getLogger(__name__)

EARTH_RADIUS_M = 6_371_000


def validate_coordinates(lat, lng) -> None:
    """Reject anything that would crash the locality index downstream."""
    for value in (lat, lng):
        if value is None or isinstance(value, bool) or not isinstance(value, (int, float)):
            raise InvalidInput("Latitude and Longitude are required and must be numbers.")
        if math.isnan(value) or math.isinf(value):
            raise InvalidInput(f"Invalid GPS coordinates: {lat}, {lng}")
    if lat < -90 or lat > 90 or lng < -180 or lng > 180:
        raise InvalidInput(f"Invalid GPS coordinates: {lat}, {lng}")


def resolve_price(floor_price: float, offered_fare: Optional[float]) -> float:
    """
    Passengers may bid above the computed floor but never below it.
    Returns max(floor, offer) for a positive numeric offer, else the floor.
    """
    if isinstance(offered_fare, bool) or not isinstance(offered_fare, (int, float)) or offered_fare <= 0:
        return floor_price
    if offered_fare > floor_price:
        logger.info("Passenger boosted price: %s -> %s", floor_price, offered_fare)
        return offered_fare
    logger.info("Offer too low (%s), enforcing floor %s", offered_fare, floor_price)
    return floor_price


def distance_meters(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two points in meters."""
    lat1, lat2 = math.radians(lat1), math.radians(lat2)
    dlat = lat2 - lat1
    dlng = math.radians(lng2 - lng1)
    a = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
    c = 2 * math.asin(math.sqrt(a))
    return EARTH_RADIUS_M * c
