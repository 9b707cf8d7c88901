"""Driver presence API endpoints."""
from fastapi import APIRouter

from ridedispatch.dispatch import rides
from ridedispatch.errors import InvalidInput
from ridedispatch.models.ride import LocationUpdate, GoOfflineRequest

router = APIRouter()


@router.post("/update-location")
def update_location(body: LocationUpdate):
    # Newer app builds send buffered fixes as a batch
    if body.locations is not None:
        return rides.update_driver_location_batch(body.driver_id, body.locations)
    if body.lat is None or body.lng is None:
        raise InvalidInput("Latitude and Longitude are required and must be numbers.")
    return rides.update_driver_location(body.driver_id, body.lat, body.lng, body.heading)


@router.post("/go-offline")
def go_offline(body: GoOfflineRequest):
    return rides.go_offline(body.driver_id)
