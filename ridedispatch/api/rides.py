"""Ride lifecycle API endpoints."""
from fastapi import APIRouter

from ridedispatch.dispatch import rides
from ridedispatch.models.ride import (
    RideRequest, AcceptRequest, ArrivedRequest, TripRequest,
    PassengerCancelRequest, NoShowRequest, RideStatus,
)

router = APIRouter()


def _ok(ride, **extra) -> dict:
    return {"success": True, "ride": ride.model_dump(mode="json"), **extra}


@router.post("/request")
def request_ride(body: RideRequest):
    """Create a ride and start looking for a driver (unless it is scheduled)."""
    ride = rides.request_ride(
        passenger_id=body.passenger_id,
        pickup=body.pickup,
        dropoff=body.dropoff,
        pickup_address=body.pickup_address,
        dropoff_address=body.dropoff_address,
        payment_method=body.payment_method,
        note=body.note,
        offered_fare=body.offered_fare,
        scheduled_time=body.scheduled_time,
    )
    return _ok(ride)


@router.post("/accept")
def accept_ride(body: AcceptRequest):
    return _ok(rides.accept_ride(body.ride_id, body.driver_id))


@router.post("/arrived")
def driver_arrived(body: ArrivedRequest):
    """Client position is optional; without it the last known live location is used."""
    return _ok(rides.update_status(body.ride_id, body.driver_id, RideStatus.ARRIVED, body.lat, body.lng))


@router.post("/start")
def start_trip(body: TripRequest):
    return _ok(rides.update_status(body.ride_id, body.driver_id, RideStatus.IN_PROGRESS))


@router.post("/complete")
def complete_trip(body: TripRequest):
    return _ok(rides.update_status(body.ride_id, body.driver_id, RideStatus.COMPLETED))


@router.post("/cancel/passenger")
def cancel_by_passenger(body: PassengerCancelRequest):
    return _ok(rides.cancel_by_passenger(body.ride_id, body.passenger_id, body.reason))


@router.post("/cancel/no-show")
def charge_no_show(body: NoShowRequest):
    ride = rides.process_no_show_fee(body.ride_id, body.driver_id)
    return _ok(ride, message="No-show processed successfully")
