"""Ride lifecycle operations driven by passengers and drivers.

Every state change is a conditional update on the ride row: the update only
applies when the ride is still in the state (and owned by the party) this
operation expects, so of two racing requests at most one wins and the other
gets Unavailable / Forbidden instead of overwriting.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

from ridedispatch import database
from ridedispatch.config import settings
from ridedispatch.database import BalanceOutcome
from ridedispatch.dispatch import geo_index, settlement
from ridedispatch.dispatch.state_machine import (
    ACCEPTABLE, PASSENGER_CANCELLABLE, InvalidTransition, required_prior,
)
from ridedispatch.dispatch.validation import validate_coordinates, resolve_price, distance_meters
from ridedispatch.dispatch.waves import offer_ride
from ridedispatch.errors import (
    InvalidInput, OutstandingDebt, InsufficientBalance, NotFound, Forbidden,
    Unavailable, TooFarFromPickup, UpstreamUnavailable, translate_errors,
)
from ridedispatch.models.ride import Ride, RideStatus, PaymentMethod, PaymentStatus
from ridedispatch.models.transaction import DriverLocation
from ridedispatch.notifications.outbox import outbox

logger = logging.getLogger(__name__)

NO_SHOW_REASON = "PASSENGER_NO_SHOW"

STATUS_MESSAGES = {
    RideStatus.ARRIVED: ("Driver Arrived", "Your driver is waiting at the pickup point."),
    RideStatus.IN_PROGRESS: ("Trip Started", "You are on your way. Enjoy the ride!"),
    RideStatus.COMPLETED: ("Trip Completed", "You have arrived. Thanks for riding with us!"),
}


def _point(value) -> tuple[float, float]:
    if value is None:
        raise InvalidInput("Pickup and Dropoff locations are required")
    if isinstance(value, dict):
        lat, lng = value.get("lat"), value.get("lng")
    else:
        lat, lng = getattr(value, "lat", None), getattr(value, "lng", None)
    validate_coordinates(lat, lng)
    return lat, lng


@translate_errors("request_ride")
def request_ride(passenger_id: str, pickup, dropoff, pickup_address: Optional[str] = None,
                 dropoff_address: Optional[str] = None,
                 payment_method: Union[PaymentMethod, str] = PaymentMethod.CASH,
                 note: Optional[str] = None, offered_fare: Optional[float] = None,
                 scheduled_time: Optional[datetime] = None) -> Ride:
    if not passenger_id:
        raise InvalidInput("passenger_id is required")
    pickup_lat, pickup_lng = _point(pickup)
    dropoff_lat, dropoff_lng = _point(dropoff)
    try:
        payment_method = PaymentMethod(payment_method)
    except ValueError:
        raise InvalidInput(f"Unknown payment method: {payment_method}")

    if database.passenger_has_failed_payment(passenger_id):
        raise OutstandingDebt("You have an unpaid ride. Please settle your balance first.")

    floor_price = database.calculate_fare_estimate(pickup_lat, pickup_lng, dropoff_lat, dropoff_lng)
    if floor_price is None:
        raise UpstreamUnavailable("Could not calculate fare for this route.")
    final_price = resolve_price(floor_price, offered_fare)

    if payment_method == PaymentMethod.WALLET:
        balance = database.get_balance(passenger_id)
        if balance is None or balance < final_price:
            raise InsufficientBalance(
                f"Insufficient balance. Fare: {final_price:g}, you have: {balance or 0:g}"
            )

    scheduled = scheduled_time is not None
    now = database.timestamp()
    ride = database.insert_ride({
        "passenger_id": passenger_id,
        "pickup_lat": pickup_lat,
        "pickup_lng": pickup_lng,
        "dropoff_lat": dropoff_lat,
        "dropoff_lng": dropoff_lng,
        "pickup_address": pickup_address,
        "dropoff_address": dropoff_address,
        "fare_estimate": final_price,
        "status": (RideStatus.SCHEDULED if scheduled else RideStatus.PENDING).value,
        "scheduled_time": database.timestamp(scheduled_time) if scheduled else None,
        "payment_method": payment_method.value,
        "payment_status": PaymentStatus.UNPAID.value,
        "nearby_cells": geo_index.search_area(pickup_lat, pickup_lng, scheduled=scheduled),
        "note": note,
        "dispatch_batch": 1,
        "last_offer_sent_at": now,
        "created_at": now,
        "updated_at": now,
    })
    logger.info("Ride %s created for passenger %s: %s, fare %s", ride.id, passenger_id, ride.status, final_price)

    if scheduled:
        logger.info("Ride %s scheduled for %s", ride.id, ride.scheduled_time)
        return ride

    # The ride exists either way; a failed first attempt is retried by the wave scheduler.
    try:
        offer_ride(ride)
    except Exception as e:
        logger.error("Initial dispatch failed for ride %s: %s", ride.id, e)
    return ride


@translate_errors("accept_ride")
def accept_ride(ride_id: str, driver_id: str) -> Ride:
    logger.info("Driver %s accepting ride %s", driver_id, ride_id)
    ride = database.get_ride(ride_id)
    if ride is None:
        raise NotFound("Ride not found.")

    if ride.status == RideStatus.ACCEPTED and ride.driver_id == driver_id:
        return ride
    if ride.status not in ACCEPTABLE:
        raise Unavailable("Ride is no longer available.")

    new_status = RideStatus.SCHEDULED if _not_yet_due(ride) else RideStatus.ACCEPTED
    changes = {"status": new_status.value, "updated_at": database.timestamp()}

    if ride.driver_id == driver_id:
        # Pre-assigned driver confirming; it must still be theirs.
        expect = {"driver_id": driver_id, "status": ACCEPTABLE}
    else:
        changes.update(driver_id=driver_id, cancellation_reason=None)
        expect = {"driver_id": None, "status": ACCEPTABLE}

    updated = database.conditional_update(ride_id, changes, expect=expect)
    if updated is None:
        logger.info("Driver %s lost ride %s", driver_id, ride_id)
        raise Unavailable("Ride taken or unavailable.")

    if ride.status == RideStatus.SCHEDULED and updated.scheduled_time:
        outbox.notify(updated.passenger_id, "Ride Confirmed",
                      f"A driver has accepted your scheduled ride for {updated.scheduled_time:%H:%M}.")
    else:
        outbox.notify(updated.passenger_id, "Driver Found",
                      "A driver has accepted your request and is on the way.")
    return updated


def _not_yet_due(ride: Ride) -> bool:
    """A scheduled ride stays SCHEDULED on accept until it enters the activation window."""
    if ride.status != RideStatus.SCHEDULED or ride.scheduled_time is None:
        return False
    scheduled = ride.scheduled_time
    if scheduled.tzinfo is None:
        scheduled = scheduled.replace(tzinfo=timezone.utc)
    return scheduled > database.utc_now() + timedelta(minutes=settings.activation_lookahead_minutes)


@translate_errors("update_ride_status")
def update_status(ride_id: str, driver_id: str, target: Union[RideStatus, str],
                  lat: Optional[float] = None, lng: Optional[float] = None) -> Ride:
    try:
        target = RideStatus(target)
        prior = required_prior(target)
    except (ValueError, InvalidTransition):
        raise InvalidInput(f"Drivers cannot set status {target}")

    ride = database.get_ride(ride_id)
    if ride is None:
        raise NotFound("Ride not found.")
    if ride.driver_id != driver_id:
        raise Forbidden("Could not update ride status. Check permissions.")

    if target == RideStatus.ARRIVED:
        _check_proximity(ride, driver_id, lat, lng)

    logger.info("Driver %s updating ride %s to %s", driver_id, ride_id, target.value)
    updated = database.conditional_update(
        ride_id,
        {"status": target.value, "updated_at": database.timestamp()},
        expect={"driver_id": driver_id, "status": prior},
    )
    if updated is None:
        raise Forbidden("Could not update ride status. Check permissions.")

    title, body = STATUS_MESSAGES[target]
    outbox.notify(updated.passenger_id, title, body, data={"rideId": updated.id, "type": target.value})

    if target == RideStatus.COMPLETED:
        try:
            updated.payment_status = settlement.settle(updated)
        except Exception:
            logger.exception("Settlement crashed for ride %s; needs manual reconciliation", ride_id)
    return updated


def _check_proximity(ride: Ride, driver_id: str, lat: Optional[float], lng: Optional[float]) -> None:
    if lat is not None and lng is not None:
        validate_coordinates(lat, lng)
        position = (lat, lng)
    else:
        location = database.get_driver_location(driver_id)
        position = (location.lat, location.lng) if location else None

    if position is None:
        logger.info("No location for driver %s, skipping arrival check", driver_id)
        return

    distance = distance_meters(position[0], position[1], ride.pickup_lat, ride.pickup_lng)
    logger.info("Driver %s is %.0f meters from pickup of ride %s", driver_id, distance, ride.id)
    if distance > settings.arrival_radius_meters:
        raise TooFarFromPickup(f"You are {distance:.0f} meters from the pickup point.")


@translate_errors("cancel_ride_by_passenger")
def cancel_by_passenger(ride_id: str, passenger_id: str, reason: str = "USER_CANCELLED") -> Ride:
    ride = database.get_ride(ride_id)
    if ride is None:
        raise NotFound("Ride not found.")
    if ride.passenger_id != passenger_id:
        raise Forbidden("This is not your ride.")
    if ride.status not in PASSENGER_CANCELLABLE:
        raise Unavailable(f"Ride can no longer be cancelled ({ride.status}).")

    updated = database.conditional_update(
        ride_id,
        {
            "status": RideStatus.CANCELLED.value,
            "cancellation_reason": reason or "USER_CANCELLED",
            "updated_at": database.timestamp(),
        },
        expect={"passenger_id": passenger_id, "status": PASSENGER_CANCELLABLE},
    )
    if updated is None:
        raise Unavailable("Ride can no longer be cancelled.")

    logger.info("Passenger %s cancelled ride %s (%s)", passenger_id, ride_id, reason)
    if updated.driver_id:
        outbox.notify(updated.driver_id, "Ride Cancelled", "The passenger cancelled this ride.",
                      data={"rideId": updated.id, "type": "RIDE_CANCELLED"})
    return updated


@translate_errors("process_no_show_fee")
def process_no_show_fee(ride_id: str, driver_id: str) -> Ride:
    fee = settings.no_show_fee
    logger.info("Processing no-show for ride %s", ride_id)

    ride = database.get_ride(ride_id)
    if ride is None:
        raise NotFound("Ride not found.")
    if ride.driver_id != driver_id:
        raise Forbidden("Ride not found or access denied.")
    if ride.status != RideStatus.ARRIVED:
        raise Unavailable("Ride must be in ARRIVED status to charge no-show.")

    updated = database.conditional_update(
        ride_id,
        {
            "status": RideStatus.CANCELLED.value,
            "cancellation_reason": NO_SHOW_REASON,
            "payment_status": PaymentStatus.PAID.value,
            "fare_estimate": fee,
            "updated_at": database.timestamp(),
        },
        expect={"driver_id": driver_id, "status": RideStatus.ARRIVED},
    )
    if updated is None:
        raise Unavailable("Ride must be in ARRIVED status to charge no-show.")

    # Balances only, no ledger line on this path.
    if database.decrement_balance(ride.passenger_id, fee) != BalanceOutcome.OK:
        logger.error("Failed to charge no-show fee to passenger %s for ride %s", ride.passenger_id, ride_id)
    earnings = round(fee - settlement.commission_for(fee), 2)
    if database.increment_balance(driver_id, earnings) != BalanceOutcome.OK:
        logger.error("Failed to credit driver %s %s for no-show on ride %s", driver_id, earnings, ride_id)

    outbox.notify(ride.passenger_id, "Ride Cancelled",
                  f"Your driver waited but you did not show up. A fee of {fee:g} was charged.")
    return updated


@translate_errors("update_driver_location")
def update_driver_location(driver_id: str, lat: float, lng: float, heading: Optional[float] = 0) -> dict:
    validate_coordinates(lat, lng)
    database.upsert_driver_location(DriverLocation(
        driver_id=driver_id,
        lat=lat,
        lng=lng,
        heading=heading or 0,
        current_cell=geo_index.cell_for(lat, lng),
        updated_at=database.utc_now(),
    ))
    return {"success": True}


@translate_errors("update_driver_location_batch")
def update_driver_location_batch(driver_id: str, locations: list) -> dict:
    """Phones buffer fixes while offline; only the newest one is live."""
    if not locations:
        return {"success": True}
    latest = locations[-1]
    if isinstance(latest, dict):
        lat, lng, heading = latest.get("lat"), latest.get("lng"), latest.get("heading")
    else:
        lat, lng, heading = latest.lat, latest.lng, latest.heading
    return update_driver_location(driver_id, lat, lng, heading)


@translate_errors("go_offline")
def go_offline(driver_id: str) -> dict:
    database.delete_driver_location(driver_id)
    logger.info("Driver %s went offline", driver_id)
    return {"success": True}
