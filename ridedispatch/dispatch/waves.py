"""Dispatch waves: widen the search for rides nobody has accepted yet.

Every tick picks up PENDING, unassigned rides whose last offer is older than
the wave interval, bumps their dispatch batch (capped) and asks the matcher to
offer them again. A ride keeps being retried until a driver accepts it or the
reaper times it out.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from ridedispatch import database
from ridedispatch.config import settings
from ridedispatch.dispatch.workers import run_isolated
from ridedispatch.models.ride import Ride, RideStatus
from ridedispatch.notifications.outbox import outbox

logger = logging.getLogger(__name__)


def next_batch(current: int) -> int:
    return min(max(current, 0) + 1, settings.max_dispatch_batch)


def offer_ride(ride: Ride) -> list[str]:
    """Run the matcher for one ride and push the offer to every driver it picked."""
    driver_ids = database.find_and_offer_ride(ride.id)
    if driver_ids:
        outbox.notify(
            driver_ids,
            "New Ride Request",
            f"Fare {ride.fare_estimate:g}. Tap to accept immediately!",
            data={"rideId": ride.id, "type": "NEW_OFFER", "fare": ride.fare_estimate},
            priority="high",
            channel_id="ride-requests",
        )
    return driver_ids


def advance_wave(ride: Ride, now: Optional[datetime] = None) -> Optional[list[str]]:
    """
    Move one ride to its next wave. Returns the offered driver ids, or None if
    the ride changed underneath us and this wave was skipped.
    """
    updated = database.conditional_update(
        ride.id,
        {
            "dispatch_batch": next_batch(ride.dispatch_batch),
            "last_offer_sent_at": database.timestamp(now),
        },
        expect={"status": RideStatus.PENDING, "driver_id": None, "dispatch_batch": ride.dispatch_batch},
    )
    if updated is None:
        logger.info("Ride %s moved on before its wave, skipping", ride.id)
        return None
    return offer_ride(updated)


def run_dispatch_waves(now: Optional[datetime] = None) -> dict:
    now = now or database.utc_now()
    cutoff = database.timestamp(now - timedelta(seconds=settings.wave_interval_seconds))
    rides = database.select_rides(
        RideStatus.PENDING,
        older_than=("last_offer_sent_at", cutoff),
        unassigned=True,
        limit=settings.rides_per_tick,
    )
    if not rides:
        return {"selected": 0}

    logger.info("Processing waves for %d rides", len(rides))
    stats = run_isolated(rides, lambda ride: advance_wave(ride, now), "dispatch_waves")
    return {"selected": len(rides), **stats}
