"""Timeouts for rides stuck in a non-terminal state."""
import logging
from datetime import datetime, timedelta
from typing import Optional

from ridedispatch import database
from ridedispatch.config import settings
from ridedispatch.dispatch.workers import run_isolated
from ridedispatch.models.ride import Ride, RideStatus
from ridedispatch.notifications.outbox import outbox

logger = logging.getLogger(__name__)

REASSIGNED_REASON = "DRIVER_TIMEOUT_REASSIGNED"


def expire_stale_rides(now: Optional[datetime] = None) -> dict:
    """
    Unassigned PENDING rides untouched for ``stale_timeout_minutes`` (by
    updated_at) give up with NO_DRIVERS_AVAILABLE. A ride that already has a
    committed driver is never expired here. Expired matcher offers are cleaned
    up after.
    """
    now = now or database.utc_now()
    cutoff = database.timestamp(now - timedelta(minutes=settings.stale_timeout_minutes))
    rides = database.select_rides(RideStatus.PENDING, older_than=("updated_at", cutoff),
                                  unassigned=True, limit=settings.rides_per_tick)

    stats = {"selected": len(rides)}
    if rides:
        stats.update(run_isolated(rides, lambda ride: _expire(ride, cutoff, now), "stale_rides"))
        logger.warning("Timeout: %d unmatched rides checked for expiry", len(rides))

    try:
        database.cleanup_expired_offers()
    except Exception as e:
        logger.error("Error cleaning offers: %s", e)
    return stats


def _expire(ride: Ride, cutoff: str, now: datetime) -> bool:
    updated = database.conditional_update(
        ride.id,
        {"status": RideStatus.NO_DRIVERS_AVAILABLE.value, "updated_at": database.timestamp(now)},
        expect={"status": RideStatus.PENDING, "driver_id": None},
        older_than=("updated_at", cutoff),
    )
    if updated is None:
        return False
    outbox.notify(ride.passenger_id, "No Drivers Available",
                  "We couldn't find a driver for your ride. Please try again.")
    return True


def reclaim_hoarded_rides(now: Optional[datetime] = None) -> dict:
    """
    ACCEPTED rides whose driver has not moved them on for
    ``hoarding_timeout_minutes`` go back to the open pool as a fresh PENDING ride.
    So do activated pre-assigned rides (PENDING with a driver) that the driver
    never confirmed.
    """
    now = now or database.utc_now()
    cutoff = database.timestamp(now - timedelta(minutes=settings.hoarding_timeout_minutes))
    rides = database.select_rides(RideStatus.ACCEPTED, older_than=("updated_at", cutoff),
                                  limit=settings.rides_per_tick)
    rides += database.select_rides(RideStatus.PENDING, older_than=("updated_at", cutoff),
                                   assigned=True, limit=settings.rides_per_tick)
    if not rides:
        return {"selected": 0}

    stats = run_isolated(rides, lambda ride: _reclaim(ride, cutoff, now), "hoarded_rides")
    return {"selected": len(rides), **stats}


def _reclaim(ride: Ride, cutoff: str, now: datetime) -> bool:
    stamp = database.timestamp(now)
    updated = database.conditional_update(
        ride.id,
        {
            "status": RideStatus.PENDING.value,
            "driver_id": None,
            "dispatch_batch": 1,
            "last_offer_sent_at": stamp,
            "updated_at": stamp,
            "cancellation_reason": REASSIGNED_REASON,
        },
        expect={"status": ride.status, "driver_id": ride.driver_id},
        older_than=("updated_at", cutoff),
    )
    if updated is None:
        return False

    logger.warning("Reclaimed ride %s from unresponsive driver %s", ride.id, ride.driver_id)
    outbox.notify(ride.passenger_id, "Finding You a New Driver",
                  "Your driver did not respond, so we are looking for another one.")
    outbox.notify(ride.driver_id, "Ride Reassigned",
                  "The ride was released because it was not started in time.")
    return True
