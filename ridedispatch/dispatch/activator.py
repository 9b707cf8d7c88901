"""Promote scheduled rides into the live pool shortly before pickup."""
import logging
from datetime import datetime, timedelta
from typing import Optional

from ridedispatch import database
from ridedispatch.config import settings
from ridedispatch.dispatch.waves import offer_ride
from ridedispatch.dispatch.workers import run_isolated
from ridedispatch.models.ride import Ride, RideStatus
from ridedispatch.notifications.outbox import outbox

logger = logging.getLogger(__name__)


def activate_scheduled_rides(now: Optional[datetime] = None) -> dict:
    now = now or database.utc_now()
    horizon = database.timestamp(now + timedelta(minutes=settings.activation_lookahead_minutes))
    rides = database.select_rides(RideStatus.SCHEDULED, not_after=("scheduled_time", horizon),
                                  limit=settings.rides_per_tick)
    if not rides:
        return {"selected": 0}

    logger.info("Found %d rides to activate", len(rides))
    stats = run_isolated(rides, lambda ride: activate(ride, now), "scheduled_rides")
    return {"selected": len(rides), **stats}


def activate(ride: Ride, now: Optional[datetime] = None) -> bool:
    # Fresh timers so the stale check does not reap the ride on its next pass.
    stamp = database.timestamp(now)
    updated = database.conditional_update(
        ride.id,
        {
            "status": RideStatus.PENDING.value,
            "updated_at": stamp,
            "last_offer_sent_at": stamp,
            "dispatch_batch": 1,
        },
        expect={"status": RideStatus.SCHEDULED},
    )
    if updated is None:
        return False

    outbox.notify(
        updated.passenger_id,
        "Ride Activating",
        "Your driver is getting ready to head to you." if updated.driver_id
        else "We are now looking for a driver for your scheduled ride.",
    )

    if updated.driver_id:
        # No matcher run: an offer could expire and cancel a ride that already
        # has a committed driver.
        outbox.notify(updated.driver_id, "Scheduled Ride Starting",
                      "Your scheduled passenger is waiting. Please head to pickup.",
                      data={"rideId": updated.id, "type": "SCHEDULED_START"})
        logger.info("Activated pre-assigned ride %s for driver %s", updated.id, updated.driver_id)
    else:
        offered = offer_ride(updated)
        logger.info("Activated unassigned ride %s, offered to %d drivers", updated.id, len(offered))
    return True
