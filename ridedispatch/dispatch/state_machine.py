"""Legal ride status transitions."""
from ridedispatch.models.ride import RideStatus

TRANSITIONS: dict[RideStatus, set[RideStatus]] = {
    RideStatus.PENDING: {RideStatus.ACCEPTED, RideStatus.NO_DRIVERS_AVAILABLE, RideStatus.CANCELLED},
    RideStatus.SCHEDULED: {RideStatus.ACCEPTED, RideStatus.PENDING, RideStatus.CANCELLED},
    RideStatus.ACCEPTED: {RideStatus.ARRIVED, RideStatus.PENDING, RideStatus.CANCELLED},
    RideStatus.ARRIVED: {RideStatus.IN_PROGRESS, RideStatus.CANCELLED},
    RideStatus.IN_PROGRESS: {RideStatus.COMPLETED},
    RideStatus.COMPLETED: set(),
    RideStatus.CANCELLED: set(),
    # Terminal for the system, but a driver may still rescue it by accepting.
    RideStatus.NO_DRIVERS_AVAILABLE: {RideStatus.ACCEPTED},
}

TERMINAL = {RideStatus.COMPLETED, RideStatus.CANCELLED, RideStatus.NO_DRIVERS_AVAILABLE}

ACCEPTABLE = [RideStatus.PENDING, RideStatus.SCHEDULED, RideStatus.NO_DRIVERS_AVAILABLE]

PASSENGER_CANCELLABLE = [RideStatus.PENDING, RideStatus.SCHEDULED, RideStatus.ACCEPTED]

DRIVER_PROGRESS = {
    RideStatus.ARRIVED: RideStatus.ACCEPTED,
    RideStatus.IN_PROGRESS: RideStatus.ARRIVED,
    RideStatus.COMPLETED: RideStatus.IN_PROGRESS,
}


class InvalidTransition(ValueError):
    pass


def can_transition(current, target) -> bool:
    return RideStatus(target) in TRANSITIONS[RideStatus(current)]


def required_prior(target) -> RideStatus:
    """The status a ride must be in for a driver to move it to ``target``."""
    try:
        return DRIVER_PROGRESS[RideStatus(target)]
    except (KeyError, ValueError):
        raise InvalidTransition(f"Drivers cannot set status {target}")
