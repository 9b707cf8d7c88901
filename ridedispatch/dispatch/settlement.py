"""Settlement of completed rides.

A debit that does not go through is recorded on the ride as a debt marker
(PAYMENT_FAILED for the passenger, COMMISSION_OWED for the driver) so it can
be reconciled later; it is never treated as paid.
"""
import logging

from ridedispatch import database
from ridedispatch.config import settings
from ridedispatch.database import BalanceOutcome
from ridedispatch.models.ride import Ride, RideStatus, PaymentMethod, PaymentStatus
from ridedispatch.models.transaction import LedgerEntry

logger = logging.getLogger(__name__)


def commission_for(fare: float, rate: float = None) -> float:
    rate = settings.commission_rate if rate is None else rate
    return round(fare * rate, 2)


def settle(ride: Ride) -> PaymentStatus:
    """Settle a COMPLETED ride according to its payment method."""
    if ride.payment_method == PaymentMethod.WALLET:
        status = settle_wallet(ride)
    else:
        status = settle_cash(ride)
    _mark(ride, status)
    return status


def settle_wallet(ride: Ride) -> PaymentStatus:
    fare = ride.fare_estimate
    commission = commission_for(fare)
    earnings = round(fare - commission, 2)
    logger.info("Processing wallet payment for ride %s: %s", ride.id, fare)

    debit = database.decrement_balance(ride.passenger_id, fare)

    # The driver is paid even when the passenger debit fails; the platform
    # carries the shortfall until the PAYMENT_FAILED marker is reconciled.
    credit = database.increment_balance(ride.driver_id, earnings)
    if credit != BalanceOutcome.OK:
        logger.critical("Reconciliation gap: driver %s was not credited %s for ride %s",
                        ride.driver_id, earnings, ride.id)

    if debit != BalanceOutcome.OK:
        logger.error("Failed to deduct %s from passenger %s for ride %s (%s)",
                     fare, ride.passenger_id, ride.id, debit.value)
        return PaymentStatus.PAYMENT_FAILED

    _record(ride, -commission, f"Ride Commission ({_percent()}) - Wallet Ride")
    return PaymentStatus.PAID


def settle_cash(ride: Ride) -> PaymentStatus:
    commission = commission_for(ride.fare_estimate)
    logger.info("Processing cash commission for ride %s: %s", ride.id, commission)

    debit = database.decrement_balance(ride.driver_id, commission)
    if debit != BalanceOutcome.OK:
        logger.error("Failed to deduct commission %s from driver %s for ride %s (%s)",
                     commission, ride.driver_id, ride.id, debit.value)
        return PaymentStatus.COMMISSION_OWED

    _record(ride, -commission, f"Ride Commission ({_percent()}) - Cash Ride")
    return PaymentStatus.PAID


def _record(ride: Ride, amount: float, description: str) -> None:
    entry = LedgerEntry(ride_id=ride.id, driver_id=ride.driver_id, amount=amount, description=description)
    try:
        database.insert_transaction(entry)
    except Exception as e:
        # money already moved, only the receipt is missing
        logger.critical("Reconciliation gap: ledger insert failed for ride %s (%s): %s",
                        ride.id, amount, e)


def _mark(ride: Ride, status: PaymentStatus) -> None:
    updated = database.conditional_update(
        ride.id,
        {"payment_status": status.value, "updated_at": database.timestamp()},
        expect={"status": RideStatus.COMPLETED, "payment_status": PaymentStatus.UNPAID},
    )
    if updated is None:
        logger.warning("Ride %s was already settled, payment status left unchanged", ride.id)


def _percent() -> str:
    return f"{settings.commission_rate * 100:g}%"
