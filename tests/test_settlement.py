"""Settlement of completed rides and the debt report built from its failures."""
import logging

import pytest
from postgrest.exceptions import APIError

from ridedispatch import database
from ridedispatch.dispatch import settlement
from ridedispatch.dispatch.reconciliation import build_debt_report, debt_report
from ridedispatch.models.ride import PaymentStatus


@pytest.fixture
def completed(fake_db, make_ride):
    def _make(method="CASH", fare=500.0, **fields):
        row = make_ride(status="COMPLETED", driver_id="driver-1", payment_method=method,
                        fare_estimate=fare, **fields)
        return database.get_ride(row["id"])
    return _make


def test_commission_rounding():
    assert settlement.commission_for(500) == 60
    assert settlement.commission_for(333.33) == 40.0
    assert settlement.commission_for(100, rate=0.2) == 20


def test_wallet_settlement_moves_money(fake_db, completed):
    fake_db.add_profile("passenger-1", balance=1000)
    fake_db.add_profile("driver-1", balance=0)
    ride = completed("WALLET")

    assert settlement.settle(ride) == PaymentStatus.PAID
    assert fake_db.balance("passenger-1") == 500
    assert fake_db.balance("driver-1") == 440
    assert fake_db.ride(ride.id)["payment_status"] == "PAID"

    ledger = fake_db.rows("transactions")
    assert len(ledger) == 1
    assert ledger[0]["amount"] == -60
    assert ledger[0]["description"] == "Ride Commission (12%) - Wallet Ride"


def test_wallet_debit_failure_marks_payment_failed(fake_db, completed):
    fake_db.add_profile("passenger-1", balance=100)
    fake_db.add_profile("driver-1", balance=0)
    ride = completed("WALLET")

    assert settlement.settle(ride) == PaymentStatus.PAYMENT_FAILED
    assert fake_db.ride(ride.id)["payment_status"] == "PAYMENT_FAILED"
    assert fake_db.balance("passenger-1") == 100
    # driver is still paid; the platform carries the shortfall
    assert fake_db.balance("driver-1") == 440
    assert fake_db.rows("transactions") == []


def test_cash_settlement_takes_commission_from_driver(fake_db, completed):
    fake_db.add_profile("driver-1", balance=100)
    ride = completed("CASH")

    assert settlement.settle(ride) == PaymentStatus.PAID
    assert fake_db.balance("driver-1") == 40
    assert fake_db.rows("transactions")[0]["description"] == "Ride Commission (12%) - Cash Ride"


def test_cash_debit_failure_marks_commission_owed(fake_db, completed):
    fake_db.add_profile("driver-1", balance=10)
    ride = completed("CASH")

    assert settlement.settle(ride) == PaymentStatus.COMMISSION_OWED
    assert fake_db.balance("driver-1") == 10
    assert fake_db.ride(ride.id)["payment_status"] == "COMMISSION_OWED"


def test_balance_procedure_error_is_not_paid(fake_db, completed):
    fake_db.add_profile("driver-1", balance=100)
    fake_db.fail("rpc", "decrement_balance", APIError({"message": "deadlock detected", "code": "40P01"}))
    ride = completed("CASH")
    assert settlement.settle(ride) == PaymentStatus.COMMISSION_OWED


def test_ledger_failure_is_logged_not_raised(fake_db, completed, caplog):
    fake_db.add_profile("driver-1", balance=100)
    fake_db.fail("transactions", "insert", APIError({"message": "relation does not exist", "code": "42P01"}))
    ride = completed("CASH")

    with caplog.at_level(logging.CRITICAL, logger="ridedispatch.dispatch.settlement"):
        assert settlement.settle(ride) == PaymentStatus.PAID
    assert fake_db.ride(ride.id)["payment_status"] == "PAID"
    assert any("Reconciliation gap" in r.message for r in caplog.records)


def test_already_settled_ride_is_left_alone(fake_db, completed):
    fake_db.add_profile("driver-1", balance=0)
    ride = completed("CASH", payment_status="PAID")
    settlement.settle(ride)
    assert fake_db.ride(ride.id)["payment_status"] == "PAID"


# --- Debt report ---

def test_empty_debt_report():
    report = build_debt_report([])
    assert report.passengers == []
    assert report.drivers == []
    assert report.total_unpaid_fares == 0


def test_debt_report_groups_by_party():
    rows = [
        {"id": "r1", "passenger_id": "p1", "driver_id": "d1", "fare_estimate": 500, "payment_status": "PAYMENT_FAILED"},
        {"id": "r2", "passenger_id": "p1", "driver_id": "d2", "fare_estimate": 300, "payment_status": "PAYMENT_FAILED"},
        {"id": "r3", "passenger_id": "p2", "driver_id": "d1", "fare_estimate": "250", "payment_status": "PAYMENT_FAILED"},
        {"id": "r4", "passenger_id": "p3", "driver_id": "d1", "fare_estimate": 1000, "payment_status": "COMMISSION_OWED"},
        {"id": "r5", "passenger_id": "p3", "driver_id": "d3", "fare_estimate": 500, "payment_status": "COMMISSION_OWED"},
    ]
    report = build_debt_report(rows)

    assert report.passengers == [
        {"passenger_id": "p1", "rides": 2, "amount": 800.0},
        {"passenger_id": "p2", "rides": 1, "amount": 250.0},
    ]
    assert report.drivers == [
        {"driver_id": "d1", "rides": 1, "amount": 120.0},
        {"driver_id": "d3", "rides": 1, "amount": 60.0},
    ]
    assert report.total_unpaid_fares == 1050
    assert report.total_commission_owed == 180


def test_debt_report_reads_failed_settlements(fake_db, completed):
    ride = completed("WALLET")
    settlement.settle(ride)
    report = debt_report()
    assert report.passengers == [{"passenger_id": "passenger-1", "rides": 1, "amount": 500.0}]
    assert report.drivers == []
