"""Outstanding debts left behind by failed settlement debits."""
import pandas as pd

from ridedispatch import database
from ridedispatch.dispatch.settlement import commission_for
from ridedispatch.models.transaction import DebtReport


def build_debt_report(rows: list[dict]) -> DebtReport:
    """
    Summarize PAYMENT_FAILED rides per passenger (unpaid fares) and
    COMMISSION_OWED rides per driver (commission the platform never collected).
    """
    if not rows:
        return DebtReport()

    df = pd.DataFrame(rows)
    df["fare_estimate"] = pd.to_numeric(df["fare_estimate"], errors="coerce").fillna(0)

    failed = df[df["payment_status"] == "PAYMENT_FAILED"]
    owed = df[df["payment_status"] == "COMMISSION_OWED"].copy()
    owed["commission"] = owed["fare_estimate"].apply(commission_for)

    passengers = (
        failed.groupby("passenger_id")
        .agg(rides=("id", "count"), amount=("fare_estimate", "sum"))
        .reset_index()
        .sort_values("amount", ascending=False)
    )
    drivers = (
        owed.groupby("driver_id")
        .agg(rides=("id", "count"), amount=("commission", "sum"))
        .reset_index()
        .sort_values("amount", ascending=False)
    )

    return DebtReport(
        passengers=_records(passengers, "passenger_id"),
        drivers=_records(drivers, "driver_id"),
        total_unpaid_fares=round(float(failed["fare_estimate"].sum()), 2),
        total_commission_owed=round(float(owed["commission"].sum()), 2),
    )


def debt_report() -> DebtReport:
    return build_debt_report(database.get_debt_rides())


def _records(frame: pd.DataFrame, key: str) -> list[dict]:
    return [
        {key: str(row[key]), "rides": int(row["rides"]), "amount": round(float(row["amount"]), 2)}
        for _, row in frame.iterrows()
    ]
