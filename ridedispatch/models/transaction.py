from pydantic import BaseModel
from typing import Optional
from datetime import datetime


class LedgerEntry(BaseModel):
    """One append-only line of the ``transactions`` table.

    Amounts are signed from the driver's point of view: a commission taken by
    the platform is negative.
    """
    ride_id: str
    driver_id: str
    amount: float
    description: str


class DriverLocation(BaseModel):
    driver_id: str
    lat: float
    lng: float
    heading: Optional[float] = 0
    current_cell: Optional[str] = None
    updated_at: Optional[datetime] = None


class DebtReport(BaseModel):
    passengers: list[dict] = []
    drivers: list[dict] = []
    total_unpaid_fares: float = 0.0
    total_commission_owed: float = 0.0
