"""Supabase access for rides, live locations, profiles and the ledger.

Ride mutations go through ``conditional_update``: the row is only changed when
it still matches the expected prior state, and an empty result tells the
caller it lost the race.
"""
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

import httpx
from postgrest.exceptions import APIError
from supabase import create_client, Client

from ridedispatch.config import settings
from ridedispatch.models.ride import Ride
from ridedispatch.models.transaction import LedgerEntry, DriverLocation

logger = logging.getLogger(__name__)

_client: Optional[Client] = None


def get_supabase() -> Client:
    global _client
    if _client is None:
        _client = create_client(settings.supabase_url, settings.supabase_key)
    return _client


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def timestamp(dt: Optional[datetime] = None) -> str:
    """ISO-8601 UTC string with fixed precision, so stored values sort correctly."""
    dt = dt or utc_now()
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


class BalanceOutcome(str, Enum):
    OK = "ok"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    ERROR = "error"


# --- Rides ---

def get_ride(ride_id: str) -> Optional[Ride]:
    client = get_supabase()
    result = client.table("rides").select("*").eq("id", ride_id).limit(1).execute()
    return Ride(**result.data[0]) if result.data else None


def insert_ride(row: dict) -> Ride:
    client = get_supabase()
    result = client.table("rides").insert(row).execute()
    return Ride(**result.data[0])


def conditional_update(ride_id: str, changes: dict, expect: Optional[dict] = None,
                       older_than: Optional[tuple[str, str]] = None) -> Optional[Ride]:
    """
    Update the ride only if it still matches ``expect``.

    ``expect`` maps column -> expected value: None means IS NULL, a list or
    tuple means IN, anything else equality. ``older_than`` is an optional
    (column, timestamp) pair requiring column < timestamp.
    Returns the updated ride, or None when no row matched.
    """
    client = get_supabase()
    query = client.table("rides").update(changes).eq("id", ride_id)
    for column, value in (expect or {}).items():
        if value is None:
            query = query.is_(column, "null")
        elif isinstance(value, (list, tuple)):
            query = query.in_(column, [_plain(v) for v in value])
        else:
            query = query.eq(column, _plain(value))
    if older_than:
        query = query.lt(older_than[0], older_than[1])
    result = query.execute()
    return Ride(**result.data[0]) if result.data else None


def select_rides(status: str, older_than: Optional[tuple[str, str]] = None,
                 not_after: Optional[tuple[str, str]] = None, unassigned: bool = False,
                 assigned: bool = False, limit: Optional[int] = None) -> list[Ride]:
    """Range query: rides in ``status`` matching an optional time predicate."""
    client = get_supabase()
    query = client.table("rides").select("*").eq("status", _plain(status))
    if unassigned:
        query = query.is_("driver_id", "null")
    if assigned:
        query = query.not_.is_("driver_id", "null")
    if older_than:
        query = query.lt(older_than[0], older_than[1])
    if not_after:
        query = query.lte(not_after[0], not_after[1])
    result = query.limit(limit or settings.rides_per_tick).execute()
    return [Ride(**row) for row in result.data or []]


def passenger_has_failed_payment(passenger_id: str) -> bool:
    client = get_supabase()
    result = client.table("rides").select("id").eq("passenger_id", passenger_id) \
        .eq("payment_status", "PAYMENT_FAILED").limit(1).execute()
    return bool(result.data)


def get_debt_rides() -> list[dict]:
    client = get_supabase()
    result = client.table("rides").select(
        "id, passenger_id, driver_id, fare_estimate, payment_method, payment_status, updated_at"
    ).in_("payment_status", ["PAYMENT_FAILED", "COMMISSION_OWED"]).execute()
    return result.data or []


# --- Profiles & balances ---

def get_balance(user_id: str) -> Optional[float]:
    client = get_supabase()
    result = client.table("profiles").select("balance").eq("id", user_id).limit(1).execute()
    if not result.data:
        return None
    return float(result.data[0].get("balance") or 0)


def get_push_tokens(user_ids: list[str]) -> dict[str, str]:
    if not user_ids:
        return {}
    client = get_supabase()
    result = client.table("profiles").select("id, push_token").in_("id", list(user_ids)).execute()
    return {row["id"]: row["push_token"] for row in result.data or [] if row.get("push_token")}


def decrement_balance(user_id: str, amount: float) -> BalanceOutcome:
    return _balance_rpc("decrement_balance", user_id, amount)


def increment_balance(user_id: str, amount: float) -> BalanceOutcome:
    return _balance_rpc("increment_balance", user_id, amount)


def _balance_rpc(name: str, user_id: str, amount: float) -> BalanceOutcome:
    client = get_supabase()
    try:
        client.rpc(name, {"user_id": user_id, "amount": amount}).execute()
        return BalanceOutcome.OK
    except APIError as e:
        message = (e.message or str(e)).lower()
        if "insufficient" in message:
            logger.warning("%s(%s, %s): insufficient funds", name, user_id, amount)
            return BalanceOutcome.INSUFFICIENT_FUNDS
        logger.error("%s(%s, %s) failed: %s", name, user_id, amount, e.message)
        return BalanceOutcome.ERROR
    except httpx.HTTPError as e:
        logger.error("%s(%s, %s) unreachable: %s", name, user_id, amount, e)
        return BalanceOutcome.ERROR


# --- Ledger ---

def insert_transaction(entry: LedgerEntry) -> dict:
    client = get_supabase()
    result = client.table("transactions").insert(entry.model_dump()).execute()
    return result.data[0] if result.data else {}


# --- Driver live locations ---

def upsert_driver_location(location: DriverLocation) -> None:
    client = get_supabase()
    data = location.model_dump()
    data["updated_at"] = timestamp(location.updated_at)
    client.table("driver_locations").upsert(data, on_conflict="driver_id").execute()


def get_driver_location(driver_id: str) -> Optional[DriverLocation]:
    client = get_supabase()
    result = client.table("driver_locations").select("*").eq("driver_id", driver_id).limit(1).execute()
    return DriverLocation(**result.data[0]) if result.data else None


def delete_driver_location(driver_id: str) -> None:
    client = get_supabase()
    client.table("driver_locations").delete().eq("driver_id", driver_id).execute()


# --- Collaborator procedures ---

def calculate_fare_estimate(pickup_lat: float, pickup_lng: float,
                            dropoff_lat: float, dropoff_lng: float) -> Optional[float]:
    client = get_supabase()
    result = client.rpc("calculate_fare_estimate", {
        "pickup_lat": pickup_lat,
        "pickup_lng": pickup_lng,
        "dropoff_lat": dropoff_lat,
        "dropoff_lng": dropoff_lng,
    }).execute()
    try:
        value = float(result.data)
    except (TypeError, ValueError):
        return None
    return value if value > 0 else None


def find_and_offer_ride(ride_id: str) -> list[str]:
    """Ask the matcher to offer the ride; returns the ids of the drivers it offered."""
    client = get_supabase()
    result = client.rpc("find_and_offer_ride", {"target_ride_id": ride_id}).execute()
    driver_ids = []
    for item in result.data or []:
        if isinstance(item, dict):
            item = next(iter(item.values()), None)
        if item:
            driver_ids.append(str(item))
    return driver_ids


def cleanup_expired_offers() -> None:
    client = get_supabase()
    client.rpc("cleanup_expired_offers", {}).execute()


def _plain(value):
    return value.value if isinstance(value, Enum) else value
