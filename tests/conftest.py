"""Shared fixtures: an in-memory stand-in for the Supabase client.

The fake implements the slice of the PostgREST query builder the service uses
(select / insert / update / upsert / delete with eq, is_, in_, lt, lte ...).
Every execute() runs under one lock, so a filtered update behaves like a
single conditional UPDATE statement and racing callers see exactly one winner.
"""
import os
import sys
import threading
import uuid
from datetime import datetime, timedelta

import pytest
from postgrest.exceptions import APIError

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ridedispatch import database
from ridedispatch.notifications.outbox import outbox

ALGIERS = {"lat": 36.7538, "lng": 3.0588}
BAB_EZZOUAR = {"lat": 36.7213, "lng": 3.1860}


class Result:
    def __init__(self, data):
        self.data = data
        self.count = len(data) if isinstance(data, list) else None


def _comparable(value):
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return value
    return value


class FakeQuery:
    def __init__(self, db: "FakeSupabase", table: str):
        self.db = db
        self.table_name = table
        self.action = "select"
        self.payload = None
        self.on_conflict = None
        self.filters = []
        self._limit = None
        self._order = None
        self._negate = False

    # actions
    def select(self, *columns, **kwargs):
        self.action = "select"
        return self

    def insert(self, payload, **kwargs):
        self.action, self.payload = "insert", payload
        return self

    def update(self, payload, **kwargs):
        self.action, self.payload = "update", payload
        return self

    def upsert(self, payload, on_conflict=None, **kwargs):
        self.action, self.payload, self.on_conflict = "upsert", payload, on_conflict
        return self

    def delete(self, **kwargs):
        self.action = "delete"
        return self

    # filters
    @property
    def not_(self):
        self._negate = True
        return self

    def _add(self, predicate):
        if self._negate:
            self._negate = False
            self.filters.append(lambda row: not predicate(row))
        else:
            self.filters.append(predicate)

    def eq(self, column, value):
        self._add(lambda row: row.get(column) == value)
        return self

    def neq(self, column, value):
        self._add(lambda row: row.get(column) != value)
        return self

    def is_(self, column, value):
        expected = None if value in ("null", None) else value
        self._add(lambda row: row.get(column) is expected)
        return self

    def in_(self, column, values):
        values = list(values)
        self._add(lambda row: row.get(column) in values)
        return self

    def lt(self, column, value):
        return self._range(column, value, lambda a, b: a < b)

    def lte(self, column, value):
        return self._range(column, value, lambda a, b: a <= b)

    def gt(self, column, value):
        return self._range(column, value, lambda a, b: a > b)

    def gte(self, column, value):
        return self._range(column, value, lambda a, b: a >= b)

    def _range(self, column, value, op):
        bound = _comparable(value)
        self._add(
            lambda row: row.get(column) is not None and op(_comparable(row.get(column)), bound)
        )
        return self

    def limit(self, n):
        self._limit = n
        return self

    def order(self, column, desc=False):
        self._order = (column, desc)
        return self

    def _matches(self, row):
        return all(f(row) for f in self.filters)

    def execute(self):
        with self.db.lock:
            self.db.raise_if_failing(self.table_name, self.action)
            rows = self.db.tables.setdefault(self.table_name, [])

            if self.action == "select":
                found = [r for r in rows if self._matches(r)]
                if self._order:
                    column, desc = self._order
                    found.sort(key=lambda r: _comparable(r.get(column)), reverse=desc)
                if self._limit is not None:
                    found = found[:self._limit]
                return Result([dict(r) for r in found])

            if self.action == "insert":
                payload = self.payload if isinstance(self.payload, list) else [self.payload]
                created = []
                for item in payload:
                    row = self.db.defaults(self.table_name)
                    row.update(item)
                    rows.append(row)
                    created.append(dict(row))
                return Result(created)

            if self.action == "upsert":
                payload = self.payload if isinstance(self.payload, list) else [self.payload]
                key = self.on_conflict or "id"
                written = []
                for item in payload:
                    existing = next((r for r in rows if r.get(key) == item.get(key)), None)
                    if existing is None:
                        existing = self.db.defaults(self.table_name)
                        rows.append(existing)
                    existing.update(item)
                    written.append(dict(existing))
                return Result(written)

            if self.action == "update":
                changed = []
                for row in rows:
                    if self._matches(row):
                        row.update(self.payload)
                        changed.append(dict(row))
                return Result(changed)

            if self.action == "delete":
                removed = [r for r in rows if self._matches(r)]
                self.db.tables[self.table_name] = [r for r in rows if not self._matches(r)]
                return Result([dict(r) for r in removed])

        raise AssertionError(f"unsupported action {self.action}")


class FakeRpc:
    def __init__(self, db: "FakeSupabase", name: str, params: dict):
        self.db, self.name, self.params = db, name, params

    def execute(self):
        with self.db.lock:
            self.db.rpc_calls.append((self.name, dict(self.params)))
            self.db.raise_if_failing("rpc", self.name)
        handler = getattr(self.db, f"_rpc_{self.name}")
        return Result(handler(**self.params))


class FakeSupabase:
    """Tables are plain lists of dicts; procedures are the ``_rpc_*`` methods."""

    def __init__(self):
        self.lock = threading.RLock()
        self.tables: dict[str, list[dict]] = {}
        self.rpc_calls: list[tuple[str, dict]] = []
        self.failures: dict[tuple[str, str], Exception] = {}
        self.fare_floor = 500.0
        self.offered_drivers = ["driver-near-1", "driver-near-2"]
        self.matcher_errors: dict[str, Exception] = {}

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rpc(self, name: str, params: dict) -> FakeRpc:
        return FakeRpc(self, name, params)

    # test helpers
    def fail(self, target: str, action: str, error: Exception) -> None:
        """Make every ``action`` on ``target`` (a table name or "rpc") raise ``error``."""
        self.failures[(target, action)] = error

    def raise_if_failing(self, target: str, action: str) -> None:
        error = self.failures.get((target, action))
        if error is not None:
            raise error

    def defaults(self, table: str) -> dict:
        now = database.timestamp()
        if table == "rides":
            return {
                "id": str(uuid.uuid4()), "driver_id": None, "status": "PENDING",
                "payment_method": "CASH", "payment_status": "UNPAID", "dispatch_batch": 1,
                "nearby_cells": [], "cancellation_reason": None, "scheduled_time": None,
                "last_offer_sent_at": now, "created_at": now, "updated_at": now,
            }
        return {"id": str(uuid.uuid4()), "created_at": now}

    def rows(self, table: str) -> list[dict]:
        with self.lock:
            return [dict(r) for r in self.tables.get(table, [])]

    def ride(self, ride_id: str) -> dict:
        return next(r for r in self.rows("rides") if r["id"] == ride_id)

    def add_profile(self, user_id: str, balance: float = 0.0, push_token: str = None) -> None:
        self.table("profiles").insert({"id": user_id, "balance": balance, "push_token": push_token}).execute()

    def balance(self, user_id: str) -> float:
        return next(r["balance"] for r in self.rows("profiles") if r["id"] == user_id)

    def calls(self, name: str) -> list[dict]:
        return [params for called, params in self.rpc_calls if called == name]

    # procedures
    def _rpc_calculate_fare_estimate(self, **params):
        return self.fare_floor

    def _rpc_find_and_offer_ride(self, target_ride_id):
        error = self.matcher_errors.get(target_ride_id)
        if error is not None:
            raise error
        return list(self.offered_drivers)

    def _rpc_cleanup_expired_offers(self):
        return None

    def _rpc_decrement_balance(self, user_id, amount):
        with self.lock:
            profile = next((r for r in self.tables.get("profiles", []) if r["id"] == user_id), None)
            if profile is None or profile["balance"] < amount:
                raise APIError({"message": f"insufficient funds for {user_id}", "code": "P0001",
                                "hint": None, "details": None})
            profile["balance"] = round(profile["balance"] - amount, 2)
        return None

    def _rpc_increment_balance(self, user_id, amount):
        with self.lock:
            profile = next((r for r in self.tables.get("profiles", []) if r["id"] == user_id), None)
            if profile is not None:
                profile["balance"] = round(profile["balance"] + amount, 2)
        return None


@pytest.fixture
def fake_db():
    previous = database._client
    fake = FakeSupabase()
    database._client = fake
    outbox.clear()
    yield fake
    outbox.clear()
    database._client = previous


@pytest.fixture
def now():
    return database.utc_now()


@pytest.fixture
def make_ride(fake_db):
    """Insert a ride row directly, bypassing the request flow."""
    def _make(minutes_old: float = 0, **fields):
        stamp = database.timestamp(database.utc_now() - timedelta(minutes=minutes_old))
        row = {
            "passenger_id": "passenger-1",
            "pickup_lat": ALGIERS["lat"],
            "pickup_lng": ALGIERS["lng"],
            "dropoff_lat": BAB_EZZOUAR["lat"],
            "dropoff_lng": BAB_EZZOUAR["lng"],
            "fare_estimate": 500.0,
            "last_offer_sent_at": stamp,
            "created_at": stamp,
            "updated_at": stamp,
        }
        row.update(fields)
        for key, value in row.items():
            if hasattr(value, "value"):
                row[key] = value.value
        return fake_db.table("rides").insert(row).execute().data[0]
    return _make


def notifications(title: str = None) -> list:
    return [i for i in outbox.pending() if title is None or i.title == title]
