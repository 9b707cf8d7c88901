"""Seed demo passengers, drivers and live driver locations into Supabase."""
import os
import random
import sys
import uuid

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ridedispatch.database import get_supabase, timestamp
from ridedispatch.dispatch.geo_index import cell_for

random.seed(42)

CITIES = {
    "Algiers": (36.7538, 3.0588),
    "Oran": (35.6971, -0.6308),
    "Constantine": (36.3650, 6.6147),
}


def random_offset(lat, lng, km_radius=5):
    """Add random offset to coordinates within km_radius."""
    offset_lat = random.uniform(-km_radius / 111, km_radius / 111)
    offset_lng = random.uniform(-km_radius / 111, km_radius / 111)
    return lat + offset_lat, lng + offset_lng


def build_profiles(count: int, balance_range: tuple[int, int]) -> list[dict]:
    return [
        {
            "id": str(uuid.uuid4()),
            "balance": random.randint(*balance_range),
            "push_token": None,
        }
        for _ in range(count)
    ]


def build_locations(drivers: list[dict]) -> list[dict]:
    locations = []
    for driver in drivers:
        center = random.choice(list(CITIES.values()))
        lat, lng = random_offset(*center)
        locations.append({
            "driver_id": driver["id"],
            "lat": round(lat, 6),
            "lng": round(lng, 6),
            "heading": random.randint(0, 359),
            "current_cell": cell_for(lat, lng),
            "updated_at": timestamp(),
        })
    return locations


def seed(passengers: int = 20, drivers: int = 40, batch_size: int = 50):
    client = get_supabase()
    passenger_rows = build_profiles(passengers, (0, 5000))
    driver_rows = build_profiles(drivers, (500, 3000))

    for label, table, rows in (
        ("passengers", "profiles", passenger_rows),
        ("drivers", "profiles", driver_rows),
        ("driver locations", "driver_locations", build_locations(driver_rows)),
    ):
        for i in range(0, len(rows), batch_size):
            batch = rows[i:i + batch_size]
            try:
                client.table(table).insert(batch).execute()
                print(f"  Inserted {label} {i + 1}-{i + len(batch)}")
            except Exception as e:
                print(f"  Error inserting {label} batch {i // batch_size + 1}: {e}")

    print(f"\nSeeding complete! {passengers} passengers, {drivers} drivers.")


if __name__ == "__main__":
    seed()
