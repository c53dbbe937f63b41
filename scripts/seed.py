"""
Seed Script

Loads sample restaurants, district hubs and drones for local runs.
Run from project root: python scripts/seed.py (use --reset on re-runs)
"""

import asyncio
import sys
import os
import argparse

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

from sqlalchemy import delete

from fulfillment.core.config import setup_logging
from fulfillment.database import async_session_maker, engine, init_db
from fulfillment.models import Drone, Hub, HubPendingOrder, Restaurant

RESTAURANTS = [
    {"id": "FFKD1", "name": "FoodFast Kitchen - District 1", "district": "District 1"},
    {"id": "FFKD3", "name": "FoodFast Kitchen - District 3", "district": "District 3"},
    {"id": "FFKBT", "name": "FoodFast Kitchen - Binh Thanh", "district": "Binh Thanh"},
    {"id": "FFKD7", "name": "FoodFast Kitchen - District 7", "district": "District 7"},
]

HUBS = [
    {
        "hub_code": "HUB-D1", "name": "District 1 Hub",
        "address": "123 Le Loi Street, District 1", "district": "District 1",
        "latitude": 10.7756, "longitude": 106.7019, "max_drones": 25, "max_orders": 150,
    },
    {
        "hub_code": "HUB-D2", "name": "District 2 Hub",
        "address": "456 Thao Dien Street, District 2", "district": "District 2",
        "latitude": 10.7980, "longitude": 106.7297, "max_drones": 20, "max_orders": 100,
    },
    {
        "hub_code": "HUB-D3", "name": "District 3 Hub",
        "address": "789 Vo Van Tan Street, District 3", "district": "District 3",
        "latitude": 10.7830, "longitude": 106.6880, "max_drones": 20, "max_orders": 100,
    },
    {
        "hub_code": "HUB-D7", "name": "District 7 Hub",
        "address": "12 Nguyen Van Linh, District 7", "district": "District 7",
        "latitude": 10.7290, "longitude": 106.7190, "max_drones": 15, "max_orders": 80,
    },
]

DRONES_PER_RESTAURANT = 3


async def seed(reset: bool = False) -> None:
    await init_db()

    async with async_session_maker() as session:
        if reset:
            await session.execute(delete(Drone))
            await session.execute(delete(HubPendingOrder))
            await session.execute(delete(Hub))
            await session.execute(delete(Restaurant))
            await session.commit()
            print("✓ Cleared existing fleet and registry data")

        for data in RESTAURANTS:
            await session.merge(Restaurant(city="Ho Chi Minh City", is_active=True, **data))
        print(f"✓ {len(RESTAURANTS)} restaurants")

        hubs = [Hub(city="Ho Chi Minh City", pending_orders=[], **data) for data in HUBS]
        session.add_all(hubs)
        await session.flush()
        print(f"✓ {len(hubs)} hubs")

        hub_by_district = {hub.district: hub for hub in hubs}
        count = 0
        for restaurant in RESTAURANTS:
            hub = hub_by_district.get(restaurant["district"])
            for n in range(1, DRONES_PER_RESTAURANT + 1):
                count += 1
                session.add(Drone(
                    drone_code=f"DRONE-{restaurant['id']}-{n:02d}",
                    assigned_restaurant_id=restaurant["id"],
                    assigned_hub_id=hub.id if hub else None,
                    location_address="Warehouse",
                    location_district=restaurant["district"],
                    battery_level=100.0 - (n - 1) * 35,
                ))
        await session.commit()
        print(f"✓ {count} drones")

    await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed sample fleet data")
    parser.add_argument("--reset", action="store_true", help="Delete existing data first")
    args = parser.parse_args()

    setup_logging()
    asyncio.run(seed(reset=args.reset))
