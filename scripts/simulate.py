"""
Concurrency Simulation Script

Fires concurrent multi-restaurant checkouts, then has every restaurant of
every order race its status updates, and checks that each order ends up
Delivered. Seed data first: python scripts/seed.py
Run from project root: python scripts/simulate.py
"""

import asyncio
import sys
import os
import random
import time
import argparse
from datetime import datetime
from typing import Any

import httpx
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Configuration
API_BASE_URL = "http://localhost:8000"
TOTAL_ORDERS = 50

# Matches scripts/seed.py
RESTAURANT_IDS = ["FFKD1", "FFKD3", "FFKBT", "FFKD7"]
MENU_ITEMS = [
    {"food_id": "pho-bo", "name": "Pho Bo", "price": 55000},
    {"food_id": "banh-mi", "name": "Banh Mi", "price": 25000},
    {"food_id": "com-tam", "name": "Com Tam", "price": 45000},
    {"food_id": "bun-cha", "name": "Bun Cha", "price": 50000},
    {"food_id": "ca-phe", "name": "Ca Phe Sua Da", "price": 20000},
]
NAMES = ["An", "Binh", "Chi", "Dung", "Hoa", "Khanh", "Linh", "Minh", "Nam", "Trang"]
FLOW = ["Preparing", "Ready for Pickup", "Out for Delivery"]


def generate_order_payload(order_num: int) -> dict[str, Any]:
    """Random cart spread over one to three restaurants."""
    restaurants = random.sample(RESTAURANT_IDS, k=random.randint(1, 3))
    items = []
    for restaurant_id in restaurants:
        for _ in range(random.randint(1, 3)):
            item = random.choice(MENU_ITEMS).copy()
            item["quantity"] = random.randint(1, 4)
            item["restaurant_id"] = restaurant_id
            items.append(item)

    return {
        "customer_id": f"sim-customer-{order_num % 10}",
        "items": items,
        "address": {
            "name": random.choice(NAMES),
            "phone": f"090{random.randint(1000000, 9999999)}",
            "street": f"{random.randint(1, 300)} Nguyen Hue",
            "city": "Ho Chi Minh City",
        },
        "cod": random.random() < 0.3,
    }


async def place_and_pay(client: httpx.AsyncClient, order_num: int) -> dict[str, Any]:
    payload = generate_order_payload(order_num)
    start_time = time.time()

    try:
        response = await client.post(f"{API_BASE_URL}/api/orders", json=payload, timeout=30.0)
        if response.status_code != 200:
            return {"order_num": order_num, "success": False, "error": response.text[:120]}
        data = response.json()

        outcome = "ok" if payload["cod"] else "true"
        verify = await client.post(
            f"{API_BASE_URL}/api/orders/verify",
            json={"order_id": data["order_id"], "success": outcome},
            timeout=30.0,
        )
        return {
            "order_num": order_num,
            "success": verify.status_code == 200 and verify.json().get("success"),
            "order_id": data["order_id"],
            "restaurants": sorted({i["restaurant_id"] for i in payload["items"]}),
            "zones": len(data.get("zones", [])),
            "degraded": data.get("degraded_reason"),
            "total": data.get("amount"),
            "time": round(time.time() - start_time, 3),
        }
    except httpx.HTTPError as e:
        return {"order_num": order_num, "success": False, "error": str(e)}


async def drive_restaurant(
    client: httpx.AsyncClient,
    order_id: int,
    restaurant_id: str,
) -> bool:
    """Walk one restaurant of one order through the status flow."""
    for status in FLOW:
        await asyncio.sleep(random.uniform(0, 0.05))
        response = await client.post(
            f"{API_BASE_URL}/api/restaurant/orders/status",
            json={"order_id": order_id, "status": status},
            headers={"X-Restaurant-Id": restaurant_id},
            timeout=30.0,
        )
        if response.status_code != 200:
            print(f"   ❌ Order #{order_id} / {restaurant_id} -> {status}: {response.text[:80]}")
            return False
    return True


# =============================================================================
# MAIN SIMULATION RUNNER
# =============================================================================

async def run_simulation(num_orders: int = TOTAL_ORDERS) -> dict[str, Any]:
    print("=" * 70)
    print("🔥 CONCURRENCY SIMULATION")
    print("=" * 70)
    print(f"📋 Total Orders: {num_orders}")
    print(f"🎯 Target: {API_BASE_URL}")
    print(f"⏰ Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    start_time = time.time()

    async with httpx.AsyncClient() as client:
        print("\n🚀 Placing orders...\n")
        placed = await asyncio.gather(*(place_and_pay(client, i + 1) for i in range(num_orders)))
        successful = [r for r in placed if r["success"]]

        print("🚚 Racing restaurant status updates...\n")
        await asyncio.gather(*(
            drive_restaurant(client, r["order_id"], rid)
            for r in successful
            for rid in r["restaurants"]
        ))

        delivered = 0
        for r in successful:
            response = await client.get(f"{API_BASE_URL}/api/orders/{r['order_id']}")
            if response.json()["data"]["status"] == "Delivered":
                delivered += 1

    total_time = round(time.time() - start_time, 2)
    failed = [r for r in placed if not r["success"]]

    print("=" * 70)
    print("📊 SIMULATION RESULTS")
    print("=" * 70)
    print(f"\n✅ Placed & paid: {len(successful)}/{num_orders}")
    print(f"❌ Failed: {len(failed)}/{num_orders}")
    print(f"📦 Delivered after status race: {delivered}/{len(successful)}")
    print(f"⏱️  Total Time: {total_time}s")

    if successful:
        zones = sum(r["zones"] for r in successful)
        degraded = len([r for r in successful if r["degraded"]])
        avg_time = round(sum(r["time"] for r in successful) / len(successful), 3)
        print(f"\n📈 Zones created: {zones} ({degraded} degraded orders)")
        print(f"   Average checkout: {avg_time}s")

    if failed:
        print("\n⚠️  Failed Order Details (showing first 5):")
        for f in failed[:5]:
            print(f"   Order #{f['order_num']}: {f.get('error', 'Unknown error')}")

    print("=" * 70)
    return {
        "total": num_orders,
        "successful": len(successful),
        "delivered": delivered,
        "total_time": total_time,
    }


async def preflight() -> bool:
    async with httpx.AsyncClient() as client:
        try:
            response = await client.get(f"{API_BASE_URL}/health", timeout=10.0)
        except httpx.HTTPError as e:
            print(f"❌ API not reachable: {e}")
            return False
        data = response.json()
        print(f"Health: {data.get('status')} (database: {data.get('database')}, redis: {data.get('redis')})")
        hubs = await client.get(f"{API_BASE_URL}/api/hubs")
        if not hubs.json().get("data"):
            print("⚠️ No hubs registered; zones will be unresolved. Run scripts/seed.py")
    return True


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Concurrency Simulation Script")
    parser.add_argument("--orders", type=int, default=TOTAL_ORDERS, help="Number of orders")
    parser.add_argument("--url", default=API_BASE_URL, help="API base URL")
    args = parser.parse_args()

    API_BASE_URL = args.url.rstrip("/")

    if not asyncio.run(preflight()):
        sys.exit(1)

    result = asyncio.run(run_simulation(num_orders=args.orders))
    sys.exit(0 if result["delivered"] == result["successful"] else 1)
