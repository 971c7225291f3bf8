"""
Last-Unit Race Simulation

Fires concurrent kiosk orders at a single item with limited stock and
checks that the ledger never oversells.
Run from project root against a running API (development mode):

    python scripts/simulate.py --location <id> --tenant <id> --item <id> \
        --stock 5 --orders 20 --qty 1

Tokens are signed locally with the development secrets from .env.
"""

import asyncio
import sys
import os
import time
import argparse
from datetime import datetime
from typing import Any

import httpx
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

from orderflow.core.security import OUTLET_ADMIN_ROLE, TERMINAL_ROLE, create_token

# Configuration
API_BASE_URL = "http://localhost:8080/api/v1"
PAYERS = [
    ("Asha Rao", "asha@okbank"),
    ("Vikram Shah", "vikram@upi"),
    ("Meera Iyer", "meera@okaxis"),
    ("Rohan Das", "rohan@ybl"),
]


def auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


async def set_stock(client: httpx.AsyncClient, admin_token: str, item_id: str, stock: int, price: float) -> None:
    response = await client.put(
        f"{API_BASE_URL}/items/inventory/{item_id}",
        json={"price": price, "quantity": stock},
        headers=auth(admin_token),
    )
    response.raise_for_status()


async def read_stock(client: httpx.AsyncClient, admin_token: str, item_id: str) -> int:
    response = await client.get(f"{API_BASE_URL}/items/inventory/{item_id}", headers=auth(admin_token))
    response.raise_for_status()
    return response.json()["quantity"]


async def send_order(
    client: httpx.AsyncClient,
    kiosk_token: str,
    order_num: int,
    item_id: str,
    qty: int,
    price: float,
) -> dict[str, Any]:
    """Submit one kiosk order."""
    name, upi_id = PAYERS[order_num % len(PAYERS)]
    payload = {
        "items": [{"id": item_id, "name": "Simulated Item", "quantity": qty, "price": price}],
        "totalAmount": round(qty * price, 2),
        "paymentDetails": {"name": name, "upiId": upi_id},
    }
    start_time = time.time()

    try:
        response = await client.post(
            f"{API_BASE_URL}/orders",
            json=payload,
            headers=auth(kiosk_token),
            timeout=60.0,
        )
    except httpx.HTTPError as e:
        return {"order_num": order_num, "outcome": "error", "error": str(e), "time": round(time.time() - start_time, 3)}

    elapsed = round(time.time() - start_time, 3)
    data = response.json()

    if response.status_code == 201:
        return {
            "order_num": order_num,
            "outcome": data["orderStatus"],
            "order_no": data["orderNo"],
            "time": elapsed,
        }
    return {
        "order_num": order_num,
        "outcome": "rejected",
        "error": data.get("detail"),
        "time": elapsed,
    }


async def run_simulation(args: argparse.Namespace) -> dict[str, Any]:
    kiosk_token = create_token("sim-kiosk", TERMINAL_ROLE, args.location, args.tenant)
    admin_token = create_token("sim-admin", OUTLET_ADMIN_ROLE, args.location, args.tenant)

    print("=" * 70)
    print("🔥 LAST-UNIT RACE SIMULATION")
    print("=" * 70)
    print(f"📋 Orders: {args.orders} x {args.qty} unit(s) against stock {args.stock}")
    print(f"🎯 Target: {API_BASE_URL}")
    print(f"⏰ Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    async with httpx.AsyncClient() as client:
        await set_stock(client, admin_token, args.item, args.stock, args.price)

        start_time = time.time()
        tasks = [
            send_order(client, kiosk_token, i + 1, args.item, args.qty, args.price)
            for i in range(args.orders)
        ]
        results = await asyncio.gather(*tasks)
        total_time = round(time.time() - start_time, 2)

        remaining = await read_stock(client, admin_token, args.item)

    completed = [r for r in results if r["outcome"] == "Completed"]
    failed = [r for r in results if r["outcome"] == "Failed"]
    rejected = [r for r in results if r["outcome"] == "rejected"]
    errors = [r for r in results if r["outcome"] == "error"]

    expected_remaining = args.stock - len(completed) * args.qty
    consistent = remaining == expected_remaining and remaining >= 0

    print("\n" + "=" * 70)
    print("📊 SIMULATION RESULTS")
    print("=" * 70)
    print(f"\n✅ Completed: {len(completed)}")
    print(f"💸 Payment failed (stock restored): {len(failed)}")
    print(f"🚫 Insufficient stock: {len(rejected)}")
    print(f"❌ Transport errors: {len(errors)}")
    print(f"⏱️  Total Time: {total_time}s")
    print(f"\n📦 Remaining stock: {remaining} (expected {expected_remaining})")
    print(f"{'✅' if consistent else '❌'} Ledger {'consistent' if consistent else 'INCONSISTENT'}")

    order_numbers = sorted(r["order_no"] for r in completed + failed)
    if len(order_numbers) != len(set(order_numbers)):
        print("❌ Duplicate order numbers allocated!")
        consistent = False

    if rejected:
        print(f"\n⚠️  Rejections (showing first 3):")
        for r in rejected[:3]:
            print(f"   Order {r['order_num']}: {r.get('error')}")
    print("=" * 70)

    return {
        "completed": len(completed),
        "failed": len(failed),
        "rejected": len(rejected),
        "remaining": remaining,
        "consistent": consistent,
    }


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Last-unit race simulation")
    parser.add_argument("--location", required=True, help="Outlet id")
    parser.add_argument("--tenant", required=True, help="Tenant id")
    parser.add_argument("--item", required=True, help="Catalog item id")
    parser.add_argument("--stock", type=int, default=5, help="Units in stock before the race")
    parser.add_argument("--orders", type=int, default=20, help="Concurrent orders")
    parser.add_argument("--qty", type=int, default=1, help="Units per order")
    parser.add_argument("--price", type=float, default=120.0, help="Unit price")
    args = parser.parse_args()

    summary = asyncio.run(run_simulation(args))
    sys.exit(0 if summary["consistent"] else 1)
