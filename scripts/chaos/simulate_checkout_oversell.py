#!/usr/bin/env python3
"""Chaos scenario: fire concurrent checkouts at one scarce item.

The script creates (or reuses) an inventory item with a small stock, places
many single-line orders for it concurrently through the store API and then
checks the ledger invariants: stock never goes below zero, and every unit
sold beyond the starting stock shows up as an oversold line.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping

import httpx


@dataclass(slots=True)
class CheckoutOutcome:
    status_code: int
    order_id: str | None
    duration_seconds: float


class ChaosError(RuntimeError):
    def __init__(self, message: str, *, context: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.context: Dict[str, Any] = dict(context or {})


def _env_default(name: str, default: str) -> str:
    value = os.getenv(name)
    return value if value else default


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Concurrent checkouts against a scarce item")
    parser.add_argument(
        "--base-url",
        default=_env_default("STORE_BASE_URL", "http://127.0.0.1:8000"),
        help="Base URL for the store service (default: %(default)s or STORE_BASE_URL)",
    )
    parser.add_argument(
        "--owner-token",
        default=_env_default("STORE_OWNER_TOKEN", ""),
        help="Bearer token of an owner account, used to seed and inspect the item",
    )
    parser.add_argument(
        "--client-token",
        default=_env_default("STORE_CLIENT_TOKEN", ""),
        help="Bearer token of a client account, used to place the orders",
    )
    parser.add_argument(
        "--item-id",
        default=None,
        help="Existing item to hammer; a fresh item is created when omitted",
    )
    parser.add_argument("--stock", type=int, default=3, help="Starting stock for a fresh item (default: %(default)s)")
    parser.add_argument("--orders", type=int, default=10, help="Concurrent checkouts to fire (default: %(default)s)")
    parser.add_argument("--quantity", type=int, default=1, help="Units per checkout (default: %(default)s)")
    parser.add_argument("--timeout", type=float, default=10.0, help="HTTP timeout in seconds (default: %(default)s)")

    args = parser.parse_args()
    if not args.owner_token or not args.client_token:
        parser.error("--owner-token and --client-token (or STORE_OWNER_TOKEN/STORE_CLIENT_TOKEN) are required")
    if args.orders <= 0 or args.quantity <= 0:
        parser.error("--orders and --quantity must be positive")
    if args.item_id is None and args.stock < 0:
        parser.error("--stock must not be negative")
    return args


def _headers(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


async def _seed_item(client: httpx.AsyncClient, args: argparse.Namespace) -> Dict[str, Any]:
    if args.item_id:
        response = await client.get(f"/inventory/{args.item_id}")
    else:
        response = await client.post(
            "/inventory",
            json={
                "name": f"chaos-item-{int(time.time())}",
                "category": "chaos",
                "price": "1.00",
                "quantity": args.stock,
            },
            headers=_headers(args.owner_token),
        )
    if response.status_code >= 400:
        raise ChaosError(
            "could not prepare inventory item",
            context={"status": response.status_code, "body": response.text},
        )
    return response.json()


async def _checkout(client: httpx.AsyncClient, args: argparse.Namespace, item: Mapping[str, Any]) -> CheckoutOutcome:
    payload = {
        "items": [
            {
                "itemId": item["id"],
                "name": item["name"],
                "category": item["category"],
                "unitPrice": item["price"],
                "stockQuantity": item["quantity"],
                "quantity": args.quantity,
            }
        ],
        "shippingAddress": "Chaos Lane 1",
    }
    start = time.monotonic()
    response = await client.post("/orders", json=payload, headers=_headers(args.client_token))
    order_id = response.json().get("id") if response.status_code == 201 else None
    return CheckoutOutcome(response.status_code, order_id, time.monotonic() - start)


async def run(args: argparse.Namespace) -> Mapping[str, Any]:
    async with httpx.AsyncClient(base_url=args.base_url.rstrip("/"), timeout=args.timeout) as client:
        item = await _seed_item(client, args)
        starting_stock = int(item["quantity"])
        outcomes: List[CheckoutOutcome] = await asyncio.gather(
            *(_checkout(client, args, item) for _ in range(args.orders))
        )

        after = (await client.get(f"/inventory/{item['id']}")).json()
        orders = (await client.get("/orders", headers=_headers(args.owner_token))).json()["items"]

    placed = {outcome.order_id for outcome in outcomes if outcome.order_id}
    lines = [
        line
        for order in orders
        if order["id"] in placed
        for line in order["items"]
        if line["itemId"] == item["id"]
    ]
    sold = sum(line["quantity"] for line in lines)
    oversold = sum(line["oversoldQuantity"] for line in lines)
    expected_oversold = max(0, sold - starting_stock)

    violations: List[str] = []
    if after["quantity"] < 0:
        violations.append("stock went negative")
    if oversold != expected_oversold:
        violations.append(f"oversold lines report {oversold} units, expected {expected_oversold}")

    status_counts: Dict[str, int] = {}
    for outcome in outcomes:
        status_counts[str(outcome.status_code)] = status_counts.get(str(outcome.status_code), 0) + 1

    return {
        "status": "ok" if not violations else "violated",
        "itemId": item["id"],
        "startingStock": starting_stock,
        "finalStock": after["quantity"],
        "ordersPlaced": len(placed),
        "unitsSold": sold,
        "oversoldUnits": oversold,
        "responses": status_counts,
        "slowestCheckoutSeconds": round(max(outcome.duration_seconds for outcome in outcomes), 3),
        "violations": violations,
    }


def main() -> int:
    args = parse_args()
    try:
        result = asyncio.run(run(args))
    except ChaosError as exc:
        payload = {
            "status": "error",
            "message": str(exc),
            "context": exc.context,
        }
        json.dump(payload, sys.stdout, indent=2)
        sys.stdout.write("\n")
        return 2
    except httpx.HTTPError as exc:
        payload = {
            "status": "error",
            "message": f"{exc.__class__.__name__}: {exc}",
        }
        json.dump(payload, sys.stdout, indent=2)
        sys.stdout.write("\n")
        return 3

    json.dump(result, sys.stdout, indent=2)
    sys.stdout.write("\n")
    return 0 if result["status"] == "ok" else 1


if __name__ == "__main__":
    raise SystemExit(main())
