#!/usr/bin/env python3
"""Generate synthetic work orders against the operations-service API."""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import random
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, MutableMapping, Sequence

import httpx

DEFAULT_SALESPEOPLE = ["Sam", "Priya", "Lee", "Morgan"]
DEFAULT_TECHNICIANS = ["TK", "JS", "MB"]
DEFAULT_STATES = ["VIC", "NSW", "QLD", "SA"]
DEFAULT_SUBURBS = ["Carlton", "Fitzroy", "Brunswick", "Richmond", "Northcote"]
DEFAULT_LEAD_TIMES = ["1 week", "2 weeks", "3 weeks", "4 weeks"]
DEFAULT_CONDITIONS = ["New", "Refurbished", "Repair"]
DEFAULT_NOTES = [
    "Customer prefers a morning delivery window.",
    "Check fabric swatch before upholstery starts.",
    "Second floor apartment, no lift.",
    "Match existing stain on the matching sideboard.",
]


def _env_default(name: str, default: str) -> str:
    value = os.getenv(name)
    return value if value else default


def _split_env(name: str, fallback: Sequence[str]) -> list[str]:
    value = os.getenv(name)
    if not value:
        return list(fallback)
    return [token.strip() for token in value.split(",") if token.strip()]


@dataclass(slots=True)
class WorkorderResult:
    workorder_id: int | None
    duration: float
    items_completed: int
    status_code: int | None
    error: str | None


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate synthetic work orders")
    parser.add_argument(
        "--base-url",
        default=_env_default("OPERATIONS_SERVICE_BASE_URL", "http://127.0.0.1:8000"),
        help="Operations service base URL (default: %(default)s or OPERATIONS_SERVICE_BASE_URL)",
    )
    parser.add_argument(
        "--count",
        type=int,
        default=int(_env_default("WORKORDER_GENERATOR_COUNT", "5")),
        help="Number of work orders to create (default: %(default)s or WORKORDER_GENERATOR_COUNT)",
    )
    parser.add_argument(
        "--customer-id",
        type=int,
        default=int(_env_default("WORKORDER_GENERATOR_CUSTOMER_ID", "1")),
        help="Customer the work orders belong to (default: %(default)s or WORKORDER_GENERATOR_CUSTOMER_ID)",
    )
    parser.add_argument(
        "--skus",
        nargs="*",
        default=_split_env("WORKORDER_GENERATOR_SKUS", ["OTHER"]),
        help="Product SKUs to draw line items from (default: %(default)s)",
    )
    parser.add_argument(
        "--technicians",
        nargs="*",
        default=_split_env("WORKORDER_GENERATOR_TECHNICIANS", DEFAULT_TECHNICIANS),
        help="Technician ids assigned to line items (default: %(default)s)",
    )
    parser.add_argument(
        "--max-items",
        type=int,
        default=int(_env_default("WORKORDER_GENERATOR_MAX_ITEMS", "3")),
        help="Maximum line items per work order (default: %(default)s or WORKORDER_GENERATOR_MAX_ITEMS)",
    )
    parser.add_argument(
        "--complete-ratio",
        type=float,
        default=float(_env_default("WORKORDER_GENERATOR_COMPLETE_RATIO", "0.3")),
        help="Share of work orders whose items are all completed afterwards (default: %(default)s)",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=int(_env_default("WORKORDER_GENERATOR_CONCURRENCY", "4")),
        help="Maximum concurrent work order creations (default: %(default)s or WORKORDER_GENERATOR_CONCURRENCY)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=float(_env_default("WORKORDER_GENERATOR_TIMEOUT", "5")),
        help="HTTP timeout in seconds (default: %(default)s or WORKORDER_GENERATOR_TIMEOUT)",
    )
    parser.add_argument(
        "--user-id",
        default=_env_default("WORKORDER_GENERATOR_USER_ID", "SY"),
        help="Actor recorded in the activity log (default: %(default)s)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print generated payloads without calling the API",
    )
    parser.add_argument(
        "--pretty",
        action="store_true",
        help="Pretty-print the final JSON result (default: False)",
    )

    args = parser.parse_args()

    if args.count <= 0:
        parser.error("--count must be positive")
    if args.concurrency <= 0:
        parser.error("--concurrency must be positive")
    if args.max_items <= 0:
        parser.error("--max-items must be positive")
    if not 0.0 <= args.complete_ratio <= 1.0:
        parser.error("--complete-ratio must be between 0 and 1")
    if not args.skus:
        parser.error("--skus must provide at least one option")
    if not args.technicians:
        parser.error("--technicians must provide at least one option")

    return args


def _build_workorder_payload(
    idx: int,
    *,
    customer_id: int,
    skus: Sequence[str],
    technicians: Sequence[str],
    max_items: int,
    user_id: str,
) -> Mapping[str, Any]:
    items = [
        {
            "product_id": random.choice(skus),
            "quantity": random.randint(1, 2),
            "condition": random.choice(DEFAULT_CONDITIONS),
            "technician_id": random.choice(technicians),
        }
        for _ in range(random.randint(1, max_items))
    ]
    payload: Dict[str, Any] = {
        "invoice_id": f"SYN-{int(time.time())}-{idx:04d}",
        "customer_id": customer_id,
        "salesperson": random.choice(DEFAULT_SALESPEOPLE),
        "delivery_suburb": random.choice(DEFAULT_SUBURBS),
        "delivery_state": random.choice(DEFAULT_STATES),
        "delivery_charged": f"{random.randint(0, 300)}.00",
        "lead_time": random.choice(DEFAULT_LEAD_TIMES),
        "outstanding_balance": f"{random.randint(0, 2000)}.00",
        "notes": random.choice(DEFAULT_NOTES),
        "important_flag": random.random() < 0.1,
        "user_id": user_id,
        "items": items,
    }
    return payload


async def _send_json(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    payload: Mapping[str, Any] | None,
    *,
    params: Mapping[str, Any] | None = None,
) -> tuple[int, MutableMapping[str, Any]]:
    response = await client.request(method, url, json=payload, params=params)
    response.raise_for_status()
    body = response.json()
    if not isinstance(body, MutableMapping):
        raise ValueError("Unexpected JSON response structure")
    return response.status_code, body


async def _complete_items(
    client: httpx.AsyncClient,
    base_url: str,
    workorder_id: int,
    user_id: str,
) -> int:
    _, view = await _send_json(client, "GET", f"{base_url}/workorder", None, params={"id": workorder_id})
    patches = [
        {"workorder_items_id": item["workorder_items_id"], "status": "Completed"}
        for item in view.get("items", [])
        if item.get("status") != "Canceled"
    ]
    if not patches:
        return 0
    await _send_json(
        client,
        "PUT",
        f"{base_url}/workorder",
        {"user_id": user_id, "items": patches},
        params={"id": workorder_id},
    )
    return len(patches)


async def _create_workorder(
    client: httpx.AsyncClient,
    base_url: str,
    payload: Mapping[str, Any],
    *,
    complete: bool,
) -> WorkorderResult:
    start = time.perf_counter()
    try:
        status, body = await _send_json(client, "POST", f"{base_url}/workorder", payload)
        workorder_id = int(body["workorder_id"])
        items_completed = 0
        if complete:
            items_completed = await _complete_items(client, base_url, workorder_id, payload["user_id"])
        return WorkorderResult(
            workorder_id=workorder_id,
            duration=time.perf_counter() - start,
            items_completed=items_completed,
            status_code=status,
            error=None,
        )
    except (httpx.HTTPError, ValueError, KeyError) as exc:
        response = getattr(exc, "response", None)
        return WorkorderResult(
            workorder_id=None,
            duration=time.perf_counter() - start,
            items_completed=0,
            status_code=response.status_code if response is not None else None,
            error=str(exc),
        )


async def _worker(
    client: httpx.AsyncClient,
    base_url: str,
    queue: "asyncio.Queue[tuple[Mapping[str, Any], bool]]",
    *,
    results: list[WorkorderResult],
) -> None:
    while True:
        payload, complete = await queue.get()
        try:
            results.append(await _create_workorder(client, base_url, payload, complete=complete))
        finally:
            queue.task_done()


async def generate_workorders(args: argparse.Namespace) -> Mapping[str, Any]:
    base_url = args.base_url.rstrip("/")
    payloads = [
        _build_workorder_payload(
            idx,
            customer_id=args.customer_id,
            skus=args.skus,
            technicians=args.technicians,
            max_items=args.max_items,
            user_id=args.user_id,
        )
        for idx in range(args.count)
    ]

    if args.dry_run:
        return {
            "status": "dry-run",
            "count": args.count,
            "sample": payloads[: min(3, len(payloads))],
        }

    async with httpx.AsyncClient(timeout=args.timeout) as client:
        queue: asyncio.Queue[tuple[Mapping[str, Any], bool]] = asyncio.Queue()
        for payload in payloads:
            queue.put_nowait((payload, random.random() < args.complete_ratio))

        results: List[WorkorderResult] = []
        workers = [
            asyncio.create_task(_worker(client, base_url, queue, results=results))
            for _ in range(min(args.concurrency, args.count))
        ]

        await queue.join()

        for worker in workers:
            worker.cancel()
        await asyncio.gather(*workers, return_exceptions=True)

    successes = [result for result in results if result.workorder_id is not None]
    failures = [result for result in results if result.workorder_id is None]
    average_duration = (
        sum(result.duration for result in successes) / len(successes)
        if successes
        else 0.0
    )

    return {
        "status": "ok" if not failures else "partial",
        "requested": args.count,
        "created": len(successes),
        "failed": len(failures),
        "completed": sum(1 for result in successes if result.items_completed),
        "average_duration_seconds": round(average_duration, 3),
        "results": {
            "success": [
                {
                    "workorder_id": result.workorder_id,
                    "duration_seconds": round(result.duration, 3),
                    "items_completed": result.items_completed,
                    "status_code": result.status_code,
                }
                for result in successes
            ],
            "failure": [
                {
                    "duration_seconds": round(result.duration, 3),
                    "status_code": result.status_code,
                    "error": result.error,
                }
                for result in failures
            ],
        },
    }


async def main_async() -> int:
    args = parse_args()
    report = await generate_workorders(args)
    print(json.dumps(report, indent=2 if args.pretty else None))
    return 0 if report.get("status") in {"ok", "dry-run"} else 2


def main() -> None:
    try:
        exit_code = asyncio.run(main_async())
    except KeyboardInterrupt:
        exit_code = 130
    raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
