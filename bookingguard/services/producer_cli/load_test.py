"""Load test script for the BookingGuard evaluation endpoint.

Sends mixed booking submissions to /api/v1/assessments/evaluate to exercise
the fraud rules under concurrency.

Usage:
    python -m bookingguard.services.producer_cli.load_test --concurrency 50 --total 1000

Scenarios:
- normal
- high value rush booking
- suspicious email domain
- serial canceller (history rule)
- ip burst (many bookings from one IP, velocity rule)
- email burst (repeat attempts from one address, velocity rule)

The script reports successes/failures, risk level mix and basic latency stats.
"""

import argparse
import asyncio
import random
import statistics
import time
import uuid
from collections import Counter
from datetime import date, timedelta

import httpx

BASE_URL = "http://localhost:8000/api/v1/assessments/evaluate"

BURST_IP = "203.0.113.45"
BURST_EMAIL = "repeat.booker@example.com"

IP_POOL = [
    "192.168.2.2",
    "203.0.113.10",
    "203.0.113.11",
    "198.51.100.5",
    "192.0.2.50",
    "198.51.100.10",
]

SCENARIOS = [
    "normal",
    "rush_high_value",
    "suspicious_domain",
    "serial_canceller",
    "ip_burst",
    "email_burst",
]


def build_payload(scenario: str) -> dict:
    today = date.today()
    payload = {
        "booking_ref": f"load_{uuid.uuid4().hex[:12]}",
        "user_ref": f"user_{random.randint(1, 5000)}",
        "amount": round(random.uniform(500, 20000), 2),
        "event_date": (today + timedelta(days=random.randint(14, 180))).isoformat(),
        "email": f"client{random.randint(1, 100000)}@example.com",
        "ip_address": random.choice(IP_POOL),
        "account_age_days": random.randint(0, 1000),
        "completed_bookings": random.randint(0, 5),
        "cancelled_bookings": 0,
    }

    if scenario == "rush_high_value":
        payload["amount"] = round(random.uniform(50000, 150000), 2)
        payload["event_date"] = (today + timedelta(days=random.randint(1, 7))).isoformat()
    elif scenario == "suspicious_domain":
        payload["email"] = f"u{random.randint(1, 999)}@{random.choice(['tempmail.com', '10minutemail.com'])}"
    elif scenario == "serial_canceller":
        payload["completed_bookings"] = 1
        payload["cancelled_bookings"] = random.randint(3, 8)
    elif scenario == "ip_burst":
        payload["ip_address"] = BURST_IP
    elif scenario == "email_burst":
        payload["email"] = BURST_EMAIL
    return payload


async def worker(job_q: asyncio.Queue, results: list, client: httpx.AsyncClient, api_key: str):
    while True:
        scenario = await job_q.get()
        if scenario is None:
            job_q.task_done()
            break
        payload = build_payload(scenario)
        start = time.monotonic()
        try:
            r = await client.post(BASE_URL, json=payload, headers={"X-API-Key": api_key}, timeout=10)
            level = r.json().get("risk_level") if r.status_code == 201 else None
            results.append((r.status_code, time.monotonic() - start, scenario, level))
        except Exception as e:
            results.append((None, time.monotonic() - start, scenario, str(e)))
        job_q.task_done()


async def run_load_test(total: int, concurrency: int, api_key: str):
    job_q = asyncio.Queue()
    results = []

    for _ in range(total):
        job_q.put_nowait(random.choices(SCENARIOS, weights=[50, 10, 10, 10, 10, 10])[0])
    for _ in range(concurrency):
        job_q.put_nowait(None)

    async with httpx.AsyncClient() as client:
        workers = [asyncio.create_task(worker(job_q, results, client, api_key)) for _ in range(concurrency)]
        start_time = time.monotonic()
        await job_q.join()
        elapsed = time.monotonic() - start_time
        await asyncio.gather(*workers)

    statuses = [r[0] for r in results]
    latencies = [r[1] for r in results]
    ok = sum(1 for s in statuses if s and 200 <= s < 300)
    print(f"Total requests: {len(results)}, OK: {ok}, Errors: {len(results) - ok}, elapsed {elapsed:.1f}s")
    print(f"Risk levels: {dict(Counter(r[3] for r in results if r[0] == 201))}")
    if len(latencies) >= 2:
        print(f"Latency ms p50 / p90 / max: {statistics.median(latencies)*1000:.1f} / "
              f"{statistics.quantiles(latencies, n=10)[8]*1000:.1f} / {max(latencies)*1000:.1f}")


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--total", type=int, default=200, help="Total number of requests")
    parser.add_argument("--concurrency", type=int, default=20, help="Number of concurrent workers")
    parser.add_argument("--api-key", default="dev-secret-key", help="X-API-Key header value")
    args = parser.parse_args()

    asyncio.run(run_load_test(args.total, args.concurrency, args.api_key))


if __name__ == "__main__":
    main()
