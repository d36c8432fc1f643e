"""
Seed script — submits a sample provisioning batch for demo purposes.

Usage:
    python -m scripts.seed_batch

This creates one batch with:
- 2 GA4-only trackings (one step each)
- 1 GA4 + Google Ads tracking (two steps)
- 2 lower-priority trackings that run last

Run it after `uvicorn api.main:app` is up with PROVISIONING_CLIENT=simulated,
then trigger the cron endpoint (or run `python -m worker.main`).
"""

import os

import httpx

BASE_URL = "http://localhost:8000"


def seed():
    client = httpx.Client(base_url=BASE_URL, timeout=10.0)

    batch = {
        "customer_id": "demo-customer",
        "tenant_id": "demo-tenant",
        "user_id": "demo-user",
        "trackings": [
            {"tracking_id": "trk-contact", "name": "Contact form submit"},
            {"tracking_id": "trk-phone", "name": "Phone number click"},
            {
                "tracking_id": "trk-purchase",
                "name": "Purchase",
                "destinations": ["BOTH"],
                "priority": 0,
            },
            {"tracking_id": "trk-newsletter", "name": "Newsletter signup", "priority": 5},
            {"tracking_id": "trk-quote", "name": "Quote request", "priority": 9},
        ],
    }

    print(f"Submitting batch with {len(batch['trackings'])} trackings to {BASE_URL}...\n")
    resp = client.post("/batches/", json=batch)
    resp.raise_for_status()
    data = resp.json()
    print(f"  [{data['status']}] batch {data['id']} ({data['total_jobs']} jobs)")

    secret = os.environ.get("CRON_SECRET")
    if secret:
        resp = client.get(
            "/cron/process-queue",
            headers={"Authorization": f"Bearer {secret}"},
            timeout=60.0,
        )
        print(f"\nTick: {resp.json()}")

    print("\nWatch progress:  redis-cli SUBSCRIBE batch:" + data["id"])
    print(f"Batch status:    curl {BASE_URL}/batches/{data['id']}")


if __name__ == "__main__":
    seed()
