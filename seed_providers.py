#!/usr/bin/env python3
"""
Seed a few demo providers and consumers for local development.
Run: python seed_providers.py
"""

import asyncio
import os
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from app.db import close_store_connection, connect_to_store
from app.utils.record_store import DuplicateRecordError
from app.utils.security import hash_secret, utcnow
from app.utils.subscription_service import SubscriptionService

DEMO_PIN = "1234"

PROVIDERS = [
    {
        "name": "Ali Electric Works",
        "city": "Lahore",
        "skillset": "Electrician, wiring, UPS installation",
        "contact_no": "+923001234567",
        "description": "Residential and commercial wiring",
        "experience": "8 years",
    },
    {
        "name": "Green Lawn Care",
        "city": "Karachi",
        "skillset": "Gardening and lawn maintenance",
        "contact_no": "+923331234567",
        "description": None,
        "experience": "3 years",
    },
]

CONSUMERS = [
    {"name": "Sara Khan", "city": "Lahore", "contact_no": "+923211234567"},
]


async def main():
    store = await connect_to_store()
    subscriptions = SubscriptionService(store)
    try:
        for p in PROVIDERS:
            now = utcnow()
            doc = {
                **p,
                "pin_hash": hash_secret(DEMO_PIN),
                "is_active": True,
                "created_at": now,
                "updated_at": now,
                **subscriptions.trial_fields(),
            }
            try:
                created = await store.create("providers", doc)
                print(f"Created provider: {p['name']} ({p['city']}) -> id={created['id']}")
            except DuplicateRecordError:
                print(f"Skipped {p['name']}: contact number already registered")

        for c in CONSUMERS:
            if await store.find_first("consumers", {"contact_no": c["contact_no"]}):
                print(f"Skipped {c['name']}: contact number already registered")
                continue
            now = utcnow()
            created = await store.create(
                "consumers",
                {**c, "pin_hash": hash_secret(DEMO_PIN), "created_at": now, "updated_at": now},
            )
            print(f"Created consumer: {c['name']} ({c['city']}) -> id={created['id']}")
    finally:
        await close_store_connection()


if __name__ == "__main__":
    asyncio.run(main())
