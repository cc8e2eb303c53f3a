import argparse
import asyncio
import logging
import sys
import os

# Add parent dir to path to find config/database
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import settings
from database import async_session_maker, engine
import models  # noqa: F401
from services.payments.gateway import create_razorpay_client
from services.payments.reconciliation import reconcile_pending_intents


async def reconcile_async(older_than_minutes: int, limit: int) -> int:
    print(f"🔍 Reconciling PENDING payment intents older than {older_than_minutes} min...")
    gateway = create_razorpay_client()
    async with async_session_maker() as db:
        summary = await reconcile_pending_intents(
            db,
            gateway,
            older_than_minutes=older_than_minutes,
            limit=limit,
        )
    await engine.dispose()

    print(f"✅ Checked: {summary['checked']}")
    print(f"💰 Completed: {summary['completed']}")
    print(f"⏳ Still unpaid: {summary['unpaid']}")
    for error in summary["errors"]:
        print(f"⚠️ {error['order_id']}: {error['code']} {error['message']}")
    return 1 if summary["errors"] else 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Credit captured payments that never reached a COMPLETED intent.")
    parser.add_argument("--older-than", type=int, default=settings.RECONCILE_PENDING_AFTER_MINUTES)
    parser.add_argument("--limit", type=int, default=100)
    args = parser.parse_args()
    logging.basicConfig(level=settings.LOG_LEVEL)
    return asyncio.run(reconcile_async(args.older_than, args.limit))


if __name__ == "__main__":
    sys.exit(main())
