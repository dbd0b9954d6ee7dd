import asyncio
import os
import sys

# Ensure project root on sys.path
CURRENT_DIR = os.path.dirname(os.path.abspath(__file__))
PROJECT_ROOT = os.path.dirname(CURRENT_DIR)
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from app.db import close_store_connection, connect_to_store  # noqa: E402
from app.utils.otp_service import OtpService  # noqa: E402
from app.utils.subscription_service import SubscriptionService  # noqa: E402


async def main() -> None:
    """One-off sweep for deployments that run it from cron instead of in-process."""
    store = await connect_to_store()
    try:
        expired = await SubscriptionService(store).sweep_expired()
        purged = await OtpService(store).purge_expired()
        print({"expired_subscriptions": expired, "purged_otp_codes": purged})
    finally:
        await close_store_connection()


if __name__ == "__main__":
    asyncio.run(main())
