import asyncio
import logging
import sys

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api import consumers, conversations, messaging, otp, realtime, service_providers, sms
from app.db import close_store_connection, connect_to_store
from app.utils.errors import register_exception_handlers
from app.utils.otp_service import OtpService
from app.utils.presence_service import PresenceService
from app.utils.record_store import RecordStore
from app.utils.subscription_service import SubscriptionService
from config import settings

handlers = [logging.StreamHandler(sys.stdout)]  # Console output
if settings.LOG_FILE:
    handlers.append(logging.FileHandler(settings.LOG_FILE, mode="a"))  # File output

# Configure logging
logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=handlers,
)
logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(title="Hojaega Marketplace API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)
register_exception_handlers(app)


async def run_periodic_sweep(store: RecordStore, interval: int) -> None:
    """Expire lapsed subscriptions and purge spent OTP codes every ``interval`` seconds."""
    subscriptions = SubscriptionService(store)
    otp_codes = OtpService(store)
    while True:
        await asyncio.sleep(interval)
        try:
            await subscriptions.sweep_expired()
            await otp_codes.purge_expired()
        except Exception:
            logger.exception("Scheduled sweep failed")


# Startup and shutdown events
@app.on_event("startup")
async def on_startup():
    store = await connect_to_store()
    app.state.presence = PresenceService(store)
    app.state.sweeper = None
    interval = settings.SUBSCRIPTION_SWEEP_INTERVAL_SECONDS
    if interval > 0:
        app.state.sweeper = asyncio.create_task(run_periodic_sweep(store, interval))
        logger.info(f"Subscription sweep scheduled every {interval}s")


@app.on_event("shutdown")
async def on_shutdown():
    sweeper = getattr(app.state, "sweeper", None)
    if sweeper is not None:
        sweeper.cancel()
    await close_store_connection()


# Include API routes
app.include_router(service_providers.router, prefix="/api", tags=["Service Providers"])
app.include_router(consumers.router, prefix="/api", tags=["Consumers"])
app.include_router(otp.router, prefix="/api", tags=["OTP"])
app.include_router(conversations.router, prefix="/api", tags=["Conversations"])
app.include_router(messaging.router, prefix="/api", tags=["Messaging"])
app.include_router(sms.router, prefix="/api", tags=["SMS"])
app.include_router(realtime.router, tags=["Realtime"])


@app.get("/")
def root():
    return {"message": "Hojaega Marketplace API is running"}


@app.get("/health")
def health():
    return {"status": "healthy", "environment": settings.ENVIRONMENT}
