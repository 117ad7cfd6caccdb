from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
import uuid
from contextlib import asynccontextmanager
from database import database
from storebuilder import __product__, __version__
from storebuilder.routes import auth, plans, stores, catalog, billing, webhooks, admin
import os
import logging
from pathlib import Path
from dotenv import load_dotenv
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

# Load environment variables
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Session reconciliation jobs are per-login and must not outlive the process,
# so the scheduler keeps its jobs in memory.
scheduler = AsyncIOScheduler()

SUBSCRIPTION_EXPIRY_SWEEP_MINUTES = int(os.environ.get("SUBSCRIPTION_EXPIRY_SWEEP_MINUTES", "15"))

from job_runner import run_subscription_expiry_sweep
from storebuilder.services.change_feed import change_feed
from storebuilder.services.plan_catalog import plan_catalog
from storebuilder.services.session_manager import session_manager


async def on_plans_change(change):
    """Plan rows edited in the database: refresh the catalog, then re-check live sessions."""
    plans = await plan_catalog.load_plans()
    logger.info(f"Plan catalog reloaded after {change.get('operationType')}: {len(plans)} plan(s)")
    for account_id in session_manager.account_ids():
        session = session_manager.get(account_id)
        if session:
            await session.reconcile(reason="plans_change", force=True)


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info(f"Starting {__product__} API")
    await database.connect()

    # Stripe config: log mode (test/live) from key prefix, never the key itself
    stripe_key = (os.environ.get("STRIPE_SECRET_KEY") or os.environ.get("STRIPE_API_KEY") or "").strip()
    if not stripe_key:
        logger.error("STRIPE_API_KEY / STRIPE_SECRET_KEY is not set. Checkout and billing portal will fail.")
    else:
        logger.info("STRIPE_MODE = %s (from Stripe key prefix)", "test" if stripe_key.startswith("sk_test_") else "live")
    if not os.environ.get("STRIPE_WEBHOOK_SECRET"):
        logger.error("STRIPE_WEBHOOK_SECRET is not set. Stripe webhooks will be rejected.")

    if os.environ.get("SEED_DEFAULT_PLANS", "").strip().lower() == "true":
        try:
            seeded = await plan_catalog.seed_default_plans()
            logger.info(f"Default plans seeded: {seeded}")
        except Exception as e:
            logger.warning(f"Default plan seeding failed: {e}")

    plans = await plan_catalog.load_plans()
    if plan_catalog.get_free_plan() is None:
        logger.error("No free plan in catalog. Registration is disabled until one is configured.")
    logger.info(f"Plan catalog loaded: {len(plans)} plan(s)")

    session_manager.configure(scheduler=scheduler, change_feed=change_feed)
    change_feed.subscribe("plans", on_plans_change)

    # Configure scheduled jobs
    scheduler.add_job(
        run_subscription_expiry_sweep,
        IntervalTrigger(minutes=SUBSCRIPTION_EXPIRY_SWEEP_MINUTES),
        id="subscription_expiry_sweep",
        name="Subscription Expiry Sweep",
        max_instances=1,
        coalesce=True,
        replace_existing=True
    )

    scheduler.start()
    logger.info("Background job scheduler started")

    yield

    # Shutdown
    logger.info(f"Shutting down {__product__} API")
    await session_manager.shutdown()
    await change_feed.close()
    scheduler.shutdown(wait=False)
    logger.info("Background job scheduler stopped")
    await database.close()

# Create FastAPI app
app = FastAPI(
    title=f"{__product__} API",
    description="Multi-store builder with plan limits and Stripe subscriptions",
    version=__version__,
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=os.environ.get('CORS_ORIGINS', '*').split(','),
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(auth.router)
app.include_router(plans.router)
app.include_router(stores.router)
app.include_router(catalog.router)
app.include_router(billing.router)
app.include_router(webhooks.router)
app.include_router(admin.router)

# Root endpoint
@app.get("/api")
async def root():
    return {
        "service": __product__,
        "version": __version__,
        "status": "operational"
    }

# Health check
@app.get("/api/health")
async def health_check():
    return {
        "status": "healthy",
        "environment": os.getenv("ENVIRONMENT", "development"),
        "active_sessions": session_manager.active_count,
    }


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    request_id = str(uuid.uuid4())
    errors = exc.errors()
    logger.warning(
        "Validation failed request_id=%s path=%s errors=%s",
        request_id,
        request.url.path,
        [(e.get("loc"), e.get("msg"), e.get("type")) for e in errors],
    )
    return JSONResponse(
        status_code=422,
        content={"detail": jsonable_errors(errors), "request_id": request_id},
    )


def jsonable_errors(errors):
    # pydantic v2 puts the raw exception under ctx for custom validators
    return [{k: v for k, v in e.items() if k != "ctx"} for e in errors]


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "server:app",
        host="0.0.0.0",
        port=8001,
        reload=os.getenv("ENVIRONMENT") == "development"
    )
