"""
Webhook Relay - reliable outbound webhook delivery

FastAPI application entry point.
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI

# Import observability modules
from webhook_relay.config import settings
from webhook_relay.logging_config import configure_logging, get_logger
from webhook_relay.sentry_config import configure_sentry
from webhook_relay.middleware.logging import LoggingMiddleware
from webhook_relay.routes.metrics import router as metrics_router

from webhook_relay.database import AsyncSessionLocal, engine
from webhook_relay.routes.webhooks import router as webhooks_router
from webhook_relay.services.dispatch_queue import create_dispatch_queue
from webhook_relay.services.record_store import SqlRecordStore

# Initialize logging first
configure_logging()

# Initialize Sentry (if SENTRY_DSN is set)
configure_sentry()

logger = get_logger(component="api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Wire the record store and dispatch queue used by the routes."""
    app.state.store = SqlRecordStore(AsyncSessionLocal)
    app.state.queue = await create_dispatch_queue()
    logger.info("api_started", redis=settings.REDIS_URL)

    yield

    await app.state.queue.close()
    await engine.dispose()
    logger.info("api_stopped")


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Accepts webhook events and delivers them to caller-supplied URLs with retries",
    lifespan=lifespan,
)

# Add logging middleware
app.add_middleware(LoggingMiddleware)

# Include metrics endpoint FIRST (so it's always available)
app.include_router(metrics_router)

# Include webhook routes
app.include_router(webhooks_router)


@app.get("/")
async def root():
    """Service info endpoint."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "ok"
    }


@app.get("/health")
async def health():
    """Health check."""
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "webhook_relay.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
    )
