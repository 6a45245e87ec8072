"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from otp_guard.api.router import router as otp_router
from otp_guard.config import settings
from otp_guard.database.engine import init_db
from otp_guard.dependencies import build_otp_service

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle hook."""
    logger.info("Starting %s …", settings.app_name)
    if settings.store_backend == "sql":
        await init_db()
        logger.info("Database initialised")
    service = build_otp_service(settings)
    service.start_maintenance(settings.purge_interval_seconds)
    app.state.otp_service = service
    logger.info(
        "OTP service ready (store=%s, delivery=%s)",
        settings.store_backend,
        settings.delivery_backend,
    )
    yield
    logger.info("Shutting down %s …", settings.app_name)
    await service.stop_maintenance()


app = FastAPI(
    title=settings.app_name,
    description="One-time password issuance and verification with rate limiting and lockout",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(otp_router)


@app.get("/health")
async def health_check():
    """Simple liveness probe."""
    return {"status": "healthy", "app": settings.app_name}


def run() -> None:
    """Serve the API with uvicorn (``otp-guard`` console script)."""
    import uvicorn

    uvicorn.run("otp_guard.main:app", host="0.0.0.0", port=8000, log_level="info")


if __name__ == "__main__":
    run()
