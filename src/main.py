"""FastAPI application entry point for the fraud-ops service."""

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.dependencies import build_container
from src.api.middleware.error_handler import HANDLED_EXCEPTIONS, global_exception_handler
from src.api.middleware.logging import StructuredLoggingMiddleware
from src.api.routes.actions import router as actions_router
from src.api.routes.agents import router as agents_router
from src.api.routes.customers import router as customers_router
from src.api.routes.fraud import router as fraud_router
from src.api.routes.health import router as health_router
from src.api.routes.metrics import router as metrics_router
from src.config import settings
from src.db.store import FraudStore
from src.shared.logging import setup_logging

logger = structlog.get_logger()

# Track app start time for uptime calculation
APP_START_TIME: float = 0.0


async def _open_store() -> FraudStore:
    if settings.store_backend == "memory":
        from src.db.memory import InMemoryFraudStore

        return InMemoryFraudStore()

    from src.db.database import async_session_factory, init_db
    from src.db.store import SQLFraudStore

    await init_db()
    return SQLFraudStore(async_session_factory)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup and shutdown logic."""
    global APP_START_TIME
    APP_START_TIME = time.time()
    setup_logging(settings.log_level)

    logger.info(
        "fraud_ops_starting",
        app_name=settings.app_name,
        version=settings.app_version,
        store_backend=settings.store_backend,
        debug=settings.debug,
    )

    container = build_container(await _open_store(), settings)
    app.state.container = container

    yield

    await container.shutdown()
    if settings.store_backend == "sql":
        from src.db.database import dispose_db

        await dispose_db()
    logger.info("fraud_ops_shutting_down")


app = FastAPI(
    title="Aegis Fraud Ops",
    description="Fraud triage, alert lifecycle and analyst actions for card operations",
    version=settings.app_version,
    lifespan=lifespan,
)

# CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.debug else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(StructuredLoggingMiddleware)

# ValueError/PermissionError/LookupError are mapped to 4xx before the catch-all
for exc_class in HANDLED_EXCEPTIONS:
    app.add_exception_handler(exc_class, global_exception_handler)

app.include_router(health_router)
app.include_router(fraud_router)
app.include_router(actions_router)
app.include_router(agents_router)
app.include_router(customers_router)
app.include_router(metrics_router)


def get_uptime() -> int:
    """Get application uptime in seconds."""
    if APP_START_TIME == 0.0:
        return 0
    return int(time.time() - APP_START_TIME)
