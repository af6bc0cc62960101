from contextlib import asynccontextmanager

from fastapi import FastAPI

from stockwatch.core.config import settings
from stockwatch.core.errors import init_sentry
from stockwatch.api import backends
from stockwatch.core.logging_config import get_logger
from stockwatch.core.scheduler import start_scheduler, stop_scheduler
from stockwatch.db import create_db_and_tables, engine
from stockwatch.services.runtime import build_runtime

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Stockwatch API starting", database=engine.dialect.name)
    init_sentry(settings.SENTRY_DSN, environment=settings.SENTRY_ENVIRONMENT)
    create_db_and_tables(engine)

    runtime = build_runtime(settings, engine)
    app.state.runtime = runtime

    if settings.RUN_SCHEDULER:
        start_scheduler(runtime)
    else:
        logger.info("RUN_SCHEDULER is false, skipping scheduler startup in this process")

    try:
        yield
    finally:
        # Shutdown
        stop_scheduler()
        await runtime.aclose()


app = FastAPI(title=settings.PROJECT_NAME, openapi_url=f"{settings.API_V1_STR}/openapi.json", lifespan=lifespan)

app.include_router(backends.router, prefix=settings.API_V1_STR, tags=["backends"])


@app.get("/health")
def health():
    """Basic health check endpoint."""
    return {"status": "healthy"}
