"""
FastAPI server for the trade-finance bookkeeping service
Hosts the escrow webhook, the live event stream and health checks
"""
from fastapi import FastAPI, Request
from fastapi.responses import ORJSONResponse
from contextlib import asynccontextmanager
import logging
import os

from config import Config
import database
from handlers.escrow_webhook import router as escrow_webhook_router
from handlers.event_stream import router as event_stream_router
from jobs.scheduler import LedgerScheduler
from utils.exceptions import ServiceError

logger = logging.getLogger(__name__)

_scheduler = None


def configure_logging():
    logging.basicConfig(
        level=getattr(logging, Config.LOG_LEVEL, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


# Lifespan handler for FastAPI (modern replacement for on_event)
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: database engine, schema, scheduler
    Shutdown: scheduler and connection pool
    """
    global _scheduler

    logger.info(f"🔧 Worker {os.getpid()} starting...")
    Config.log_environment_config()

    database.init_engine()
    if not database.create_tables():
        logger.error("❌ Database schema could not be verified; requests may fail")

    if Config.ENABLE_SCHEDULER:
        _scheduler = LedgerScheduler()
        _scheduler.start()
    else:
        logger.info("⏸️ Scheduler disabled (ENABLE_SCHEDULER=false)")

    yield  # App is now running and handling requests

    logger.info(f"🔄 Worker {os.getpid()} shutting down...")
    if _scheduler is not None:
        _scheduler.shutdown(wait=False)
        _scheduler = None
    if database.engine is not None:
        database.engine.dispose()


app = FastAPI(
    title="Trade-Finance Ledger",
    description="Off-chain bookkeeping for wallet accounts, escrows and loans",
    default_response_class=ORJSONResponse,
    lifespan=lifespan,
)

app.include_router(escrow_webhook_router)
app.include_router(event_stream_router)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    if exc.status_code >= 500:
        logger.error(f"❌ {type(exc).__name__} on {request.url.path}: {exc.message}")
    else:
        logger.info(f"⚠️ {type(exc).__name__} on {request.url.path}: {exc.message}")
    return ORJSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"❌ UNHANDLED_ERROR on {request.url.path}: {exc}", exc_info=True)
    return ORJSONResponse(status_code=500, content={"success": False, "error": "internal server error"})


@app.get("/health")
async def health_check():
    """Liveness plus a database round trip"""
    return {"status": "ok", "database": database.test_connection()}


if __name__ == "__main__":
    import uvicorn

    configure_logging()
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
