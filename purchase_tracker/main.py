import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from purchase_tracker.config import settings
from purchase_tracker.db import close_pool, get_pool, init_schema
from purchase_tracker.metrics import get_metrics_bytes, get_metrics_content_type, transitions_rejected_total
from purchase_tracker.redis_client import close_redis, get_redis
from purchase_tracker.routes import admin, attachments, orders
from purchase_tracker.status import InvalidStateError
from purchase_tracker.storage import AttachmentRejectedError
from purchase_tracker.workflow import ForbiddenError, NotFoundError

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    pool = await get_pool()
    await init_schema(pool)
    await get_redis()
    logger.info("Schema ready. Primary admins: %d configured", len(settings.primary_admin_emails))
    yield
    await close_redis()
    await close_pool()


app = FastAPI(title="Purchase Tracker", lifespan=lifespan)
app.include_router(orders.router)
app.include_router(attachments.router)
app.include_router(admin.router)


@app.exception_handler(NotFoundError)
async def not_found(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"status": "not_found", "detail": str(exc)})


@app.exception_handler(ForbiddenError)
async def forbidden(request: Request, exc: ForbiddenError) -> JSONResponse:
    if exc.current_status is not None and exc.target_status is not None:
        transitions_rejected_total.labels(
            current_status=exc.current_status.value,
            attempted_status=exc.target_status.value,
        ).inc()
        logger.info("Rejected %s -> %s on %s", exc.current_status, exc.target_status, request.url.path)
    return JSONResponse(status_code=403, content={"status": "forbidden", "detail": str(exc)})


@app.exception_handler(InvalidStateError)
async def invalid_state(request: Request, exc: InvalidStateError) -> JSONResponse:
    return JSONResponse(status_code=422, content={"status": "invalid_state", "detail": str(exc)})


@app.exception_handler(AttachmentRejectedError)
async def attachment_rejected(request: Request, exc: AttachmentRejectedError) -> JSONResponse:
    return JSONResponse(status_code=422, content={"status": "rejected", "detail": str(exc)})


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@app.get("/metrics")
async def metrics() -> Response:
    """Prometheus scrape endpoint: submissions, status changes, rejected transitions."""
    return Response(
        content=get_metrics_bytes(),
        media_type=get_metrics_content_type(),
    )
