import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from orderstatus.config import settings
from orderstatus.db import close_pool, get_pool, init_schema
from orderstatus.errors import CallableError
from orderstatus.metrics import (
    get_metrics_bytes,
    get_metrics_content_type,
    status_request_queue_dead_lettered,
    status_request_queue_waiting,
)
from orderstatus.queue import close_redis, get_redis, queue_depth
from orderstatus.routes import requests, rpc

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
    yield
    await close_redis()
    await close_pool()


app = FastAPI(title="Order Status Service", lifespan=lifespan)
app.include_router(rpc.router)
app.include_router(requests.router)


@app.exception_handler(CallableError)
async def callable_error_handler(request: Request, exc: CallableError) -> JSONResponse:
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@app.get("/metrics")
async def metrics() -> Response:
    """Prometheus scrape endpoint: status updates, queued requests, queue depth."""
    try:
        waiting, dead_lettered = await queue_depth()
        status_request_queue_waiting.set(waiting)
        status_request_queue_dead_lettered.set(dead_lettered)
    except Exception as e:
        logger.warning("Could not read queue depth: %s", e)
    return Response(
        content=get_metrics_bytes(),
        media_type=get_metrics_content_type(),
    )
