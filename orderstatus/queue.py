"""
Redis list carrying queued status requests to the worker (LPUSH in, BRPOP out).
Messages carry only the request id and a delivery attempt count; the worker
reads the request row itself. Requests that keep failing land on the DLQ list
with their last error.
"""
import json

import redis.asyncio as redis

from orderstatus.config import settings

STATUS_REQUEST_QUEUE_KEY = "queue:order_status_requests"
STATUS_REQUEST_DLQ_KEY = "queue:order_status_requests:dlq"

_redis: redis.Redis | None = None


async def get_redis() -> redis.Redis:
    global _redis
    if _redis is None:
        _redis = redis.from_url(settings.redis_url, decode_responses=True)
    return _redis


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None


def make_body(request_id: str, attempts: int = 0) -> dict:
    return {"request_id": request_id, "attempts": attempts}


async def push_to_queue(request_id: str, attempts: int = 0) -> None:
    r = await get_redis()
    await r.lpush(STATUS_REQUEST_QUEUE_KEY, json.dumps(make_body(request_id, attempts)))


async def push_to_dlq(request_id: str, attempts: int, last_error: str, failed_at: float) -> None:
    body = make_body(request_id, attempts)
    body.update(last_error=last_error, failed_at=failed_at)
    r = await get_redis()
    await r.lpush(STATUS_REQUEST_DLQ_KEY, json.dumps(body))


async def queue_depth() -> tuple[int, int]:
    """(waiting, dead-lettered) message counts for metrics."""
    r = await get_redis()
    return await r.llen(STATUS_REQUEST_QUEUE_KEY), await r.llen(STATUS_REQUEST_DLQ_KEY)
