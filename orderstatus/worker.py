"""
Worker: pop queued status request ids from Redis and run process_status_request on each.

A returned result, success or recorded rejection, finishes the message. An exception
(the store is unreachable, say) means the outcome could not be recorded: the id is
pushed back with exponential backoff, and after worker_max_retries attempts it goes
to the DLQ list and the request row is marked failed so it does not stay pending.
Redelivery is safe because the handler skips requests already processed.

On startup, requests still unprocessed in the table are enqueued again, so a
request whose enqueue was lost is still picked up.

Run: python -m orderstatus.worker  (worker metrics on port 9090)
"""
import asyncio
import json
import logging
import signal
import sys
import threading
import time

from orderstatus import db
from orderstatus.config import settings
from orderstatus.handlers import process_status_request
from orderstatus.metrics import messages_dlq_total, messages_failed_total, messages_processed_total
from orderstatus.queue import STATUS_REQUEST_QUEUE_KEY, close_redis, get_redis, push_to_dlq, push_to_queue

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)

BRPOP_TIMEOUT = 5
GRACEFUL_SHUTDOWN_WAIT_SEC = 30
WORKER_METRICS_PORT = 9090


def parse_message(raw: str) -> tuple[str | None, int]:
    """Return (request_id, attempts) from a queue message body; request_id is None if unusable."""
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning("Invalid JSON from queue: %s", e)
        return None, 0
    if not isinstance(data, dict) or not data.get("request_id"):
        logger.warning("Message without request_id, skipping: %.200s", raw)
        return None, 0
    attempts = data.get("attempts", 0)
    return str(data["request_id"]), attempts if isinstance(attempts, int) else 0


async def dead_letter(pool, request_id: str, attempts: int, error: Exception) -> None:
    await push_to_dlq(request_id, attempts, str(error), time.time())
    messages_dlq_total.inc()
    logger.warning("Moved request_id=%s to DLQ after %d attempts", request_id, attempts)
    try:
        await db.mark_status_request(
            pool, request_id, success=False, error=f"Not processed after {attempts} attempts: {error}"
        )
    except Exception:
        logger.exception("Could not record DLQ outcome on request_id=%s; the DLQ entry remains", request_id)


async def retry_or_dead_letter(pool, request_id: str, attempts: int, error: Exception) -> None:
    next_attempts = attempts + 1
    if next_attempts >= settings.worker_max_retries:
        await dead_letter(pool, request_id, next_attempts, error)
        return
    backoff_sec = 2 ** attempts
    logger.info(
        "Re-queuing request_id=%s in %ds (attempt %d/%d)",
        request_id, backoff_sec, next_attempts, settings.worker_max_retries,
    )
    await asyncio.sleep(backoff_sec)
    await push_to_queue(request_id, next_attempts)


async def handle_message(pool, raw: str, sem: asyncio.Semaphore) -> None:
    request_id, attempts = parse_message(raw)
    if request_id is None:
        return

    async with sem:
        try:
            result = await process_status_request(pool, request_id)
        except Exception as e:
            messages_failed_total.inc()
            logger.exception("Failed to process request_id=%s (attempt %d): %s", request_id, attempts + 1, e)
            await retry_or_dead_letter(pool, request_id, attempts, e)
            return
    messages_processed_total.inc()
    logger.info("Processed request_id=%s success=%s", request_id, result["success"])


async def requeue_unprocessed(pool) -> int:
    request_ids = await db.fetch_unprocessed_request_ids(pool)
    for request_id in request_ids:
        await push_to_queue(request_id)
    if request_ids:
        logger.info("Re-enqueued %d unprocessed status request(s)", len(request_ids))
    return len(request_ids)


async def run_worker(shutdown_event: asyncio.Event) -> None:
    pool = await db.get_pool()
    await db.init_schema(pool)
    await requeue_unprocessed(pool)
    r = await get_redis()
    sem = asyncio.Semaphore(settings.worker_concurrency)
    logger.info(
        "Listening on %s (concurrency=%d, max_retries=%d) ...",
        STATUS_REQUEST_QUEUE_KEY, settings.worker_concurrency, settings.worker_max_retries,
    )
    tasks: set[asyncio.Task] = set()
    try:
        while not shutdown_event.is_set():
            popped = await r.brpop(STATUS_REQUEST_QUEUE_KEY, timeout=BRPOP_TIMEOUT)
            if popped is None:
                continue
            t = asyncio.create_task(handle_message(pool, popped[1], sem))
            tasks.add(t)
            t.add_done_callback(tasks.discard)
    finally:
        if tasks:
            logger.info("Shutting down: waiting for %d in-flight request(s) (max %ds) ...", len(tasks), GRACEFUL_SHUTDOWN_WAIT_SEC)
            _, pending = await asyncio.wait(tasks, timeout=GRACEFUL_SHUTDOWN_WAIT_SEC)
            for t in pending:
                t.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
        await close_redis()
        await db.close_pool()
        logger.info("Worker stopped.")


async def _serve() -> None:
    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, shutdown_event.set)
        except NotImplementedError:
            signal.signal(sig, lambda *a: shutdown_event.set())
    await run_worker(shutdown_event)


def main() -> None:
    from prometheus_client import start_http_server

    threading.Thread(target=start_http_server, args=(WORKER_METRICS_PORT,), daemon=True).start()
    logger.info("Metrics server listening on port %s", WORKER_METRICS_PORT)
    asyncio.run(_serve())


if __name__ == "__main__":
    main()
