"""
Async Postgres: orders (current status per order) + order_status_requests (queued update intents).
Timestamps are assigned by the server (NOW()) inside the writing statement.
Functions accept either a pooled connection or the pool itself.
"""
import asyncpg

from orderstatus.config import settings
from orderstatus.order_state import COMPLETED

_pool: asyncpg.Pool | None = None


async def get_pool() -> asyncpg.Pool:
    global _pool
    if _pool is None:
        _pool = await asyncpg.create_pool(
            settings.database_url,
            min_size=1,
            max_size=5,
            command_timeout=60,
        )
    return _pool


async def close_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None


async def init_schema(pool: asyncpg.Pool) -> None:
    async with pool.acquire() as conn:
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS orders (
                order_id VARCHAR(255) PRIMARY KEY,
                status VARCHAR(50) NOT NULL,
                merchant_id VARCHAR(255) NOT NULL,
                created_at TIMESTAMPTZ DEFAULT NOW(),
                updated_at TIMESTAMPTZ DEFAULT NOW(),
                completed_at TIMESTAMPTZ
            );
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS order_status_requests (
                request_id VARCHAR(255) PRIMARY KEY,
                order_id VARCHAR(255),
                merchant_id VARCHAR(255),
                new_status VARCHAR(50),
                processed BOOLEAN NOT NULL DEFAULT FALSE,
                processed_at TIMESTAMPTZ,
                success BOOLEAN,
                error TEXT,
                created_at TIMESTAMPTZ DEFAULT NOW()
            );
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_order_status_requests_order_id
            ON order_status_requests(order_id);
        """)


async def fetch_order(conn, order_id: str, for_update: bool = False) -> dict | None:
    query = "SELECT order_id, status, merchant_id, updated_at, completed_at FROM orders WHERE order_id = $1"
    if for_update:
        query += " FOR UPDATE"
    row = await conn.fetchrow(query + ";", order_id)
    return dict(row) if row is not None else None


async def apply_status_update(conn, order_id: str, new_status: str) -> None:
    """Set status and updated_at; completed_at is stamped only when the order completes."""
    if new_status == COMPLETED:
        await conn.execute(
            """
            UPDATE orders SET status = $1, updated_at = NOW(), completed_at = NOW() WHERE order_id = $2;
            """,
            new_status,
            order_id,
        )
    else:
        await conn.execute(
            """
            UPDATE orders SET status = $1, updated_at = NOW() WHERE order_id = $2;
            """,
            new_status,
            order_id,
        )


async def insert_status_request(
    conn,
    request_id: str,
    order_id: str | None,
    merchant_id: str | None,
    new_status: str | None,
) -> bool:
    """Insert a new status request. Returns False if request_id already exists."""
    row = await conn.fetchrow(
        """
        INSERT INTO order_status_requests (request_id, order_id, merchant_id, new_status)
        VALUES ($1, $2, $3, $4)
        ON CONFLICT (request_id) DO NOTHING
        RETURNING request_id;
        """,
        request_id,
        order_id,
        merchant_id,
        new_status,
    )
    return row is not None


async def fetch_status_request(conn, request_id: str, for_update: bool = False) -> dict | None:
    query = (
        "SELECT request_id, order_id, merchant_id, new_status, processed, processed_at, success, error"
        " FROM order_status_requests WHERE request_id = $1"
    )
    if for_update:
        query += " FOR UPDATE"
    row = await conn.fetchrow(query + ";", request_id)
    return dict(row) if row is not None else None


async def mark_status_request(conn, request_id: str, success: bool, error: str | None = None) -> bool:
    """
    Record the outcome of a status request. Only an unprocessed request is written,
    so an outcome is recorded at most once. Returns True if this call recorded it.
    """
    row = await conn.fetchrow(
        """
        UPDATE order_status_requests
        SET processed = TRUE, processed_at = NOW(), success = $2, error = $3
        WHERE request_id = $1 AND processed IS NOT TRUE
        RETURNING request_id;
        """,
        request_id,
        success,
        error,
    )
    return row is not None


async def fetch_unprocessed_request_ids(conn, limit: int = 1000) -> list[str]:
    """Oldest first. Used by the worker at startup to re-enqueue requests whose enqueue may have been lost."""
    rows = await conn.fetch(
        """
        SELECT request_id FROM order_status_requests
        WHERE processed IS NOT TRUE
        ORDER BY created_at ASC
        LIMIT $1;
        """,
        limit,
    )
    return [row["request_id"] for row in rows]
