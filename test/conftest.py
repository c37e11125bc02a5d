"""
Shared fixtures: an in-memory stand-in for the orderstatus.db functions and a
pool/connection pair whose transactions roll the store back on exception.
"""
import copy
import os
from datetime import datetime, timezone

import jwt
import pytest

os.environ.setdefault("JWT_SECRET", "test-secret-for-signing-caller-tokens")

from orderstatus import db  # noqa: E402
from orderstatus.config import settings  # noqa: E402


class FakeStore:
    def __init__(self):
        self.orders: dict[str, dict] = {}
        self.requests: dict[str, dict] = {}
        self.order_updates = 0
        self.failures: dict[str, Exception] = {}

    def add_order(self, order_id: str, status: str, merchant_id: str) -> dict:
        self.orders[order_id] = {
            "order_id": order_id,
            "status": status,
            "merchant_id": merchant_id,
            "updated_at": None,
            "completed_at": None,
        }
        return self.orders[order_id]

    def add_request(self, request_id: str, order_id=None, merchant_id=None, new_status=None, **fields) -> dict:
        self.requests[request_id] = {
            "request_id": request_id,
            "order_id": order_id,
            "merchant_id": merchant_id,
            "new_status": new_status,
            "processed": False,
            "processed_at": None,
            "success": None,
            "error": None,
            **fields,
        }
        return self.requests[request_id]

    def fail(self, operation: str, exc: Exception) -> None:
        self.failures[operation] = exc

    def _check(self, operation: str) -> None:
        if operation in self.failures:
            raise self.failures[operation]

    async def fetch_order(self, conn, order_id, for_update=False):
        self._check("fetch_order")
        order = self.orders.get(order_id)
        return dict(order) if order is not None else None

    async def apply_status_update(self, conn, order_id, new_status):
        self._check("apply_status_update")
        now = datetime.now(timezone.utc)
        order = self.orders[order_id]
        order["status"] = new_status
        order["updated_at"] = now
        if new_status == "completed":
            order["completed_at"] = now
        self.order_updates += 1

    async def insert_status_request(self, conn, request_id, order_id, merchant_id, new_status):
        self._check("insert_status_request")
        if request_id in self.requests:
            return False
        self.add_request(request_id, order_id, merchant_id, new_status)
        return True

    async def fetch_status_request(self, conn, request_id, for_update=False):
        self._check("fetch_status_request")
        request = self.requests.get(request_id)
        return dict(request) if request is not None else None

    async def fetch_unprocessed_request_ids(self, conn, limit=1000):
        self._check("fetch_unprocessed_request_ids")
        return [rid for rid, r in self.requests.items() if not r["processed"]][:limit]

    async def mark_status_request(self, conn, request_id, success, error=None):
        self._check("mark_status_request")
        request = self.requests.get(request_id)
        if request is None or request["processed"]:
            return False
        request.update(
            processed=True,
            processed_at=datetime.now(timezone.utc),
            success=success,
            error=error,
        )
        return True


class FakeTransaction:
    def __init__(self, store: FakeStore):
        self.store = store

    async def __aenter__(self):
        self._snapshot = (copy.deepcopy(self.store.orders), copy.deepcopy(self.store.requests), self.store.order_updates)
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if exc_type is not None:
            self.store.orders, self.store.requests, self.store.order_updates = self._snapshot
        return False


class FakeConnection:
    def __init__(self, store: FakeStore):
        self.store = store

    def transaction(self):
        return FakeTransaction(self.store)


class _Acquire:
    def __init__(self, conn: FakeConnection):
        self.conn = conn

    async def __aenter__(self):
        return self.conn

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakePool:
    def __init__(self, store: FakeStore):
        self.conn = FakeConnection(store)

    def acquire(self):
        return _Acquire(self.conn)


@pytest.fixture
def store(monkeypatch):
    """FakeStore wired in place of the orderstatus.db query functions."""
    fake = FakeStore()
    for name in (
        "fetch_order",
        "apply_status_update",
        "insert_status_request",
        "fetch_status_request",
        "mark_status_request",
        "fetch_unprocessed_request_ids",
    ):
        monkeypatch.setattr(db, name, getattr(fake, name))
    return fake


@pytest.fixture
def pool(store):
    return FakePool(store)


@pytest.fixture
def make_token():
    def _make(sub: str, secret: str | None = None, expires_in: int = 3600) -> str:
        now = int(datetime.now(timezone.utc).timestamp())
        return jwt.encode(
            {"sub": sub, "iat": now, "exp": now + expires_in},
            secret or settings.jwt_secret,
            algorithm=settings.jwt_algorithm,
        )
    return _make
