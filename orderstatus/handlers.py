"""
The two order status update paths.

update_order_status: callable path. The caller's verified uid must own the order.
Failures raise a CallableError subclass that the API renders for the caller.

process_status_request: queue path, invoked once per delivery of a queued status
request. It runs with service privileges: the request's merchant_id is trusted as
claimed and no caller identity is checked. Failures are recorded on the request
and returned as {"success": False, "error": ...} so a permanently invalid request
is not retried. The request row is locked and checked for `processed` in the same
transaction that mutates the order, so a redelivered request is never applied twice.
"""
import logging

from orderstatus import db
from orderstatus.errors import (
    CallableError,
    FailedPrecondition,
    Internal,
    InvalidArgument,
    NotFound,
    PermissionDenied,
    StatusRequestRejected,
    Unauthenticated,
)
from orderstatus.metrics import status_updates_total, transitions_rejected_total
from orderstatus.order_state import ORDER_STATUSES, is_valid_transition

logger = logging.getLogger(__name__)


def _status_label(status: str | None) -> str:
    return status if status in ORDER_STATUSES else "unknown"


def _record_rejected_transition(current_status: str | None, new_status: str) -> None:
    transitions_rejected_total.labels(
        current_status=_status_label(current_status),
        requested_status=_status_label(new_status),
    ).inc()


async def update_order_status(pool, caller_uid: str | None, order_id: str | None, new_status: str | None) -> dict:
    context = {"order_id": order_id, "merchant_id": caller_uid, "new_status": new_status}
    try:
        if not caller_uid:
            raise Unauthenticated("You must be logged in to update an order status.")
        if not order_id or not new_status:
            raise InvalidArgument("The function must be called with orderId and newStatus arguments.")

        async with pool.acquire() as conn:
            async with conn.transaction():
                order = await db.fetch_order(conn, order_id, for_update=True)
                if order is None:
                    raise NotFound(f"Order {order_id} does not exist")
                if order["merchant_id"] != caller_uid:
                    raise PermissionDenied("You are not authorized to update this order")
                current_status = order["status"]
                if not is_valid_transition(current_status, new_status):
                    _record_rejected_transition(current_status, new_status)
                    raise FailedPrecondition(f"Invalid status transition from {current_status} to {new_status}")
                await db.apply_status_update(conn, order_id, new_status)
    except CallableError as e:
        status_updates_total.labels(entry_point="callable", outcome=e.status).inc()
        logger.error(
            "Error updating order %s status: %s (merchant_id=%s new_status=%s)",
            order_id, e.message, caller_uid, new_status,
            extra={**context, "error": e.message},
        )
        raise
    except Exception as e:
        status_updates_total.labels(entry_point="callable", outcome=Internal.status).inc()
        logger.error(
            "Error updating order %s status: %s (merchant_id=%s new_status=%s)",
            order_id, e, caller_uid, new_status,
            extra={**context, "error": str(e)},
        )
        raise Internal(str(e)) from e

    status_updates_total.labels(entry_point="callable", outcome="success").inc()
    logger.info(
        "Successfully updated order %s status to %s (merchant_id=%s)",
        order_id, new_status, caller_uid,
        extra=context,
    )
    return {"success": True, "message": f"Order status updated to {new_status}"}


def _stored_result(request: dict) -> dict:
    result = {"success": bool(request["success"])}
    if request.get("error"):
        result["error"] = request["error"]
    return result


async def _apply_request(conn, request: dict) -> None:
    order_id = request.get("order_id")
    merchant_id = request.get("merchant_id")
    new_status = request.get("new_status")
    if not order_id or not merchant_id or not new_status:
        raise StatusRequestRejected("Missing required fields in request data")

    order = await db.fetch_order(conn, order_id, for_update=True)
    if order is None:
        raise StatusRequestRejected(f"Order {order_id} does not exist")
    if order["merchant_id"] != merchant_id:
        raise StatusRequestRejected("Merchant is not authorized to update this order")
    current_status = order["status"]
    if not is_valid_transition(current_status, new_status):
        _record_rejected_transition(current_status, new_status)
        raise StatusRequestRejected(f"Invalid status transition from {current_status} to {new_status}")

    await db.apply_status_update(conn, order_id, new_status)


async def process_status_request(pool, request_id: str) -> dict:
    request: dict = {}
    async with pool.acquire() as conn:
        try:
            async with conn.transaction():
                request = await db.fetch_status_request(conn, request_id, for_update=True) or {}
                if not request:
                    logger.warning("Status request %s does not exist, skipping", request_id)
                    return {"success": False, "error": f"Status request {request_id} does not exist"}
                if request["processed"]:
                    logger.info("Status request %s already processed, skipping", request_id)
                    return _stored_result(request)
                await _apply_request(conn, request)
                await db.mark_status_request(conn, request_id, success=True)
        except Exception as e:
            error = str(e)
            outcome = "rejected" if isinstance(e, StatusRequestRejected) else "error"
            # Transaction above rolled back; record the failure on its own.
            if not await db.mark_status_request(conn, request_id, success=False, error=error):
                # Another delivery recorded an outcome first; that one stands.
                stored = await db.fetch_status_request(conn, request_id)
                if stored is not None and stored["processed"]:
                    logger.info("Status request %s was processed by another delivery", request_id)
                    return _stored_result(stored)
            status_updates_total.labels(entry_point="queue", outcome=outcome).inc()
            logger.error(
                "Error updating order %s status: %s (request_id=%s merchant_id=%s new_status=%s)",
                request.get("order_id"), error, request_id, request.get("merchant_id"), request.get("new_status"),
                extra={
                    "request_id": request_id,
                    "order_id": request.get("order_id"),
                    "merchant_id": request.get("merchant_id"),
                    "new_status": request.get("new_status"),
                    "error": error,
                },
            )
            return {"success": False, "error": error}

    status_updates_total.labels(entry_point="queue", outcome="success").inc()
    logger.info(
        "Successfully updated order %s status to %s (request_id=%s merchant_id=%s)",
        request["order_id"], request["new_status"], request_id, request["merchant_id"],
        extra={
            "request_id": request_id,
            "order_id": request["order_id"],
            "merchant_id": request["merchant_id"],
            "new_status": request["new_status"],
        },
    )
    return {"success": True}
