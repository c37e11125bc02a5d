from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from orderstatus.auth import caller_uid
from orderstatus.db import get_pool
from orderstatus.handlers import update_order_status

router = APIRouter(tags=["callable"])


class CallableBody(BaseModel):
    # Any shape is accepted here; argument checks belong to the handler, after the identity check.
    data: Any = Field(default=None, description="Callable arguments")


def _str_arg(data: Any, key: str) -> str | None:
    if not isinstance(data, dict):
        return None
    value = data.get(key)
    return value if isinstance(value, str) else None


@router.post("/updateOrderStatus")
async def update_order_status_callable(
    body: CallableBody | None = None,
    uid: str | None = Depends(caller_uid),
    pool=Depends(get_pool),
) -> dict:
    """
    Callable wire shape: {"data": {"orderId", "newStatus"}} -> {"result": {...}}.
    Failures are rendered as {"error": {"status", "message"}} by the CallableError handler.
    """
    data = body.data if body is not None else None
    result = await update_order_status(
        pool,
        uid,
        _str_arg(data, "orderId"),
        _str_arg(data, "newStatus"),
    )
    return {"result": result}
