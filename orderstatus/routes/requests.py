import uuid

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from orderstatus.db import fetch_status_request, get_pool, insert_status_request
from orderstatus.metrics import status_requests_enqueued_total
from orderstatus.queue import push_to_queue

router = APIRouter(prefix="/orderStatusRequests", tags=["status-requests"])


class StatusRequestBody(BaseModel):
    # Fields are optional here: a request missing any of them is still recorded and
    # then rejected by the worker, so the producer can read the outcome back.
    model_config = ConfigDict(populate_by_name=True)

    request_id: str | None = Field(default=None, alias="requestId", description="Client-chosen id; generated if absent")
    order_id: str | None = Field(default=None, alias="orderId")
    merchant_id: str | None = Field(default=None, alias="merchantId")
    new_status: str | None = Field(default=None, alias="newStatus")


@router.post("")
async def create_status_request(body: StatusRequestBody, pool=Depends(get_pool)) -> JSONResponse:
    """
    Record a status request and enqueue it for the worker.
    New request -> 202 Accepted. Same requestId again -> 200; if that request is still
    unprocessed it is enqueued again, since an earlier enqueue may have failed after the
    insert. The worker skips requests already processed, so a duplicate is harmless.
    """
    request_id = body.request_id or uuid.uuid4().hex
    inserted = await insert_status_request(pool, request_id, body.order_id, body.merchant_id, body.new_status)
    if not inserted:
        existing = await fetch_status_request(pool, request_id)
        if existing is not None and not existing["processed"]:
            await push_to_queue(request_id)
        return JSONResponse(
            status_code=200,
            content={"status": "already_exists", "requestId": request_id},
        )

    await push_to_queue(request_id)
    status_requests_enqueued_total.inc()
    return JSONResponse(
        status_code=202,
        content={"status": "accepted", "requestId": request_id},
    )


@router.get("/{request_id}")
async def get_status_request(request_id: str, pool=Depends(get_pool)) -> dict:
    request = await fetch_status_request(pool, request_id)
    if request is None:
        raise HTTPException(status_code=404, detail=f"Status request {request_id} does not exist")
    return {
        "requestId": request["request_id"],
        "orderId": request["order_id"],
        "merchantId": request["merchant_id"],
        "newStatus": request["new_status"],
        "processed": request["processed"],
        "processedAt": request["processed_at"],
        "success": request["success"],
        "error": request["error"],
    }
