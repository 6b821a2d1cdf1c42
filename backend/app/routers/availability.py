from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Header, Query

from app.auth import assert_actor_authorized
from app.models import (
    AvailabilitySettings,
    AvailabilitySettingsUpdate,
    CalendarBlock,
    CalendarBlockCreateRequest,
    CalendarBlockUpdateRequest,
)
from app.routers.http_errors import raise_scheduling_http_error
from app.services.availability_store import availability_store
from app.services.errors import SchedulingError, SchedulingPermissionError

router = APIRouter(prefix="/availability", tags=["availability"])


@router.get("/vendors/{vendor_id}/settings", response_model=AvailabilitySettings)
def get_settings(vendor_id: str):
    return availability_store.get_settings(vendor_id)


@router.put("/vendors/{vendor_id}/settings", response_model=AvailabilitySettings)
def upsert_settings(
    vendor_id: str,
    payload: AvailabilitySettingsUpdate,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=payload.actor_user_id, authorization=authorization, role="vendor")
    try:
        return availability_store.upsert_settings(vendor_id, payload)
    except SchedulingError as exc:
        raise_scheduling_http_error(exc)


@router.get("/vendors/{vendor_id}/blocks", response_model=list[CalendarBlock])
def list_blocks(
    vendor_id: str,
    range_start: datetime = Query(...),
    range_end: datetime = Query(...),
    service_id: Optional[str] = Query(default=None),
    actor_user_id: str = Query(...),
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=actor_user_id, authorization=authorization, role="vendor")
    try:
        if actor_user_id != vendor_id:
            raise SchedulingPermissionError("Only the vendor can view their calendar blocks")
        return availability_store.list_blocks(vendor_id, range_start, range_end, service_id=service_id)
    except SchedulingError as exc:
        raise_scheduling_http_error(exc)


@router.post("/vendors/{vendor_id}/blocks", response_model=CalendarBlock)
def create_block(
    vendor_id: str,
    payload: CalendarBlockCreateRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=payload.actor_user_id, authorization=authorization, role="vendor")
    try:
        return availability_store.create_block(vendor_id, payload)
    except SchedulingError as exc:
        raise_scheduling_http_error(exc)


@router.patch("/blocks/{block_id}", response_model=CalendarBlock)
def update_block(
    block_id: str,
    payload: CalendarBlockUpdateRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=payload.actor_user_id, authorization=authorization, role="vendor")
    try:
        return availability_store.update_block(block_id, payload.actor_user_id, payload)
    except SchedulingError as exc:
        raise_scheduling_http_error(exc)


@router.delete("/blocks/{block_id}", response_model=dict)
def delete_block(
    block_id: str,
    vendor_id: str = Query(...),
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=vendor_id, authorization=authorization, role="vendor")
    try:
        availability_store.delete_block(block_id, vendor_id)
    except SchedulingError as exc:
        raise_scheduling_http_error(exc)
    return {"status": "deleted", "block_id": block_id}
