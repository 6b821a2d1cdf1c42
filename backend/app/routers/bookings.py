from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Header, Query

from app.auth import assert_actor_authorized, assert_maintenance_authorized
from app.models import (
    AlternativeProposalRequest,
    Booking,
    BookingAcceptRequest,
    BookingActorRequest,
    BookingCancelRequest,
    BookingChatContext,
    BookingRejectRequest,
    BookingRequest,
    BookingStartRequest,
    BookingStatusHistoryEntry,
    BookingView,
    ExpirySweepResult,
    PendingBookingCount,
    PriceBreakdown,
    PriceQuoteRequest,
    QueuePosition,
)
from app.routers.http_errors import raise_scheduling_http_error
from app.services.booking_lifecycle import booking_lifecycle
from app.services.errors import SchedulingError
from app.services.price_calculator import price_calculator

router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.post("/price", response_model=PriceBreakdown)
def quote_price(payload: PriceQuoteRequest):
    try:
        return price_calculator.calculate_booking_price(
            payload.service_id,
            payload.pricing_option_id,
            payload.start_time,
            payload.end_time,
        )
    except SchedulingError as exc:
        raise_scheduling_http_error(exc)


@router.post("", response_model=Booking)
def request_booking(
    payload: BookingRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=payload.customer_id, authorization=authorization, role="customer")
    try:
        return booking_lifecycle.request_booking(payload)
    except SchedulingError as exc:
        raise_scheduling_http_error(exc)


@router.get("/customer/{customer_id}", response_model=list[Booking])
def list_customer_bookings(
    customer_id: str,
    status: Optional[str] = Query(default=None),
    start_from: Optional[datetime] = Query(default=None),
    start_to: Optional[datetime] = Query(default=None),
    limit: int = Query(default=20),
    offset: int = Query(default=0),
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=customer_id, authorization=authorization, role="customer")
    try:
        return booking_lifecycle.list_customer_bookings(
            customer_id,
            customer_id,
            status=status,
            start_from=start_from,
            start_to=start_to,
            limit=limit,
            offset=offset,
        )
    except SchedulingError as exc:
        raise_scheduling_http_error(exc)


@router.get("/vendor/{vendor_id}", response_model=list[Booking])
def list_vendor_bookings(
    vendor_id: str,
    status: Optional[str] = Query(default=None),
    start_from: Optional[datetime] = Query(default=None),
    start_to: Optional[datetime] = Query(default=None),
    limit: int = Query(default=20),
    offset: int = Query(default=0),
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=vendor_id, authorization=authorization, role="vendor")
    try:
        return booking_lifecycle.list_vendor_bookings(
            vendor_id,
            vendor_id,
            status=status,
            start_from=start_from,
            start_to=start_to,
            limit=limit,
            offset=offset,
        )
    except SchedulingError as exc:
        raise_scheduling_http_error(exc)


@router.get("/vendor/{vendor_id}/pending-count", response_model=PendingBookingCount)
def pending_count(
    vendor_id: str,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=vendor_id, authorization=authorization, role="vendor")
    try:
        count = booking_lifecycle.pending_count(vendor_id, vendor_id)
    except SchedulingError as exc:
        raise_scheduling_http_error(exc)
    return PendingBookingCount(vendor_id=vendor_id, count=count)


@router.post("/maintenance/expire-alternatives", response_model=ExpirySweepResult)
def expire_alternatives(x_maintenance_token: Optional[str] = Header(default=None)):
    assert_maintenance_authorized(x_maintenance_token)
    expired = booking_lifecycle.expire_alternatives()
    return ExpirySweepResult(expired_booking_ids=[booking.id for booking in expired], count=len(expired))


@router.get("/{booking_id}", response_model=BookingView)
def get_booking(
    booking_id: str,
    actor_user_id: str = Query(...),
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=actor_user_id, authorization=authorization)
    try:
        return booking_lifecycle.get_booking(booking_id, actor_user_id)
    except SchedulingError as exc:
        raise_scheduling_http_error(exc)


@router.get("/{booking_id}/queue-position", response_model=QueuePosition)
def get_queue_position(
    booking_id: str,
    actor_user_id: str = Query(...),
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=actor_user_id, authorization=authorization)
    try:
        view = booking_lifecycle.get_booking(booking_id, actor_user_id)
    except SchedulingError as exc:
        raise_scheduling_http_error(exc)
    return QueuePosition(booking_id=view.id, status=view.status, queue_position=view.queue_position)


@router.get("/{booking_id}/history", response_model=list[BookingStatusHistoryEntry])
def get_history(
    booking_id: str,
    actor_user_id: str = Query(...),
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=actor_user_id, authorization=authorization)
    try:
        return booking_lifecycle.get_history(booking_id, actor_user_id)
    except SchedulingError as exc:
        raise_scheduling_http_error(exc)


@router.get("/{booking_id}/chat-context", response_model=BookingChatContext)
def get_chat_context(
    booking_id: str,
    actor_user_id: str = Query(...),
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=actor_user_id, authorization=authorization)
    try:
        return booking_lifecycle.get_chat_context(booking_id, actor_user_id)
    except SchedulingError as exc:
        raise_scheduling_http_error(exc)


@router.post("/{booking_id}/accept", response_model=Booking)
def accept_booking(
    booking_id: str,
    payload: BookingAcceptRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=payload.actor_user_id, authorization=authorization, role="vendor")
    try:
        return booking_lifecycle.accept_booking(booking_id, payload.actor_user_id, message=payload.message)
    except SchedulingError as exc:
        raise_scheduling_http_error(exc)


@router.post("/{booking_id}/reject", response_model=Booking)
def reject_booking(
    booking_id: str,
    payload: BookingRejectRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=payload.actor_user_id, authorization=authorization, role="vendor")
    try:
        return booking_lifecycle.reject_booking(booking_id, payload.actor_user_id, reason=payload.reason)
    except SchedulingError as exc:
        raise_scheduling_http_error(exc)


@router.post("/{booking_id}/propose-alternative", response_model=Booking)
def propose_alternative(
    booking_id: str,
    payload: AlternativeProposalRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=payload.actor_user_id, authorization=authorization, role="vendor")
    try:
        return booking_lifecycle.propose_alternative(
            booking_id,
            payload.actor_user_id,
            payload.alternative_start_time,
            payload.alternative_end_time,
            message=payload.message,
            expiry_hours=payload.expiry_hours,
        )
    except SchedulingError as exc:
        raise_scheduling_http_error(exc)


@router.post("/{booking_id}/accept-alternative", response_model=Booking)
def accept_alternative(
    booking_id: str,
    payload: BookingActorRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=payload.actor_user_id, authorization=authorization, role="customer")
    try:
        return booking_lifecycle.accept_alternative(booking_id, payload.actor_user_id)
    except SchedulingError as exc:
        raise_scheduling_http_error(exc)


@router.post("/{booking_id}/cancel", response_model=Booking)
def cancel_booking(
    booking_id: str,
    payload: BookingCancelRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=payload.actor_user_id, authorization=authorization)
    try:
        return booking_lifecycle.cancel_booking(booking_id, payload.actor_user_id, reason=payload.reason)
    except SchedulingError as exc:
        raise_scheduling_http_error(exc)


@router.post("/{booking_id}/start", response_model=Booking)
def start_booking(
    booking_id: str,
    payload: BookingStartRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=payload.actor_user_id, authorization=authorization, role="vendor")
    try:
        return booking_lifecycle.start_booking(booking_id, payload.actor_user_id, force=payload.force)
    except SchedulingError as exc:
        raise_scheduling_http_error(exc)


@router.post("/{booking_id}/complete", response_model=Booking)
def complete_booking(
    booking_id: str,
    payload: BookingActorRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=payload.actor_user_id, authorization=authorization, role="vendor")
    try:
        return booking_lifecycle.complete_booking(booking_id, payload.actor_user_id)
    except SchedulingError as exc:
        raise_scheduling_http_error(exc)
