"""Booking state machine.

Every mutation of a booking after it is requested goes through ``_transition``.
``TRANSITIONS`` is the single source for which statuses an action may start
from, where it leads and which party may perform it; the authorization and
state checks below read nothing else.

Checks run in a fixed order before anything is written: the booking must
exist, the actor must hold a role the action allows, the current status must
be a legal starting point, then action-specific validation. Only the overlap
check on accept and accept_alternative can still abort the write itself.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from app.config import ALTERNATIVE_EXPIRY_HOURS, BOOKING_PAGE_SIZE_MAX
from app.models import (
    Booking,
    BookingChatContext,
    BookingRequest,
    BookingStatusHistoryEntry,
    BookingView,
)
from app.services.availability_store import AvailabilityStore, availability_store
from app.services.booking_events import BookingEventDispatcher, booking_events
from app.services.booking_store import BookingStore, ExclusiveWindow, booking_store
from app.services.catalog_store import CatalogStore, catalog_store
from app.services.clock import ensure_utc, resolve_now
from app.services.errors import (
    InvalidStateTransitionError,
    ProposalExpiredError,
    SchedulingConflictError,
    SchedulingPermissionError,
    SchedulingValidationError,
)
from app.services.price_calculator import PriceCalculator, price_calculator
from app.services.queue_resolver import QueueResolver, queue_resolver

logger = logging.getLogger(__name__)

BOOKING_STATUSES = (
    "pending",
    "accepted",
    "rejected",
    "alternative_proposed",
    "alternative_accepted",
    "alternative_expired",
    "in_progress",
    "completed",
    "cancelled",
)


@dataclass(frozen=True)
class TransitionRule:
    from_statuses: Tuple[str, ...]
    to_status: str
    actors: Tuple[str, ...]
    note: str


TRANSITIONS: Dict[str, TransitionRule] = {
    "request": TransitionRule((), "pending", ("customer",), "booking requested"),
    "accept": TransitionRule(("pending",), "accepted", ("vendor",), "accepted by vendor"),
    "reject": TransitionRule(("pending",), "rejected", ("vendor",), "rejected by vendor"),
    "propose_alternative": TransitionRule(
        ("pending",), "alternative_proposed", ("vendor",), "alternative time proposed"
    ),
    "accept_alternative": TransitionRule(
        ("alternative_proposed",), "alternative_accepted", ("customer",), "alternative time accepted"
    ),
    "expire_alternative": TransitionRule(
        ("alternative_proposed",), "alternative_expired", ("system",), "alternative proposal expired"
    ),
    "start": TransitionRule(("accepted", "alternative_accepted"), "in_progress", ("vendor",), "service started"),
    "complete": TransitionRule(("in_progress",), "completed", ("vendor",), "service completed"),
    "cancel": TransitionRule(
        ("pending", "accepted", "alternative_proposed", "alternative_accepted"),
        "cancelled",
        ("customer", "vendor"),
        "booking cancelled",
    ),
}


def allowed_actions(status: str, roles: Tuple[str, ...] = ("customer", "vendor")) -> List[str]:
    return [
        action
        for action, rule in TRANSITIONS.items()
        if status in rule.from_statuses and any(role in rule.actors for role in roles)
    ]


def generate_booking_number(now: datetime) -> str:
    return f"BK-{now:%Y%m%d}-{uuid4().hex[:6].upper()}"


def _actor_roles(booking: Booking, actor_user_id: str) -> Tuple[str, ...]:
    roles = []
    if actor_user_id == booking.customer_id:
        roles.append("customer")
    if actor_user_id == booking.vendor_id:
        roles.append("vendor")
    return tuple(roles)


@dataclass
class BookingLifecycle:
    catalog: CatalogStore
    availability: AvailabilityStore
    bookings: BookingStore
    prices: PriceCalculator
    queue: QueueResolver
    events: BookingEventDispatcher

    def _authorize(self, booking_id: str, action: str, actor_user_id: str) -> Tuple[Booking, str]:
        rule = TRANSITIONS[action]
        booking = self.bookings.get_booking(booking_id)
        roles = [role for role in _actor_roles(booking, actor_user_id) if role in rule.actors]
        if not roles:
            allowed = " or ".join(rule.actors)
            raise SchedulingPermissionError(f"Only the booking's {allowed} can {action.replace('_', ' ')} it")
        if booking.status not in rule.from_statuses:
            raise InvalidStateTransitionError(booking.status, action)
        return booking, roles[0]

    def _exclusive_window(self, booking: Booking, start: datetime, end: datetime) -> ExclusiveWindow:
        settings = self.availability.get_settings(booking.vendor_id)
        service_id = None if settings.conflict_scope == "vendor" else booking.service_id
        return ExclusiveWindow(vendor_id=booking.vendor_id, service_id=service_id, start_time=start, end_time=end)

    def _transition(
        self,
        booking: Booking,
        action: str,
        actor_user_id: str,
        now: datetime,
        changes: Optional[Dict[str, Any]] = None,
        note: Optional[str] = None,
        exclusive_window: Optional[ExclusiveWindow] = None,
    ) -> Booking:
        rule = TRANSITIONS[action]
        try:
            updated = self.bookings.commit_transition(
                booking.id,
                action=action,
                expected_status=booking.status,
                to_status=rule.to_status,
                actor_user_id=actor_user_id,
                changes=changes or {},
                updated_at=now,
                note=note or rule.note,
                exclusive_window=exclusive_window,
            )
        except SchedulingConflictError:
            logger.warning("booking %s: %s lost to an overlapping booking", booking.id, action)
            raise
        logger.info("booking %s: %s -> %s by %s", booking.id, booking.status, updated.status, actor_user_id)
        self.events.dispatch(action, updated, actor_user_id)
        return updated

    def request_booking(self, request: BookingRequest, now: Optional[datetime] = None) -> Booking:
        now = resolve_now(now)
        start = ensure_utc(request.start_time)
        end = ensure_utc(request.end_time)
        if end <= start:
            raise SchedulingValidationError("end_time must be after start_time")

        service = self.catalog.get_service(request.service_id)
        if service.status != "active":
            raise SchedulingValidationError("Service is not accepting bookings")
        if service.vendor_id == request.customer_id:
            raise SchedulingPermissionError("Vendors cannot book their own services")

        settings = self.availability.get_settings(service.vendor_id)
        earliest = now + timedelta(hours=settings.min_booking_notice_hours)
        latest = now + timedelta(days=settings.max_booking_advance_days)
        if start < earliest:
            raise SchedulingValidationError(
                f"Bookings need at least {settings.min_booking_notice_hours} hours notice"
            )
        if start > latest:
            raise SchedulingValidationError(
                f"Bookings can be made at most {settings.max_booking_advance_days} days in advance"
            )

        price = self.prices.calculate_booking_price(service.id, request.pricing_option_id, start, end)
        booking = Booking(
            id=f"bk_{uuid4().hex[:12]}",
            booking_number=generate_booking_number(now),
            customer_id=request.customer_id,
            vendor_id=service.vendor_id,
            service_id=service.id,
            pricing_option_id=request.pricing_option_id,
            requested_start_time=start,
            requested_end_time=end,
            status=TRANSITIONS["request"].to_status,
            customer_notes=request.notes.strip(),
            price_breakdown=price,
            created_at=now,
            updated_at=now,
        )
        self.bookings.insert_booking(booking, note=TRANSITIONS["request"].note)
        logger.info("booking %s: requested by %s for service %s", booking.id, booking.customer_id, service.id)
        self.events.dispatch("request", booking, request.customer_id)
        return booking

    def accept_booking(
        self,
        booking_id: str,
        vendor_id: str,
        message: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Booking:
        now = resolve_now(now)
        booking, _ = self._authorize(booking_id, "accept", vendor_id)
        window = self._exclusive_window(booking, booking.requested_start_time, booking.requested_end_time)
        changes = {"vendor_notes": message.strip()} if message and message.strip() else {}
        return self._transition(booking, "accept", vendor_id, now, changes, exclusive_window=window)

    def reject_booking(
        self,
        booking_id: str,
        vendor_id: str,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Booking:
        now = resolve_now(now)
        booking, _ = self._authorize(booking_id, "reject", vendor_id)
        reason = (reason or "").strip() or None
        return self._transition(booking, "reject", vendor_id, now, {"reject_reason": reason}, note=reason)

    def propose_alternative(
        self,
        booking_id: str,
        vendor_id: str,
        alternative_start_time: datetime,
        alternative_end_time: datetime,
        message: Optional[str] = None,
        expiry_hours: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Booking:
        now = resolve_now(now)
        booking, _ = self._authorize(booking_id, "propose_alternative", vendor_id)
        start = ensure_utc(alternative_start_time)
        end = ensure_utc(alternative_end_time)
        if end <= start:
            raise SchedulingValidationError("alternative_end_time must be after alternative_start_time")
        if start <= now:
            raise SchedulingValidationError("alternative_start_time must be in the future")
        hours = ALTERNATIVE_EXPIRY_HOURS if expiry_hours is None else expiry_hours
        if hours <= 0:
            raise SchedulingValidationError("expiry_hours must be positive")

        changes = {
            "alternative_start_time": start,
            "alternative_end_time": end,
            "alternative_expires_at": now + timedelta(hours=hours),
            "alternative_message": (message or "").strip() or None,
        }
        return self._transition(booking, "propose_alternative", vendor_id, now, changes)

    def accept_alternative(self, booking_id: str, customer_id: str, now: Optional[datetime] = None) -> Booking:
        now = resolve_now(now)
        booking, _ = self._authorize(booking_id, "accept_alternative", customer_id)
        if booking.alternative_start_time is None or booking.alternative_end_time is None:
            raise SchedulingValidationError("Booking has no alternative time to accept")
        if booking.alternative_expires_at is not None and now > booking.alternative_expires_at:
            raise ProposalExpiredError("The proposed alternative time has expired")

        window = self._exclusive_window(booking, booking.alternative_start_time, booking.alternative_end_time)
        changes = {
            "requested_start_time": booking.alternative_start_time,
            "requested_end_time": booking.alternative_end_time,
            "alternative_start_time": None,
            "alternative_end_time": None,
            "alternative_expires_at": None,
        }
        return self._transition(booking, "accept_alternative", customer_id, now, changes, exclusive_window=window)

    def cancel_booking(
        self,
        booking_id: str,
        actor_user_id: str,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Booking:
        now = resolve_now(now)
        booking, role = self._authorize(booking_id, "cancel", actor_user_id)
        reason = (reason or "").strip()
        if not reason:
            raise SchedulingValidationError("A cancellation reason is required")
        changes = {"cancel_reason": reason, "cancelled_by": role}
        if booking.status == "alternative_proposed":
            changes.update(alternative_start_time=None, alternative_end_time=None, alternative_expires_at=None)
        return self._transition(booking, "cancel", actor_user_id, now, changes, note=reason)

    def start_booking(
        self,
        booking_id: str,
        vendor_id: str,
        force: bool = False,
        now: Optional[datetime] = None,
    ) -> Booking:
        now = resolve_now(now)
        booking, _ = self._authorize(booking_id, "start", vendor_id)
        if not force and now < booking.requested_start_time:
            raise SchedulingValidationError("Booking cannot be started before its start time")
        note = "service started early by vendor" if now < booking.requested_start_time else None
        return self._transition(booking, "start", vendor_id, now, {"started_at": now}, note=note)

    def complete_booking(self, booking_id: str, vendor_id: str, now: Optional[datetime] = None) -> Booking:
        now = resolve_now(now)
        booking, _ = self._authorize(booking_id, "complete", vendor_id)
        return self._transition(booking, "complete", vendor_id, now, {"completed_at": now})

    def expire_alternatives(self, now: Optional[datetime] = None) -> List[Booking]:
        now = resolve_now(now)
        expired = self.bookings.expire_alternatives(now)
        for booking in expired:
            logger.info("booking %s: alternative_proposed -> alternative_expired by system", booking.id)
            self.events.dispatch("expire_alternative", booking)
        return expired

    def _require_party(self, booking_id: str, actor_user_id: str) -> Booking:
        booking = self.bookings.get_booking(booking_id)
        if not _actor_roles(booking, actor_user_id):
            raise SchedulingPermissionError("Only the booking's customer or vendor can view it")
        return booking

    def get_booking(self, booking_id: str, actor_user_id: str) -> BookingView:
        booking = self._require_party(booking_id, actor_user_id)
        return BookingView(
            **booking.model_dump(),
            queue_position=self.queue.position_of(booking),
            available_actions=allowed_actions(booking.status, _actor_roles(booking, actor_user_id)),
        )

    def get_history(self, booking_id: str, actor_user_id: str) -> List[BookingStatusHistoryEntry]:
        self._require_party(booking_id, actor_user_id)
        return self.bookings.list_history(booking_id)

    def get_chat_context(self, booking_id: str, actor_user_id: str) -> BookingChatContext:
        booking = self._require_party(booking_id, actor_user_id)
        return BookingChatContext(
            booking_id=booking.id,
            customer_id=booking.customer_id,
            vendor_id=booking.vendor_id,
        )

    def _page(self, status: Optional[str], limit: int, offset: int) -> Tuple[Optional[str], int, int]:
        if status is not None and status not in BOOKING_STATUSES:
            raise SchedulingValidationError(f"Invalid status. Allowed: {', '.join(BOOKING_STATUSES)}")
        if limit < 1 or offset < 0:
            raise SchedulingValidationError("limit must be >= 1 and offset >= 0")
        return status, min(limit, BOOKING_PAGE_SIZE_MAX), offset

    def list_customer_bookings(
        self,
        customer_id: str,
        actor_user_id: str,
        status: Optional[str] = None,
        start_from: Optional[datetime] = None,
        start_to: Optional[datetime] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> List[Booking]:
        if actor_user_id != customer_id:
            raise SchedulingPermissionError("Customers can only list their own bookings")
        status, limit, offset = self._page(status, limit, offset)
        return self.bookings.list_bookings(
            customer_id=customer_id,
            status=status,
            start_from=start_from,
            start_to=start_to,
            limit=limit,
            offset=offset,
        )

    def list_vendor_bookings(
        self,
        vendor_id: str,
        actor_user_id: str,
        status: Optional[str] = None,
        start_from: Optional[datetime] = None,
        start_to: Optional[datetime] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> List[Booking]:
        if actor_user_id != vendor_id:
            raise SchedulingPermissionError("Vendors can only list their own bookings")
        status, limit, offset = self._page(status, limit, offset)
        return self.bookings.list_bookings(
            vendor_id=vendor_id,
            status=status,
            start_from=start_from,
            start_to=start_to,
            limit=limit,
            offset=offset,
        )

    def pending_count(self, vendor_id: str, actor_user_id: str) -> int:
        if actor_user_id != vendor_id:
            raise SchedulingPermissionError("Vendors can only view their own pending requests")
        return self.bookings.count_pending_for_vendor(vendor_id)


booking_lifecycle = BookingLifecycle(
    catalog=catalog_store,
    availability=availability_store,
    bookings=booking_store,
    prices=price_calculator,
    queue=queue_resolver,
    events=booking_events,
)
