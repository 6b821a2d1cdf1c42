"""Slot computation.

``compute_available_slots`` is a pure function: working hours are laid out in
the vendor's local calendar, converted to absolute UTC instants, then cut into
fixed-length candidates and filtered against blocks, occupying bookings and the
notice/advance window. ``SlotEngine`` gathers those inputs from the stores.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, List, Optional, Tuple
from zoneinfo import ZoneInfo

from app.config import DEFAULT_SLOT_MINUTES
from app.models import AvailabilitySettings, Booking, CalendarBlock, Slot
from app.services.availability_store import AvailabilityStore, availability_store
from app.services.booking_store import OCCUPYING_STATUSES, BookingStore, booking_store
from app.services.catalog_store import CatalogStore, catalog_store
from app.services.clock import (
    WEEKDAY_KEYS,
    ensure_utc,
    intervals_overlap,
    parse_wall_clock,
    resolve_now,
)
from app.services.errors import SchedulingValidationError

logger = logging.getLogger(__name__)


def _local_instant(day: date, minutes: int, tz: ZoneInfo) -> datetime:
    # Wall-clock arithmetic first, then attach the zone so the offset is the one
    # in force at that local time (DST days are 23 or 25 hours long).
    local = (datetime.combine(day, time(0, 0)) + timedelta(minutes=minutes)).replace(tzinfo=tz)
    return local.astimezone(timezone.utc)


def working_windows(settings: AvailabilitySettings, query_date: date) -> List[Tuple[datetime, datetime]]:
    """Absolute UTC windows for the vendor's working hours on a local calendar date."""
    tz = ZoneInfo(settings.timezone)
    day_key = WEEKDAY_KEYS[query_date.weekday()]
    windows = []
    for item in settings.default_working_hours.get(day_key, []):
        start = _local_instant(query_date, parse_wall_clock(item.start), tz)
        end = _local_instant(query_date, parse_wall_clock(item.end), tz)
        if end > start:
            windows.append((start, end))
    return sorted(windows)


def compute_available_slots(
    settings: AvailabilitySettings,
    blocks: Iterable[CalendarBlock],
    occupying: Iterable[Booking],
    query_date: date,
    duration: timedelta,
    now: datetime,
    service_id: Optional[str] = None,
) -> List[Slot]:
    if duration <= timedelta(0):
        raise SchedulingValidationError("Slot duration must be positive")

    now = ensure_utc(now)
    earliest = now + timedelta(hours=settings.min_booking_notice_hours)
    latest = now + timedelta(days=settings.max_booking_advance_days)

    blocked = [
        (ensure_utc(block.start_time), ensure_utc(block.end_time))
        for block in blocks
        if block.service_id is None or service_id is None or block.service_id == service_id
    ]
    taken = [
        (ensure_utc(booking.requested_start_time), ensure_utc(booking.requested_end_time))
        for booking in occupying
        if booking.status in OCCUPYING_STATUSES
        and (settings.conflict_scope == "vendor" or service_id is None or booking.service_id == service_id)
    ]

    slots: List[Slot] = []
    for window_start, window_end in working_windows(settings, query_date):
        cursor = window_start
        while cursor + duration <= window_end:
            slot_end = cursor + duration
            if (
                earliest <= cursor <= latest
                and not any(intervals_overlap(cursor, slot_end, s, e) for s, e in blocked)
                and not any(intervals_overlap(cursor, slot_end, s, e) for s, e in taken)
            ):
                slots.append(Slot(start_time=cursor, end_time=slot_end))
            cursor = slot_end

    slots.sort(key=lambda slot: slot.start_time)
    return slots


@dataclass
class SlotEngine:
    catalog: CatalogStore
    availability: AvailabilityStore
    bookings: BookingStore

    def resolve_duration(
        self,
        service_id: str,
        duration_minutes: Optional[int] = None,
        pricing_option_id: Optional[str] = None,
    ) -> timedelta:
        if duration_minutes is not None:
            if duration_minutes <= 0:
                raise SchedulingValidationError("duration must be a positive number of minutes")
            return timedelta(minutes=duration_minutes)
        if pricing_option_id:
            option = self.catalog.get_pricing_option(service_id, pricing_option_id)
            if option is None:
                raise SchedulingValidationError("Pricing option not found for this service")
            if option.duration_minutes:
                return timedelta(minutes=option.duration_minutes)
        service = self.catalog.get_service(service_id)
        return timedelta(minutes=service.default_duration_minutes or DEFAULT_SLOT_MINUTES)

    def get_available_slots(
        self,
        service_id: str,
        query_date: date,
        duration_minutes: Optional[int] = None,
        pricing_option_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> List[Slot]:
        service = self.catalog.get_service(service_id)
        if service.status != "active":
            return []
        duration = self.resolve_duration(service_id, duration_minutes, pricing_option_id)
        settings = self.availability.get_settings(service.vendor_id)

        windows = working_windows(settings, query_date)
        if not windows:
            return []
        range_start = windows[0][0]
        range_end = max(end for _, end in windows)

        blocks = self.availability.list_blocks(service.vendor_id, range_start, range_end, service_id=service_id)
        scope_service = None if settings.conflict_scope == "vendor" else service_id
        occupying = self.bookings.list_occupying(service.vendor_id, scope_service, range_start, range_end)
        slots = compute_available_slots(
            settings,
            blocks,
            occupying,
            query_date,
            duration,
            resolve_now(now),
            service_id=service_id,
        )
        logger.debug("Computed %d slots for service %s on %s", len(slots), service_id, query_date.isoformat())
        return slots


slot_engine = SlotEngine(catalog=catalog_store, availability=availability_store, bookings=booking_store)
