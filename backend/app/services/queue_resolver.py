from dataclasses import dataclass
from typing import Optional

from app.models import Booking
from app.services.booking_store import BookingStore, booking_store


@dataclass
class QueueResolver:
    """Advisory position of a pending request among its competitors.

    Position counts earlier pending requests for the same vendor and service;
    it reserves nothing and has no bearing on which request a vendor accepts.
    """

    bookings: BookingStore

    def position_of(self, booking: Booking) -> Optional[int]:
        if booking.status != "pending":
            return None
        return self.bookings.count_pending_before(booking) + 1

    def get_queue_position(self, booking_id: str) -> Optional[int]:
        return self.position_of(self.bookings.get_booking(booking_id))


queue_resolver = QueueResolver(bookings=booking_store)
