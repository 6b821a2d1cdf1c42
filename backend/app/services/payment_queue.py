from datetime import datetime, timezone
from threading import Lock
from typing import List, Optional
from uuid import uuid4

from app.models import Booking, PaymentRequest


class PaymentQueue:
    """Hand-off point to payment processing.

    Accepted bookings are queued with their frozen price breakdown; whether a
    payment later succeeds is not tracked here.
    """

    def __init__(self):
        self._lock = Lock()
        self._requests: List[PaymentRequest] = []

    def enqueue(self, booking: Booking, now: Optional[datetime] = None) -> PaymentRequest:
        breakdown = booking.price_breakdown
        request = PaymentRequest(
            id=f"pay_{uuid4().hex[:10]}",
            booking_id=booking.id,
            customer_id=booking.customer_id,
            vendor_id=booking.vendor_id,
            amount=breakdown.total,
            currency=breakdown.currency,
            price_breakdown=breakdown,
            created_at=now or datetime.now(timezone.utc),
        )
        with self._lock:
            self._requests.append(request)
        return request

    def list_for_booking(self, booking_id: str) -> List[PaymentRequest]:
        with self._lock:
            return [row for row in self._requests if row.booking_id == booking_id]


payment_queue = PaymentQueue()
