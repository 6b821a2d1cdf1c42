import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from app.models import Booking
from app.services.catalog_store import CatalogStore, catalog_store
from app.services.notification_store import NotificationStore, notification_store
from app.services.payment_queue import PaymentQueue, payment_queue

logger = logging.getLogger(__name__)

# action -> (recipient role, title, body template)
BOOKING_MESSAGES: Dict[str, Tuple[str, str, str]] = {
    "request": ("vendor", "New Booking Request", 'You have a new booking request for "{service}"'),
    "accept": ("customer", "Booking Confirmed", 'Your booking for "{service}" has been confirmed'),
    "reject": (
        "customer",
        "Booking Declined",
        'Unfortunately, your booking for "{service}" could not be accepted',
    ),
    "propose_alternative": (
        "customer",
        "Alternative Time Proposed",
        'The vendor has proposed an alternative time for "{service}"',
    ),
    "accept_alternative": (
        "vendor",
        "Alternative Time Accepted",
        'The customer accepted your proposed time for "{service}"',
    ),
    "expire_alternative": (
        "vendor",
        "Alternative Time Expired",
        'Your proposed time for "{service}" was not accepted in time',
    ),
    "start": ("customer", "Booking Started", 'Your booking for "{service}" is now in progress'),
    "complete": (
        "customer",
        "Booking Completed",
        'Your booking for "{service}" has been completed. Leave a review!',
    ),
    "cancel": ("counterpart", "Booking Cancelled", 'A booking for "{service}" has been cancelled'),
}

PAYMENT_ACTIONS = {"accept", "accept_alternative"}


@dataclass
class BookingEventDispatcher:
    """Runs the side effects of a committed transition.

    Nothing raised here reaches the caller: the booking is already committed
    and its state stands regardless of delivery.
    """

    notifications: NotificationStore
    payments: PaymentQueue
    catalog: CatalogStore

    def _service_title(self, booking: Booking) -> str:
        try:
            return self.catalog.get_service(booking.service_id).title
        except Exception:
            logger.exception("Could not resolve service title for booking %s", booking.id)
            return "your service"

    def _recipient(self, role: str, booking: Booking, actor_user_id: Optional[str]) -> str:
        if role == "customer":
            return booking.customer_id
        if role == "vendor":
            return booking.vendor_id
        return booking.vendor_id if actor_user_id == booking.customer_id else booking.customer_id

    def dispatch(self, action: str, booking: Booking, actor_user_id: Optional[str] = None) -> None:
        message = BOOKING_MESSAGES.get(action)
        if message is not None:
            role, title, template = message
            try:
                self.notifications.create(
                    user_id=self._recipient(role, booking, actor_user_id),
                    title=title,
                    body=template.format(service=self._service_title(booking)),
                    category="booking",
                    deep_link=f"/bookings/{booking.id}",
                    booking_id=booking.id,
                )
            except Exception:
                logger.exception("Booking notification failed for %s (%s)", booking.id, action)

        if action in PAYMENT_ACTIONS:
            try:
                payment = self.payments.enqueue(booking)
                logger.info("Queued payment %s for booking %s", payment.id, booking.id)
            except Exception:
                logger.exception("Payment hand-off failed for booking %s", booking.id)


booking_events = BookingEventDispatcher(
    notifications=notification_store,
    payments=payment_queue,
    catalog=catalog_store,
)
