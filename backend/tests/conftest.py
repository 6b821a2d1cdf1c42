import os
import sys
import tempfile
from types import SimpleNamespace

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

# The app builds its store singletons at import time; point them at a
# throwaway database before any test module imports app.main.
os.environ["SCHEDULING_DB_PATH"] = os.path.join(tempfile.mkdtemp(prefix="slotmarket-tests-"), "scheduling.sqlite3")
os.environ.pop("FIREBASE_CREDENTIALS_PATH", None)

from app.models import (  # noqa: E402
    AvailabilitySettingsUpdate,
    PricingOptionCreateRequest,
    ServiceListingCreateRequest,
    WorkingHoursRange,
)
from app.services.availability_store import AvailabilityStore  # noqa: E402
from app.services.booking_events import BookingEventDispatcher  # noqa: E402
from app.services.booking_lifecycle import BookingLifecycle  # noqa: E402
from app.services.booking_store import BookingStore  # noqa: E402
from app.services.catalog_store import CatalogStore  # noqa: E402
from app.services.notification_store import NotificationStore  # noqa: E402
from app.services.payment_queue import PaymentQueue  # noqa: E402
from app.services.price_calculator import PriceCalculator  # noqa: E402
from app.services.push_sender import PushSender  # noqa: E402
from app.services.queue_resolver import QueueResolver  # noqa: E402
from app.services.slot_engine import SlotEngine  # noqa: E402


@pytest.fixture
def scheduling(tmp_path):
    """A fully wired engine on its own sqlite file, plus small setup helpers."""
    db_path = str(tmp_path / "scheduling.sqlite3")
    catalog = CatalogStore(db_path=db_path)
    availability = AvailabilityStore(db_path=db_path)
    bookings = BookingStore(db_path=db_path)
    prices = PriceCalculator(catalog=catalog, fee_percentage=lambda: 0.10)
    queue = QueueResolver(bookings=bookings)
    notifications = NotificationStore(sender=PushSender(credentials_path=""))
    payments = PaymentQueue()
    events = BookingEventDispatcher(notifications=notifications, payments=payments, catalog=catalog)
    lifecycle = BookingLifecycle(
        catalog=catalog,
        availability=availability,
        bookings=bookings,
        prices=prices,
        queue=queue,
        events=events,
    )
    slots = SlotEngine(catalog=catalog, availability=availability, bookings=bookings)

    def make_service(vendor_id="vendor_1", **overrides):
        fields = {"vendor_id": vendor_id, "title": "Dog grooming", "price": 50.0, "price_unit": "hour"}
        fields.update(overrides)
        return catalog.create_service(ServiceListingCreateRequest(**fields))

    def add_option(service, **overrides):
        fields = {"actor_user_id": service.vendor_id, "label": "Standard", "price": 80.0}
        fields.update(overrides)
        return catalog.add_pricing_option(service.id, PricingOptionCreateRequest(**fields))

    def set_hours(vendor_id="vendor_1", hours=None, **overrides):
        hours = hours if hours is not None else {"mon": [("09:00", "12:00")]}
        fields = {
            "actor_user_id": vendor_id,
            "default_working_hours": {
                day: [WorkingHoursRange(start=start, end=end) for start, end in ranges]
                for day, ranges in hours.items()
            },
            "timezone": "UTC",
            "min_booking_notice_hours": 24,
            "max_booking_advance_days": 90,
        }
        fields.update(overrides)
        return availability.upsert_settings(vendor_id, AvailabilitySettingsUpdate(**fields))

    return SimpleNamespace(
        catalog=catalog,
        availability=availability,
        bookings=bookings,
        prices=prices,
        queue=queue,
        notifications=notifications,
        payments=payments,
        lifecycle=lifecycle,
        slots=slots,
        make_service=make_service,
        add_option=add_option,
        set_hours=set_hours,
    )
