import os
import sys
import threading
from datetime import datetime, timedelta, timezone

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from app.models import BookingRequest
from app.services.booking_store import BookingStore, ExclusiveWindow
from app.services.errors import (
    InvalidStateTransitionError,
    SchedulingConflictError,
    SchedulingNotFoundError,
)

NOW = datetime(2030, 1, 5, 8, 0, tzinfo=timezone.utc)


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def _pending(scheduling, customer, start=None):
    scheduling.set_hours()
    service = scheduling.catalog.list_vendor_services("vendor_1") or [scheduling.make_service()]
    start = start or utc(2030, 1, 7, 10)
    return scheduling.lifecycle.request_booking(
        BookingRequest(
            customer_id=customer,
            service_id=service[0].id,
            start_time=start,
            end_time=start + timedelta(hours=1),
        ),
        now=NOW,
    )


def test_commit_rejects_stale_expected_status(scheduling):
    booking = _pending(scheduling, "customer_1")

    with pytest.raises(InvalidStateTransitionError) as excinfo:
        scheduling.bookings.commit_transition(
            booking.id,
            action="complete",
            expected_status="in_progress",
            to_status="completed",
            actor_user_id="vendor_1",
            changes={"completed_at": NOW},
            updated_at=NOW,
        )

    assert excinfo.value.current_status == "pending"
    assert scheduling.bookings.get_booking(booking.id) == booking
    assert len(scheduling.bookings.list_history(booking.id)) == 1


def test_commit_overlap_check_leaves_no_trace(scheduling):
    first = _pending(scheduling, "customer_1")
    second = _pending(scheduling, "customer_2")
    scheduling.lifecycle.accept_booking(first.id, "vendor_1", now=NOW)

    window = ExclusiveWindow(
        vendor_id="vendor_1",
        service_id=second.service_id,
        start_time=second.requested_start_time,
        end_time=second.requested_end_time,
    )
    with pytest.raises(SchedulingConflictError):
        scheduling.bookings.commit_transition(
            second.id,
            action="accept",
            expected_status="pending",
            to_status="accepted",
            actor_user_id="vendor_1",
            changes={},
            updated_at=NOW,
            exclusive_window=window,
        )

    assert scheduling.bookings.get_booking(second.id).status == "pending"
    assert len(scheduling.bookings.list_history(second.id)) == 1


def test_commit_refuses_columns_outside_the_lifecycle(scheduling):
    booking = _pending(scheduling, "customer_1")

    with pytest.raises(ValueError):
        scheduling.bookings.commit_transition(
            booking.id,
            action="accept",
            expected_status="pending",
            to_status="accepted",
            actor_user_id="vendor_1",
            changes={"customer_id": "someone_else"},
            updated_at=NOW,
        )
    with pytest.raises(SchedulingNotFoundError):
        scheduling.bookings.get_booking("bk_missing")


def test_concurrent_accepts_across_connections_admit_one(scheduling, tmp_path):
    bookings = [_pending(scheduling, f"customer_{i}") for i in range(6)]
    # A second store on the same file stands in for another worker process.
    other_store = BookingStore(db_path=str(tmp_path / "scheduling.sqlite3"))
    stores = [scheduling.bookings, other_store]

    barrier = threading.Barrier(len(bookings))
    outcomes = []
    outcome_lock = threading.Lock()

    def accept(index, booking):
        window = ExclusiveWindow(
            vendor_id="vendor_1",
            service_id=booking.service_id,
            start_time=booking.requested_start_time,
            end_time=booking.requested_end_time,
        )
        barrier.wait()
        try:
            stores[index % 2].commit_transition(
                booking.id,
                action="accept",
                expected_status="pending",
                to_status="accepted",
                actor_user_id="vendor_1",
                changes={},
                updated_at=NOW,
                exclusive_window=window,
            )
            result = "accepted"
        except SchedulingConflictError:
            result = "conflict"
        with outcome_lock:
            outcomes.append(result)

    threads = [threading.Thread(target=accept, args=(i, b)) for i, b in enumerate(bookings)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(outcomes) == ["accepted"] + ["conflict"] * 5
    statuses = [scheduling.bookings.get_booking(b.id).status for b in bookings]
    assert statuses.count("accepted") == 1
