import json
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Iterator, List, Optional
from uuid import uuid4

from app.config import SCHEDULING_DB_PATH
from app.models import Booking, BookingStatusHistoryEntry, PriceBreakdown
from app.services.clock import from_db, to_db
from app.services.errors import (
    InvalidStateTransitionError,
    SchedulingConflictError,
    SchedulingNotFoundError,
)

# Bookings in these states remove their window from slot computation and
# must never overlap each other within a conflict scope.
OCCUPYING_STATUSES = ("accepted", "alternative_accepted", "in_progress")

_DATETIME_COLUMNS = {
    "requested_start_time",
    "requested_end_time",
    "alternative_start_time",
    "alternative_end_time",
    "alternative_expires_at",
    "created_at",
    "updated_at",
    "started_at",
    "completed_at",
}

_UPDATABLE_COLUMNS = _DATETIME_COLUMNS | {
    "alternative_message",
    "vendor_notes",
    "cancel_reason",
    "cancelled_by",
    "reject_reason",
}


@dataclass(frozen=True)
class ExclusiveWindow:
    """A window that must be free of occupying bookings when a transition commits.

    ``service_id`` of ``None`` widens the check to every service of the vendor.
    """

    vendor_id: str
    service_id: Optional[str]
    start_time: datetime
    end_time: datetime


@dataclass
class BookingStore:
    db_path: str

    def __post_init__(self) -> None:
        self._lock = Lock()
        path = Path(self.db_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.db_path = str(path)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False, timeout=10)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        # BEGIN IMMEDIATE takes the database write lock up front, so the
        # read-check-write inside the block is serialized across processes too.
        with self._lock:
            conn = self._connect()
            conn.isolation_level = None
            try:
                conn.execute("BEGIN IMMEDIATE")
                yield conn
                conn.execute("COMMIT")
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            finally:
                conn.close()

    def _init_db(self) -> None:
        with self._lock:
            with self._connect() as conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS bookings (
                        id TEXT PRIMARY KEY,
                        booking_number TEXT NOT NULL,
                        customer_id TEXT NOT NULL,
                        vendor_id TEXT NOT NULL,
                        service_id TEXT NOT NULL,
                        pricing_option_id TEXT,
                        requested_start_time TEXT NOT NULL,
                        requested_end_time TEXT NOT NULL,
                        status TEXT NOT NULL,
                        alternative_start_time TEXT,
                        alternative_end_time TEXT,
                        alternative_expires_at TEXT,
                        alternative_message TEXT,
                        customer_notes TEXT NOT NULL DEFAULT '',
                        vendor_notes TEXT,
                        cancel_reason TEXT,
                        cancelled_by TEXT,
                        reject_reason TEXT,
                        price_breakdown_json TEXT NOT NULL,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL,
                        started_at TEXT,
                        completed_at TEXT
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS booking_status_history (
                        id TEXT PRIMARY KEY,
                        booking_id TEXT NOT NULL,
                        actor_user_id TEXT NOT NULL,
                        from_status TEXT NOT NULL,
                        to_status TEXT NOT NULL,
                        note TEXT NOT NULL DEFAULT '',
                        created_at TEXT NOT NULL
                    )
                    """
                )
                conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_bookings_vendor_status ON bookings (vendor_id, service_id, status)"
                )
                conn.execute("CREATE INDEX IF NOT EXISTS idx_bookings_customer ON bookings (customer_id, created_at)")
                conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_booking_history_booking ON booking_status_history (booking_id, created_at)"
                )
                conn.commit()

    def _row_to_booking(self, row: sqlite3.Row) -> Booking:
        return Booking(
            id=row["id"],
            booking_number=row["booking_number"],
            customer_id=row["customer_id"],
            vendor_id=row["vendor_id"],
            service_id=row["service_id"],
            pricing_option_id=row["pricing_option_id"],
            requested_start_time=from_db(row["requested_start_time"]),
            requested_end_time=from_db(row["requested_end_time"]),
            status=row["status"],
            alternative_start_time=from_db(row["alternative_start_time"]),
            alternative_end_time=from_db(row["alternative_end_time"]),
            alternative_expires_at=from_db(row["alternative_expires_at"]),
            alternative_message=row["alternative_message"],
            customer_notes=row["customer_notes"] or "",
            vendor_notes=row["vendor_notes"],
            cancel_reason=row["cancel_reason"],
            cancelled_by=row["cancelled_by"],
            reject_reason=row["reject_reason"],
            price_breakdown=PriceBreakdown(**json.loads(row["price_breakdown_json"])),
            created_at=from_db(row["created_at"]),
            updated_at=from_db(row["updated_at"]),
            started_at=from_db(row["started_at"]),
            completed_at=from_db(row["completed_at"]),
        )

    def _insert_history(
        self,
        conn: sqlite3.Connection,
        booking_id: str,
        actor_user_id: str,
        from_status: str,
        to_status: str,
        note: str,
        created_at: datetime,
    ) -> None:
        conn.execute(
            """
            INSERT INTO booking_status_history (id, booking_id, actor_user_id, from_status, to_status, note, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (f"bsh_{uuid4().hex[:10]}", booking_id, actor_user_id, from_status, to_status, note, to_db(created_at)),
        )

    def _find_overlap(
        self,
        conn: sqlite3.Connection,
        window: ExclusiveWindow,
        exclude_booking_id: Optional[str] = None,
    ) -> Optional[sqlite3.Row]:
        query = f"""
            SELECT id FROM bookings
            WHERE vendor_id = ?
              AND status IN ({", ".join("?" for _ in OCCUPYING_STATUSES)})
              AND requested_start_time < ?
              AND requested_end_time > ?
        """
        params: List[Any] = [window.vendor_id, *OCCUPYING_STATUSES, to_db(window.end_time), to_db(window.start_time)]
        if window.service_id is not None:
            query += " AND service_id = ?"
            params.append(window.service_id)
        if exclude_booking_id:
            query += " AND id != ?"
            params.append(exclude_booking_id)
        return conn.execute(query + " LIMIT 1", tuple(params)).fetchone()

    def insert_booking(self, booking: Booking, note: str = "booking requested") -> Booking:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO bookings (
                    id, booking_number, customer_id, vendor_id, service_id, pricing_option_id,
                    requested_start_time, requested_end_time, status, customer_notes,
                    price_breakdown_json, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    booking.id,
                    booking.booking_number,
                    booking.customer_id,
                    booking.vendor_id,
                    booking.service_id,
                    booking.pricing_option_id,
                    to_db(booking.requested_start_time),
                    to_db(booking.requested_end_time),
                    booking.status,
                    booking.customer_notes,
                    booking.price_breakdown.model_dump_json(),
                    to_db(booking.created_at),
                    to_db(booking.updated_at),
                ),
            )
            self._insert_history(conn, booking.id, booking.customer_id, "none", booking.status, note, booking.created_at)
        return booking

    def get_booking(self, booking_id: str) -> Booking:
        with self._lock:
            with self._connect() as conn:
                row = conn.execute("SELECT * FROM bookings WHERE id = ?", (booking_id,)).fetchone()
        if not row:
            raise SchedulingNotFoundError("Booking not found")
        return self._row_to_booking(row)

    def commit_transition(
        self,
        booking_id: str,
        *,
        action: str,
        expected_status: str,
        to_status: str,
        actor_user_id: str,
        changes: Dict[str, Any],
        updated_at: datetime,
        note: str = "",
        exclusive_window: Optional[ExclusiveWindow] = None,
    ) -> Booking:
        """Compare-and-commit one status change.

        The row is only written if it is still in ``expected_status``; when an
        ``exclusive_window`` is given, the overlap check runs in the same
        write transaction and a hit raises ``SchedulingConflictError``.
        """
        unknown = set(changes) - _UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Columns not updatable through a transition: {sorted(unknown)}")

        with self._transaction() as conn:
            row = conn.execute("SELECT status FROM bookings WHERE id = ?", (booking_id,)).fetchone()
            if not row:
                raise SchedulingNotFoundError("Booking not found")
            if row["status"] != expected_status:
                raise InvalidStateTransitionError(row["status"], action)

            if exclusive_window is not None:
                clash = self._find_overlap(conn, exclusive_window, exclude_booking_id=booking_id)
                if clash:
                    raise SchedulingConflictError(
                        "Another booking was already accepted for an overlapping time; refresh and decide again"
                    )

            values = {
                column: to_db(value) if column in _DATETIME_COLUMNS else value for column, value in changes.items()
            }
            values["updated_at"] = to_db(updated_at)
            assignments = ", ".join(f"{column} = ?" for column in values)
            cursor = conn.execute(
                f"UPDATE bookings SET status = ?, {assignments} WHERE id = ? AND status = ?",
                (to_status, *values.values(), booking_id, expected_status),
            )
            if cursor.rowcount != 1:
                raise InvalidStateTransitionError(expected_status, action)
            self._insert_history(conn, booking_id, actor_user_id, expected_status, to_status, note, updated_at)
            updated = conn.execute("SELECT * FROM bookings WHERE id = ?", (booking_id,)).fetchone()
        return self._row_to_booking(updated)

    def expire_alternatives(self, now: datetime, actor_user_id: str = "system") -> List[Booking]:
        """Move every proposal past its deadline to ``alternative_expired``.

        Only rows still in ``alternative_proposed`` are touched, so repeated or
        concurrent runs converge on the same state.
        """
        expired: List[Booking] = []
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT id FROM bookings
                WHERE status = 'alternative_proposed' AND alternative_expires_at < ?
                ORDER BY alternative_expires_at
                """,
                (to_db(now),),
            ).fetchall()
            for row in rows:
                cursor = conn.execute(
                    """
                    UPDATE bookings
                    SET status = 'alternative_expired',
                        alternative_start_time = NULL,
                        alternative_end_time = NULL,
                        alternative_expires_at = NULL,
                        updated_at = ?
                    WHERE id = ? AND status = 'alternative_proposed'
                    """,
                    (to_db(now), row["id"]),
                )
                if cursor.rowcount != 1:
                    continue
                self._insert_history(
                    conn,
                    row["id"],
                    actor_user_id,
                    "alternative_proposed",
                    "alternative_expired",
                    "alternative proposal expired",
                    now,
                )
                updated = conn.execute("SELECT * FROM bookings WHERE id = ?", (row["id"],)).fetchone()
                expired.append(self._row_to_booking(updated))
        return expired

    def list_occupying(
        self,
        vendor_id: str,
        service_id: Optional[str],
        range_start: datetime,
        range_end: datetime,
    ) -> List[Booking]:
        query = f"""
            SELECT * FROM bookings
            WHERE vendor_id = ?
              AND status IN ({", ".join("?" for _ in OCCUPYING_STATUSES)})
              AND requested_start_time < ?
              AND requested_end_time > ?
        """
        params: List[Any] = [vendor_id, *OCCUPYING_STATUSES, to_db(range_end), to_db(range_start)]
        if service_id is not None:
            query += " AND service_id = ?"
            params.append(service_id)
        query += " ORDER BY requested_start_time"
        with self._lock:
            with self._connect() as conn:
                rows = conn.execute(query, tuple(params)).fetchall()
        return [self._row_to_booking(row) for row in rows]

    def count_pending_before(self, booking: Booking) -> int:
        with self._lock:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    SELECT COUNT(*) AS total FROM bookings
                    WHERE vendor_id = ? AND service_id = ? AND status = 'pending'
                      AND created_at < ? AND id != ?
                    """,
                    (booking.vendor_id, booking.service_id, to_db(booking.created_at), booking.id),
                ).fetchone()
        return int(row["total"])

    def count_pending_for_vendor(self, vendor_id: str) -> int:
        with self._lock:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT COUNT(*) AS total FROM bookings WHERE vendor_id = ? AND status = 'pending'",
                    (vendor_id,),
                ).fetchone()
        return int(row["total"])

    def list_bookings(
        self,
        *,
        customer_id: Optional[str] = None,
        vendor_id: Optional[str] = None,
        status: Optional[str] = None,
        start_from: Optional[datetime] = None,
        start_to: Optional[datetime] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> List[Booking]:
        clauses: List[str] = []
        params: List[Any] = []
        if customer_id:
            clauses.append("customer_id = ?")
            params.append(customer_id)
        if vendor_id:
            clauses.append("vendor_id = ?")
            params.append(vendor_id)
        if status:
            clauses.append("status = ?")
            params.append(status)
        if start_from:
            clauses.append("requested_start_time >= ?")
            params.append(to_db(start_from))
        if start_to:
            clauses.append("requested_start_time < ?")
            params.append(to_db(start_to))

        query = "SELECT * FROM bookings"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        with self._lock:
            with self._connect() as conn:
                rows = conn.execute(query, tuple(params)).fetchall()
        return [self._row_to_booking(row) for row in rows]

    def list_history(self, booking_id: str) -> List[BookingStatusHistoryEntry]:
        with self._lock:
            with self._connect() as conn:
                rows = conn.execute(
                    """
                    SELECT * FROM booking_status_history
                    WHERE booking_id = ?
                    ORDER BY created_at, rowid
                    """,
                    (booking_id,),
                ).fetchall()
        return [
            BookingStatusHistoryEntry(
                id=row["id"],
                booking_id=row["booking_id"],
                actor_user_id=row["actor_user_id"],
                from_status=row["from_status"],
                to_status=row["to_status"],
                note=row["note"],
                created_at=from_db(row["created_at"]),
            )
            for row in rows
        ]


booking_store = BookingStore(db_path=SCHEDULING_DB_PATH)
