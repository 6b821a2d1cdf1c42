import json
import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import Dict, List, Optional
from uuid import uuid4
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.config import DEFAULT_CONFLICT_SCOPE, SCHEDULING_DB_PATH
from app.models import (
    AvailabilitySettings,
    AvailabilitySettingsUpdate,
    CalendarBlock,
    CalendarBlockCreateRequest,
    CalendarBlockUpdateRequest,
    WorkingHoursRange,
)
from app.services.clock import WEEKDAY_KEYS, ensure_utc, from_db, parse_wall_clock, to_db, utc_now
from app.services.errors import (
    SchedulingNotFoundError,
    SchedulingPermissionError,
    SchedulingValidationError,
)

logger = logging.getLogger(__name__)


def default_settings(vendor_id: str) -> AvailabilitySettings:
    return AvailabilitySettings(
        vendor_id=vendor_id,
        default_working_hours={},
        timezone="UTC",
        min_booking_notice_hours=24,
        max_booking_advance_days=90,
        conflict_scope=DEFAULT_CONFLICT_SCOPE,
    )


def normalize_working_hours(
    working_hours: Dict[str, List[WorkingHoursRange]],
) -> Dict[str, List[WorkingHoursRange]]:
    """Validate weekday keys and ranges; returns each day's ranges sorted by start."""
    normalized: Dict[str, List[WorkingHoursRange]] = {}
    for raw_day, ranges in working_hours.items():
        day = raw_day.strip().lower()[:3]
        if day not in WEEKDAY_KEYS:
            raise SchedulingValidationError(f"Invalid weekday {raw_day!r}; expected one of {', '.join(WEEKDAY_KEYS)}")
        if day in normalized:
            raise SchedulingValidationError(f"Weekday {day} given more than once")
        parsed = []
        for item in ranges:
            try:
                start = parse_wall_clock(item.start)
                end = parse_wall_clock(item.end)
            except ValueError as exc:
                raise SchedulingValidationError(str(exc)) from exc
            if start >= end:
                raise SchedulingValidationError(f"Working hours on {day} must end after they start")
            parsed.append((start, end, item))
        parsed.sort(key=lambda entry: entry[0])
        for previous, current in zip(parsed, parsed[1:]):
            if current[0] < previous[1]:
                raise SchedulingValidationError(f"Working hours on {day} overlap")
        if parsed:
            normalized[day] = [
                WorkingHoursRange(start=item.start.strip(), end=item.end.strip()) for _, _, item in parsed
            ]
    return normalized


@dataclass
class AvailabilityStore:
    db_path: str

    def __post_init__(self) -> None:
        self._lock = Lock()
        path = Path(self.db_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.db_path = str(path)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._lock:
            with self._connect() as conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS availability_settings (
                        vendor_id TEXT PRIMARY KEY,
                        working_hours_json TEXT NOT NULL DEFAULT '{}',
                        timezone TEXT NOT NULL DEFAULT 'UTC',
                        min_booking_notice_hours INTEGER NOT NULL,
                        max_booking_advance_days INTEGER NOT NULL,
                        conflict_scope TEXT NOT NULL DEFAULT 'service',
                        updated_at TEXT NOT NULL
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS calendar_blocks (
                        id TEXT PRIMARY KEY,
                        vendor_id TEXT NOT NULL,
                        service_id TEXT,
                        start_time TEXT NOT NULL,
                        end_time TEXT NOT NULL,
                        reason TEXT NOT NULL DEFAULT '',
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                    """
                )
                conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_calendar_blocks_vendor ON calendar_blocks (vendor_id, start_time)"
                )
                conn.commit()

    def _row_to_settings(self, row: sqlite3.Row) -> AvailabilitySettings:
        try:
            raw_hours = json.loads(row["working_hours_json"] or "{}")
        except json.JSONDecodeError:
            logger.warning("Discarding unreadable working hours for vendor %s", row["vendor_id"])
            raw_hours = {}
        working_hours = {
            day: [WorkingHoursRange(**item) for item in ranges]
            for day, ranges in raw_hours.items()
            if isinstance(ranges, list)
        }
        return AvailabilitySettings(
            vendor_id=row["vendor_id"],
            default_working_hours=working_hours,
            timezone=row["timezone"],
            min_booking_notice_hours=row["min_booking_notice_hours"],
            max_booking_advance_days=row["max_booking_advance_days"],
            conflict_scope=row["conflict_scope"],
            updated_at=from_db(row["updated_at"]),
        )

    def _row_to_block(self, row: sqlite3.Row) -> CalendarBlock:
        return CalendarBlock(
            id=row["id"],
            vendor_id=row["vendor_id"],
            service_id=row["service_id"],
            start_time=from_db(row["start_time"]),
            end_time=from_db(row["end_time"]),
            reason=row["reason"],
            created_at=from_db(row["created_at"]),
            updated_at=from_db(row["updated_at"]),
        )

    def get_settings(self, vendor_id: str) -> AvailabilitySettings:
        with self._lock:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT * FROM availability_settings WHERE vendor_id = ?",
                    (vendor_id,),
                ).fetchone()
        if not row:
            return default_settings(vendor_id)
        return self._row_to_settings(row)

    def upsert_settings(self, vendor_id: str, patch: AvailabilitySettingsUpdate) -> AvailabilitySettings:
        if patch.actor_user_id != vendor_id:
            raise SchedulingPermissionError("Only the vendor can change their availability")
        try:
            ZoneInfo(patch.timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise SchedulingValidationError(f"Unknown timezone {patch.timezone!r}") from exc

        settings = AvailabilitySettings(
            vendor_id=vendor_id,
            default_working_hours=normalize_working_hours(patch.default_working_hours),
            timezone=patch.timezone,
            min_booking_notice_hours=patch.min_booking_notice_hours,
            max_booking_advance_days=patch.max_booking_advance_days,
            conflict_scope=patch.conflict_scope or DEFAULT_CONFLICT_SCOPE,
            updated_at=utc_now(),
        )
        hours_json = json.dumps(
            {day: [item.model_dump() for item in ranges] for day, ranges in settings.default_working_hours.items()}
        )
        with self._lock:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO availability_settings (
                        vendor_id, working_hours_json, timezone, min_booking_notice_hours,
                        max_booking_advance_days, conflict_scope, updated_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(vendor_id) DO UPDATE SET
                        working_hours_json = excluded.working_hours_json,
                        timezone = excluded.timezone,
                        min_booking_notice_hours = excluded.min_booking_notice_hours,
                        max_booking_advance_days = excluded.max_booking_advance_days,
                        conflict_scope = excluded.conflict_scope,
                        updated_at = excluded.updated_at
                    """,
                    (
                        vendor_id,
                        hours_json,
                        settings.timezone,
                        settings.min_booking_notice_hours,
                        settings.max_booking_advance_days,
                        settings.conflict_scope,
                        to_db(settings.updated_at),
                    ),
                )
                conn.commit()
        logger.info("Availability settings saved for vendor %s", vendor_id)
        return settings

    def list_blocks(
        self,
        vendor_id: str,
        range_start: datetime,
        range_end: datetime,
        service_id: Optional[str] = None,
    ) -> List[CalendarBlock]:
        if ensure_utc(range_end) <= ensure_utc(range_start):
            raise SchedulingValidationError("range_end must be after range_start")
        query = """
            SELECT * FROM calendar_blocks
            WHERE vendor_id = ? AND start_time < ? AND end_time > ?
        """
        params: List[object] = [vendor_id, to_db(range_end), to_db(range_start)]
        if service_id:
            query += " AND (service_id IS NULL OR service_id = ?)"
            params.append(service_id)
        query += " ORDER BY start_time"
        with self._lock:
            with self._connect() as conn:
                rows = conn.execute(query, tuple(params)).fetchall()
        return [self._row_to_block(row) for row in rows]

    def get_block(self, block_id: str) -> CalendarBlock:
        with self._lock:
            with self._connect() as conn:
                row = conn.execute("SELECT * FROM calendar_blocks WHERE id = ?", (block_id,)).fetchone()
        if not row:
            raise SchedulingNotFoundError("Calendar block not found")
        return self._row_to_block(row)

    def create_block(self, vendor_id: str, request: CalendarBlockCreateRequest) -> CalendarBlock:
        if request.actor_user_id != vendor_id:
            raise SchedulingPermissionError("Only the vendor can block their own calendar")
        start_time = ensure_utc(request.start_time)
        end_time = ensure_utc(request.end_time)
        if end_time <= start_time:
            raise SchedulingValidationError("Block end_time must be after start_time")

        now = utc_now()
        block = CalendarBlock(
            id=f"blk_{uuid4().hex[:10]}",
            vendor_id=vendor_id,
            service_id=request.service_id or None,
            start_time=start_time,
            end_time=end_time,
            reason=request.reason,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO calendar_blocks (id, vendor_id, service_id, start_time, end_time, reason, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        block.id,
                        block.vendor_id,
                        block.service_id,
                        to_db(block.start_time),
                        to_db(block.end_time),
                        block.reason,
                        to_db(block.created_at),
                        to_db(block.updated_at),
                    ),
                )
                conn.commit()
        return block

    def update_block(self, block_id: str, vendor_id: str, patch: CalendarBlockUpdateRequest) -> CalendarBlock:
        if patch.actor_user_id != vendor_id:
            raise SchedulingPermissionError("Only the vendor can edit their calendar")
        current = self.get_block(block_id)
        if current.vendor_id != vendor_id:
            raise SchedulingPermissionError("Calendar block belongs to another vendor")

        changes = patch.model_fields_set
        updated = current.model_copy(
            update={
                "service_id": (patch.service_id or None) if "service_id" in changes else current.service_id,
                "start_time": ensure_utc(patch.start_time) if patch.start_time else current.start_time,
                "end_time": ensure_utc(patch.end_time) if patch.end_time else current.end_time,
                "reason": patch.reason if patch.reason is not None else current.reason,
                "updated_at": utc_now(),
            }
        )
        if updated.end_time <= updated.start_time:
            raise SchedulingValidationError("Block end_time must be after start_time")

        with self._lock:
            with self._connect() as conn:
                cursor = conn.execute(
                    """
                    UPDATE calendar_blocks
                    SET service_id = ?, start_time = ?, end_time = ?, reason = ?, updated_at = ?
                    WHERE id = ? AND vendor_id = ?
                    """,
                    (
                        updated.service_id,
                        to_db(updated.start_time),
                        to_db(updated.end_time),
                        updated.reason,
                        to_db(updated.updated_at),
                        block_id,
                        vendor_id,
                    ),
                )
                conn.commit()
        if cursor.rowcount != 1:
            raise SchedulingNotFoundError("Calendar block not found")
        return updated

    def delete_block(self, block_id: str, vendor_id: str) -> None:
        current = self.get_block(block_id)
        if current.vendor_id != vendor_id:
            raise SchedulingPermissionError("Calendar block belongs to another vendor")
        with self._lock:
            with self._connect() as conn:
                cursor = conn.execute(
                    "DELETE FROM calendar_blocks WHERE id = ? AND vendor_id = ?",
                    (block_id, vendor_id),
                )
                conn.commit()
        if cursor.rowcount != 1:
            raise SchedulingNotFoundError("Calendar block not found")


availability_store = AvailabilityStore(db_path=SCHEDULING_DB_PATH)
