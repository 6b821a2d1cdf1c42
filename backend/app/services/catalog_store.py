import json
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from threading import Lock
from typing import List, Optional
from uuid import uuid4

from app.config import SCHEDULING_DB_PATH
from app.models import (
    PriceListItem,
    PricingOption,
    PricingOptionCreateRequest,
    ServiceListing,
    ServiceListingCreateRequest,
)
from app.services.clock import to_db, utc_now
from app.services.errors import (
    SchedulingNotFoundError,
    SchedulingPermissionError,
    SchedulingValidationError,
)


@dataclass
class CatalogStore:
    """Service listings and their pricing options, as seen by the booking engine."""

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
                    CREATE TABLE IF NOT EXISTS catalog_services (
                        id TEXT PRIMARY KEY,
                        vendor_id TEXT NOT NULL,
                        title TEXT NOT NULL,
                        status TEXT NOT NULL DEFAULT 'active',
                        price_type TEXT NOT NULL DEFAULT 'fixed',
                        price REAL,
                        price_unit TEXT NOT NULL DEFAULT 'job',
                        price_text TEXT,
                        price_list_json TEXT NOT NULL DEFAULT '[]',
                        currency TEXT,
                        default_duration_minutes INTEGER,
                        weekend_surcharge_percent REAL NOT NULL DEFAULT 0,
                        created_at TEXT NOT NULL
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS catalog_pricing_options (
                        id TEXT PRIMARY KEY,
                        service_id TEXT NOT NULL,
                        label TEXT NOT NULL,
                        price REAL NOT NULL,
                        currency TEXT,
                        billing_interval TEXT NOT NULL,
                        duration_minutes INTEGER,
                        created_at TEXT NOT NULL
                    )
                    """
                )
                conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_catalog_services_vendor ON catalog_services (vendor_id)"
                )
                conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_catalog_options_service ON catalog_pricing_options (service_id)"
                )
                conn.commit()

    def _row_to_service(self, row: sqlite3.Row) -> ServiceListing:
        try:
            raw_items = json.loads(row["price_list_json"] or "[]")
        except json.JSONDecodeError:
            raw_items = []
        items = [PriceListItem(**item) for item in raw_items if isinstance(item, dict)]
        return ServiceListing(
            id=row["id"],
            vendor_id=row["vendor_id"],
            title=row["title"],
            status=row["status"],
            price_type=row["price_type"],
            price=row["price"],
            price_unit=row["price_unit"],
            price_text=row["price_text"],
            price_list=items,
            currency=row["currency"],
            default_duration_minutes=row["default_duration_minutes"],
            weekend_surcharge_percent=row["weekend_surcharge_percent"] or 0.0,
        )

    def _row_to_option(self, row: sqlite3.Row) -> PricingOption:
        return PricingOption(
            id=row["id"],
            service_id=row["service_id"],
            label=row["label"],
            price=row["price"],
            currency=row["currency"],
            billing_interval=row["billing_interval"],
            duration_minutes=row["duration_minutes"],
        )

    def create_service(self, request: ServiceListingCreateRequest) -> ServiceListing:
        if not request.title.strip():
            raise SchedulingValidationError("title is required")
        if request.price_type == "fixed" and request.price is None:
            raise SchedulingValidationError("Price is required for fixed pricing")
        if request.price_type == "text" and not (request.price_text or "").strip():
            raise SchedulingValidationError("Price text is required for text pricing")
        if request.price_type == "list" and not request.price_list:
            raise SchedulingValidationError("At least one price list item is required for list pricing")

        service = ServiceListing(
            id=f"svc_{uuid4().hex[:10]}",
            vendor_id=request.vendor_id,
            title=request.title.strip(),
            status=request.status,
            price_type=request.price_type,
            price=request.price,
            price_unit=request.price_unit,
            price_text=request.price_text,
            price_list=request.price_list,
            currency=request.currency.upper() if request.currency else None,
            default_duration_minutes=request.default_duration_minutes,
            weekend_surcharge_percent=request.weekend_surcharge_percent,
        )
        with self._lock:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO catalog_services (
                        id, vendor_id, title, status, price_type, price, price_unit, price_text,
                        price_list_json, currency, default_duration_minutes, weekend_surcharge_percent, created_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        service.id,
                        service.vendor_id,
                        service.title,
                        service.status,
                        service.price_type,
                        service.price,
                        service.price_unit,
                        service.price_text,
                        json.dumps([item.model_dump() for item in service.price_list]),
                        service.currency,
                        service.default_duration_minutes,
                        service.weekend_surcharge_percent,
                        to_db(utc_now()),
                    ),
                )
                conn.commit()
        return service

    def get_service(self, service_id: str) -> ServiceListing:
        with self._lock:
            with self._connect() as conn:
                row = conn.execute("SELECT * FROM catalog_services WHERE id = ?", (service_id,)).fetchone()
        if not row:
            raise SchedulingNotFoundError("Service not found")
        return self._row_to_service(row)

    def list_vendor_services(self, vendor_id: str) -> List[ServiceListing]:
        with self._lock:
            with self._connect() as conn:
                rows = conn.execute(
                    "SELECT * FROM catalog_services WHERE vendor_id = ? ORDER BY created_at",
                    (vendor_id,),
                ).fetchall()
        return [self._row_to_service(row) for row in rows]

    def add_pricing_option(self, service_id: str, request: PricingOptionCreateRequest) -> PricingOption:
        service = self.get_service(service_id)
        if service.vendor_id != request.actor_user_id:
            raise SchedulingPermissionError("Only the service owner can add pricing options")
        if not request.label.strip():
            raise SchedulingValidationError("label is required")

        option = PricingOption(
            id=f"opt_{uuid4().hex[:10]}",
            service_id=service_id,
            label=request.label.strip(),
            price=request.price,
            currency=request.currency.upper() if request.currency else None,
            billing_interval=request.billing_interval,
            duration_minutes=request.duration_minutes,
        )
        with self._lock:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO catalog_pricing_options (
                        id, service_id, label, price, currency, billing_interval, duration_minutes, created_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        option.id,
                        option.service_id,
                        option.label,
                        option.price,
                        option.currency,
                        option.billing_interval,
                        option.duration_minutes,
                        to_db(utc_now()),
                    ),
                )
                conn.commit()
        return option

    def get_pricing_option(self, service_id: str, pricing_option_id: str) -> Optional[PricingOption]:
        with self._lock:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT * FROM catalog_pricing_options WHERE id = ? AND service_id = ?",
                    (pricing_option_id, service_id),
                ).fetchone()
        return self._row_to_option(row) if row else None

    def list_pricing_options(self, service_id: str) -> List[PricingOption]:
        with self._lock:
            with self._connect() as conn:
                rows = conn.execute(
                    "SELECT * FROM catalog_pricing_options WHERE service_id = ? ORDER BY created_at",
                    (service_id,),
                ).fetchall()
        return [self._row_to_option(row) for row in rows]


catalog_store = CatalogStore(db_path=SCHEDULING_DB_PATH)
