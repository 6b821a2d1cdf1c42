import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Tuple

from app.config import DEFAULT_CURRENCY, PLATFORM_FEE_PERCENTAGE
from app.models import PriceBreakdown, PriceLineItem, ServiceListing, Surcharge
from app.services.catalog_store import CatalogStore, catalog_store
from app.services.clock import ensure_utc
from app.services.errors import SchedulingValidationError

UNIT_LENGTHS = {
    "hourly": (timedelta(hours=1), "hour"),
    "daily": (timedelta(days=1), "day"),
    "weekly": (timedelta(days=7), "week"),
    "monthly": (timedelta(days=30), "month"),
    "yearly": (timedelta(days=365), "year"),
}

# Listing price units that bill by elapsed time; "job" and "consultation" are flat.
SERVICE_UNIT_INTERVALS = {
    "hour": "hourly",
    "day": "daily",
    "month": "monthly",
}


def _money(value: float) -> float:
    return round(value, 2)


def configured_fee_percentage() -> float:
    return PLATFORM_FEE_PERCENTAGE


def count_weekend_days(start: datetime, end: datetime) -> int:
    count = 0
    current = start
    while current < end:
        if current.weekday() >= 5:
            count += 1
        current += timedelta(days=1)
    return count


def _plural(label: str, quantity: int) -> str:
    return label if quantity == 1 else f"{label}s"


@dataclass
class PriceCalculator:
    catalog: CatalogStore
    fee_percentage: Callable[[], float] = field(default=configured_fee_percentage)

    def _weekend_surcharges(
        self,
        service: ServiceListing,
        start: datetime,
        end: datetime,
        base_cost: float,
    ) -> List[Surcharge]:
        percent = service.weekend_surcharge_percent
        if percent <= 0 or base_cost <= 0:
            return []
        weekend_days = count_weekend_days(start, end)
        if weekend_days == 0:
            return []
        total_days = max(1, math.ceil((end - start) / timedelta(days=1)))
        amount = _money(base_cost * (percent / 100) * (weekend_days / total_days))
        if amount <= 0:
            return []
        return [
            Surcharge(
                type="weekend",
                description=f"Weekend surcharge ({percent:g}%)",
                amount=amount,
                percentage=percent,
            )
        ]

    def _base_line(
        self,
        label: str,
        price: float,
        interval: str,
        start: datetime,
        end: datetime,
        currency: str,
        prefix: str = "",
    ) -> Tuple[int, Optional[str], PriceLineItem]:
        if interval == "one_time":
            line = PriceLineItem(description=label, quantity=1, unit_price=price, total=_money(price), type="base")
            return 1, None, line
        unit_length, unit_label = UNIT_LENGTHS[interval]
        units = max(1, math.ceil((end - start) / unit_length))
        line = PriceLineItem(
            description=f"{prefix}{units} {_plural(unit_label, units)} @ {price:.2f} {currency}/{unit_label}",
            quantity=units,
            unit_price=price,
            total=_money(price * units),
            type="per_unit",
        )
        return units, unit_label, line

    def calculate_booking_price(
        self,
        service_id: str,
        pricing_option_id: Optional[str],
        start_time: datetime,
        end_time: datetime,
    ) -> PriceBreakdown:
        start = ensure_utc(start_time)
        end = ensure_utc(end_time)
        if end <= start:
            raise SchedulingValidationError("end_time must be after start_time")

        service = self.catalog.get_service(service_id)
        if pricing_option_id:
            option = self.catalog.get_pricing_option(service_id, pricing_option_id)
            if option is None:
                raise SchedulingValidationError("Pricing option not found for this service")
            currency = option.currency or service.currency or DEFAULT_CURRENCY
            base_price = option.price
            lines = [self._base_line(option.label, option.price, option.billing_interval, start, end, currency)]
        else:
            currency = service.currency or DEFAULT_CURRENCY
            if service.price_type == "text":
                return PriceBreakdown(
                    currency=currency,
                    calculation_method="quote",
                    fee_percentage=self.fee_percentage(),
                    note=f"Manual quote required: {service.price_text}" if service.price_text else "Manual quote required",
                )
            if service.price_type == "list":
                if not service.price_list:
                    raise SchedulingValidationError("Itemized pricing has no items")
                # Items priced per hour, day or month bill over the booked range; anything else is flat.
                base_price = _money(sum(item.price for item in service.price_list))
                lines = [
                    self._base_line(
                        item.description,
                        item.price,
                        SERVICE_UNIT_INTERVALS.get((item.unit or "").strip().lower(), "one_time"),
                        start,
                        end,
                        currency,
                        prefix=f"{item.description}: ",
                    )
                    for item in service.price_list
                ]
            else:
                base_price = service.price or 0.0
                interval = SERVICE_UNIT_INTERVALS.get(service.price_unit, "one_time")
                lines = [self._base_line(service.title, base_price, interval, start, end, currency)]

        units, unit_label = max(((units, label) for units, label, _ in lines), key=lambda pair: pair[0])
        line_items: List[PriceLineItem] = [line for _, _, line in lines]
        base_cost = _money(sum(line.total for line in line_items))
        method = "per_unit" if any(line.type == "per_unit" for line in line_items) else "fixed"

        surcharges = self._weekend_surcharges(service, start, end, base_cost)
        for surcharge in surcharges:
            line_items.append(
                PriceLineItem(
                    description=surcharge.description,
                    quantity=1,
                    unit_price=surcharge.amount,
                    total=surcharge.amount,
                    type="surcharge",
                )
            )

        fee_percentage = self.fee_percentage()
        subtotal = _money(base_cost + sum(item.amount for item in surcharges))
        platform_fee = _money(subtotal * fee_percentage)
        return PriceBreakdown(
            base_price=base_price,
            duration_units=units,
            unit_label=unit_label,
            subtotal=subtotal,
            platform_fee=platform_fee,
            fee_percentage=fee_percentage,
            total=_money(subtotal + platform_fee),
            currency=currency,
            calculation_method=method,
            line_items=line_items,
            surcharges=surcharges,
        )


price_calculator = PriceCalculator(catalog=catalog_store)
