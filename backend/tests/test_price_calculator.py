import os
import sys
from datetime import datetime, timezone

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from app.models import PriceListItem
from app.services.errors import SchedulingNotFoundError, SchedulingValidationError
from app.services.price_calculator import PriceCalculator, count_weekend_days


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def test_hourly_rate_rounds_partial_hours_up(scheduling):
    service = scheduling.make_service(price=50.0, price_unit="hour")

    breakdown = scheduling.prices.calculate_booking_price(service.id, None, utc(2030, 1, 7, 9), utc(2030, 1, 7, 11, 30))

    assert breakdown.calculation_method == "per_unit"
    assert breakdown.duration_units == 3
    assert breakdown.unit_label == "hour"
    assert breakdown.subtotal == pytest.approx(150.0)
    assert breakdown.platform_fee == pytest.approx(15.0)
    assert breakdown.total == pytest.approx(165.0)
    assert breakdown.currency == "CHF"
    assert breakdown.line_items[0].description == "3 hours @ 50.00 CHF/hour"


def test_hourly_pricing_option_overrides_service_price(scheduling):
    service = scheduling.make_service(price=999.0, price_unit="job")
    option = scheduling.add_option(service, label="Hourly", price=50.0, billing_interval="hourly", currency="eur")

    breakdown = scheduling.prices.calculate_booking_price(
        service.id, option.id, utc(2030, 1, 7, 9), utc(2030, 1, 7, 11, 30)
    )

    assert breakdown.duration_units == 3
    assert breakdown.subtotal == pytest.approx(150.0)
    assert breakdown.currency == "EUR"


def test_fixed_price_ignores_duration(scheduling):
    service = scheduling.make_service(price=120.0, price_unit="job")

    breakdown = scheduling.prices.calculate_booking_price(service.id, None, utc(2030, 1, 7, 9), utc(2030, 1, 7, 17))

    assert breakdown.calculation_method == "fixed"
    assert breakdown.duration_units == 1
    assert breakdown.subtotal == pytest.approx(120.0)
    assert breakdown.total == pytest.approx(132.0)


def test_text_pricing_needs_manual_quote(scheduling):
    service = scheduling.make_service(price=None, price_type="text", price_text="Depends on the coat")

    breakdown = scheduling.prices.calculate_booking_price(service.id, None, utc(2030, 1, 7, 9), utc(2030, 1, 7, 10))

    assert breakdown.calculation_method == "quote"
    assert breakdown.total is None
    assert breakdown.subtotal is None
    assert "Manual quote required" in breakdown.note
    assert "Depends on the coat" in breakdown.note


def test_itemized_pricing_sums_the_price_list(scheduling):
    service = scheduling.make_service(
        price=None,
        price_type="list",
        price_list=[PriceListItem(description="Wash", price=30.0), PriceListItem(description="Cut", price=45.0)],
    )

    breakdown = scheduling.prices.calculate_booking_price(service.id, None, utc(2030, 1, 7, 9), utc(2030, 1, 7, 10))

    assert breakdown.calculation_method == "fixed"
    assert [item.description for item in breakdown.line_items] == ["Wash", "Cut"]
    assert breakdown.base_price == pytest.approx(75.0)
    assert breakdown.subtotal == pytest.approx(75.0)
    assert breakdown.total == pytest.approx(82.5)

    option = scheduling.add_option(service, label="Wash and cut", price=70.0)
    breakdown = scheduling.prices.calculate_booking_price(service.id, option.id, utc(2030, 1, 7, 9), utc(2030, 1, 7, 10))
    assert breakdown.total == pytest.approx(77.0)


def test_itemized_pricing_bills_timed_items_per_unit(scheduling):
    service = scheduling.make_service(
        price=None,
        price_type="list",
        price_list=[
            PriceListItem(description="Call-out", price=20.0),
            PriceListItem(description="Labour", price=40.0, unit="hour"),
        ],
    )

    breakdown = scheduling.prices.calculate_booking_price(service.id, None, utc(2030, 1, 7, 9), utc(2030, 1, 7, 11, 30))

    assert breakdown.calculation_method == "per_unit"
    assert breakdown.duration_units == 3
    assert breakdown.unit_label == "hour"
    assert breakdown.line_items[1].description == "Labour: 3 hours @ 40.00 CHF/hour"
    assert breakdown.subtotal == pytest.approx(140.0)


def test_unknown_option_and_bad_range_are_rejected(scheduling):
    service = scheduling.make_service()
    other = scheduling.make_service(title="Other")
    foreign_option = scheduling.add_option(other)

    with pytest.raises(SchedulingValidationError):
        scheduling.prices.calculate_booking_price(service.id, foreign_option.id, utc(2030, 1, 7, 9), utc(2030, 1, 7, 10))
    with pytest.raises(SchedulingValidationError):
        scheduling.prices.calculate_booking_price(service.id, None, utc(2030, 1, 7, 10), utc(2030, 1, 7, 10))
    with pytest.raises(SchedulingNotFoundError):
        scheduling.prices.calculate_booking_price("svc_missing", None, utc(2030, 1, 7, 9), utc(2030, 1, 7, 10))


def test_weekend_surcharge_is_prorated_over_weekend_days(scheduling):
    service = scheduling.make_service(weekend_surcharge_percent=20.0)
    option = scheduling.add_option(service, label="Daily", price=100.0, billing_interval="daily")

    # Friday through Sunday: three days, two of them on the weekend.
    breakdown = scheduling.prices.calculate_booking_price(service.id, option.id, utc(2030, 1, 4), utc(2030, 1, 7))

    assert breakdown.duration_units == 3
    assert len(breakdown.surcharges) == 1
    assert breakdown.surcharges[0].amount == pytest.approx(40.0)
    assert breakdown.subtotal == pytest.approx(340.0)
    assert breakdown.total == pytest.approx(374.0)
    assert [item.type for item in breakdown.line_items] == ["per_unit", "surcharge"]


def test_weekly_and_monthly_units(scheduling):
    service = scheduling.make_service()
    weekly = scheduling.add_option(service, label="Weekly", price=200.0, billing_interval="weekly")
    monthly = scheduling.add_option(service, label="Monthly", price=500.0, billing_interval="monthly")

    assert scheduling.prices.calculate_booking_price(service.id, weekly.id, utc(2030, 1, 1), utc(2030, 1, 11)).duration_units == 2
    assert scheduling.prices.calculate_booking_price(service.id, monthly.id, utc(2030, 1, 1), utc(2030, 1, 31)).duration_units == 1


def test_fee_percentage_comes_from_configuration(scheduling):
    service = scheduling.make_service(price=100.0, price_unit="job")
    no_fee = PriceCalculator(catalog=scheduling.catalog, fee_percentage=lambda: 0.0)

    breakdown = no_fee.calculate_booking_price(service.id, None, utc(2030, 1, 7, 9), utc(2030, 1, 7, 10))

    assert breakdown.platform_fee == 0
    assert breakdown.total == pytest.approx(100.0)


def test_count_weekend_days():
    assert count_weekend_days(utc(2030, 1, 7), utc(2030, 1, 12)) == 0
    assert count_weekend_days(utc(2030, 1, 7), utc(2030, 1, 14)) == 2
