from datetime import date
from typing import Optional

from fastapi import APIRouter, Header, Query

from app.auth import assert_actor_authorized
from app.models import (
    PricingOption,
    PricingOptionCreateRequest,
    ServiceListing,
    ServiceListingCreateRequest,
    Slot,
)
from app.routers.http_errors import raise_scheduling_http_error
from app.services.catalog_store import catalog_store
from app.services.errors import SchedulingError
from app.services.slot_engine import slot_engine

router = APIRouter(prefix="/catalog", tags=["catalog"])


@router.post("/services", response_model=ServiceListing)
def create_service(
    payload: ServiceListingCreateRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=payload.vendor_id, authorization=authorization, role="vendor")
    try:
        return catalog_store.create_service(payload)
    except SchedulingError as exc:
        raise_scheduling_http_error(exc)


@router.get("/vendors/{vendor_id}/services", response_model=list[ServiceListing])
def list_vendor_services(vendor_id: str):
    return catalog_store.list_vendor_services(vendor_id)


@router.get("/services/{service_id}", response_model=ServiceListing)
def get_service(service_id: str):
    try:
        return catalog_store.get_service(service_id)
    except SchedulingError as exc:
        raise_scheduling_http_error(exc)


@router.get("/services/{service_id}/pricing-options", response_model=list[PricingOption])
def list_pricing_options(service_id: str):
    try:
        catalog_store.get_service(service_id)
        return catalog_store.list_pricing_options(service_id)
    except SchedulingError as exc:
        raise_scheduling_http_error(exc)


@router.post("/services/{service_id}/pricing-options", response_model=PricingOption)
def add_pricing_option(
    service_id: str,
    payload: PricingOptionCreateRequest,
    authorization: Optional[str] = Header(default=None),
):
    assert_actor_authorized(actor_user_id=payload.actor_user_id, authorization=authorization, role="vendor")
    try:
        return catalog_store.add_pricing_option(service_id, payload)
    except SchedulingError as exc:
        raise_scheduling_http_error(exc)


@router.get("/services/{service_id}/slots", response_model=list[Slot])
def get_available_slots(
    service_id: str,
    date_: date = Query(..., alias="date"),
    duration: Optional[int] = Query(default=None, description="Slot length in minutes"),
    pricing_option_id: Optional[str] = Query(default=None),
):
    try:
        return slot_engine.get_available_slots(
            service_id,
            date_,
            duration_minutes=duration,
            pricing_option_id=pricing_option_id,
        )
    except SchedulingError as exc:
        raise_scheduling_http_error(exc)
