from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

BookingStatus = Literal[
    "pending",
    "accepted",
    "rejected",
    "alternative_proposed",
    "alternative_accepted",
    "alternative_expired",
    "in_progress",
    "completed",
    "cancelled",
]

ConflictScope = Literal["service", "vendor"]


class WorkingHoursRange(BaseModel):
    start: str = Field(description="Local wall-clock time, HH:MM")
    end: str = Field(description="Local wall-clock time, HH:MM; 24:00 closes at midnight")


class AvailabilitySettings(BaseModel):
    vendor_id: str
    default_working_hours: Dict[str, List[WorkingHoursRange]] = Field(default_factory=dict)
    timezone: str = "UTC"
    min_booking_notice_hours: int = Field(default=24, ge=0)
    max_booking_advance_days: int = Field(default=90, gt=0)
    conflict_scope: ConflictScope = "service"
    updated_at: Optional[datetime] = None


class AvailabilitySettingsUpdate(BaseModel):
    actor_user_id: str
    default_working_hours: Dict[str, List[WorkingHoursRange]] = Field(default_factory=dict)
    timezone: str = "UTC"
    min_booking_notice_hours: int = Field(default=24, ge=0)
    max_booking_advance_days: int = Field(default=90, gt=0)
    conflict_scope: Optional[ConflictScope] = None


class CalendarBlock(BaseModel):
    id: str
    vendor_id: str
    service_id: Optional[str] = None
    start_time: datetime
    end_time: datetime
    reason: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CalendarBlockCreateRequest(BaseModel):
    actor_user_id: str
    service_id: Optional[str] = None
    start_time: datetime
    end_time: datetime
    reason: str = ""


class CalendarBlockUpdateRequest(BaseModel):
    actor_user_id: str
    service_id: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    reason: Optional[str] = None


class Slot(BaseModel):
    start_time: datetime
    end_time: datetime


class PriceListItem(BaseModel):
    description: str
    price: float
    unit: Optional[str] = None


class ServiceListing(BaseModel):
    id: str
    vendor_id: str
    title: str
    status: Literal["active", "paused", "draft", "expired"] = "active"
    price_type: Literal["fixed", "list", "text"] = "fixed"
    price: Optional[float] = None
    price_unit: Literal["hour", "job", "consultation", "day", "month"] = "job"
    price_text: Optional[str] = None
    price_list: list[PriceListItem] = Field(default_factory=list)
    currency: Optional[str] = None
    default_duration_minutes: Optional[int] = None
    weekend_surcharge_percent: float = 0.0


class ServiceListingCreateRequest(BaseModel):
    vendor_id: str
    title: str
    status: Literal["active", "paused", "draft", "expired"] = "active"
    price_type: Literal["fixed", "list", "text"] = "fixed"
    price: Optional[float] = Field(default=None, ge=0)
    price_unit: Literal["hour", "job", "consultation", "day", "month"] = "job"
    price_text: Optional[str] = None
    price_list: list[PriceListItem] = Field(default_factory=list)
    currency: Optional[str] = None
    default_duration_minutes: Optional[int] = Field(default=None, gt=0)
    weekend_surcharge_percent: float = Field(default=0.0, ge=0)


class PricingOption(BaseModel):
    id: str
    service_id: str
    label: str
    price: float
    currency: Optional[str] = None
    billing_interval: Literal["one_time", "hourly", "daily", "weekly", "monthly", "yearly"]
    duration_minutes: Optional[int] = None


class PricingOptionCreateRequest(BaseModel):
    actor_user_id: str
    label: str
    price: float = Field(ge=0)
    currency: Optional[str] = None
    billing_interval: Literal["one_time", "hourly", "daily", "weekly", "monthly", "yearly"] = "one_time"
    duration_minutes: Optional[int] = Field(default=None, gt=0)


class PriceLineItem(BaseModel):
    description: str
    quantity: float
    unit_price: float
    total: float
    type: Literal["base", "per_unit", "surcharge"]


class Surcharge(BaseModel):
    type: Literal["weekend"]
    description: str
    amount: float
    percentage: float


class PriceBreakdown(BaseModel):
    base_price: Optional[float] = None
    duration_units: int = 1
    unit_label: Optional[str] = None
    subtotal: Optional[float] = None
    platform_fee: Optional[float] = None
    fee_percentage: float = 0.0
    total: Optional[float] = None
    currency: str
    calculation_method: Literal["fixed", "per_unit", "quote"]
    line_items: list[PriceLineItem] = Field(default_factory=list)
    surcharges: list[Surcharge] = Field(default_factory=list)
    note: Optional[str] = None


class PriceQuoteRequest(BaseModel):
    service_id: str
    pricing_option_id: Optional[str] = None
    start_time: datetime
    end_time: datetime


class Booking(BaseModel):
    id: str
    booking_number: str
    customer_id: str
    vendor_id: str
    service_id: str
    pricing_option_id: Optional[str] = None
    requested_start_time: datetime
    requested_end_time: datetime
    status: BookingStatus
    alternative_start_time: Optional[datetime] = None
    alternative_end_time: Optional[datetime] = None
    alternative_expires_at: Optional[datetime] = None
    alternative_message: Optional[str] = None
    customer_notes: str = ""
    vendor_notes: Optional[str] = None
    cancel_reason: Optional[str] = None
    cancelled_by: Optional[Literal["customer", "vendor"]] = None
    reject_reason: Optional[str] = None
    price_breakdown: PriceBreakdown
    created_at: datetime
    updated_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class BookingView(Booking):
    queue_position: Optional[int] = None
    available_actions: list[str] = Field(default_factory=list)


class BookingRequest(BaseModel):
    customer_id: str
    service_id: str
    pricing_option_id: Optional[str] = None
    start_time: datetime
    end_time: datetime
    notes: str = ""


class BookingActorRequest(BaseModel):
    actor_user_id: str


class BookingAcceptRequest(BookingActorRequest):
    message: Optional[str] = None


class BookingRejectRequest(BookingActorRequest):
    reason: Optional[str] = None


class BookingCancelRequest(BookingActorRequest):
    reason: Optional[str] = None


class BookingStartRequest(BookingActorRequest):
    force: bool = False


class AlternativeProposalRequest(BookingActorRequest):
    alternative_start_time: datetime
    alternative_end_time: datetime
    message: Optional[str] = None
    expiry_hours: Optional[int] = Field(default=None, gt=0)


class BookingStatusHistoryEntry(BaseModel):
    id: str
    booking_id: str
    actor_user_id: str
    from_status: str
    to_status: str
    note: str = ""
    created_at: datetime


class QueuePosition(BaseModel):
    booking_id: str
    status: BookingStatus
    queue_position: Optional[int] = None


class PendingBookingCount(BaseModel):
    vendor_id: str
    count: int


class BookingChatContext(BaseModel):
    booking_id: str
    customer_id: str
    vendor_id: str


class ExpirySweepResult(BaseModel):
    expired_booking_ids: list[str] = Field(default_factory=list)
    count: int = 0


class PaymentRequest(BaseModel):
    id: str
    booking_id: str
    customer_id: str
    vendor_id: str
    amount: Optional[float] = None
    currency: str
    price_breakdown: PriceBreakdown
    created_at: datetime


class AuthLoginRequest(BaseModel):
    user_id: str
    role: Literal["customer", "vendor"] = "customer"
    password: str = "slotmarket-demo"


class AuthLoginResponse(BaseModel):
    access_token: str
    token_type: Literal["bearer"] = "bearer"
    user_id: str
    role: Literal["customer", "vendor"]
    expires_at: str


class AuthMeResponse(BaseModel):
    user_id: str
    role: Literal["customer", "vendor"]


class DeviceTokenRegisterRequest(BaseModel):
    user_id: str
    device_token: str
    platform: Literal["android", "ios", "web"] = "android"


class NotificationRecord(BaseModel):
    id: str
    user_id: str
    title: str
    body: str
    category: Literal["booking", "payment", "system"] = "system"
    read: bool = False
    created_at: str
    deep_link: Optional[str] = None
    booking_id: Optional[str] = None
