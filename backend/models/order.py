"""
Order Models - event, service, staff and offer bookings
Status lifecycle, quote/payment ledger, timeline and order chat
"""
from pydantic import BaseModel, Field, ConfigDict, EmailStr, field_validator, model_validator
from typing import Optional, List, Dict, Literal, Union
from datetime import datetime
from enum import Enum

from config import DEFAULT_CURRENCY


# Enums
class OrderType(str, Enum):
    EVENT = "event"
    SERVICE = "service"
    STAFF = "staff"
    OFFER = "offer"


class OrderStatus(str, Enum):
    PENDING = "pending"
    QUOTED = "quoted"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class EventType(str, Enum):
    WEDDING = "wedding"
    CORPORATE = "corporate"
    CULTURAL = "cultural"
    SOCIAL = "social"
    BIRTHDAY = "birthday"
    CONFERENCE = "conference"


class PaymentMethod(str, Enum):
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    MOBILE_MONEY = "mobile_money"
    CARD = "card"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PARTIAL = "partial"
    COMPLETED = "completed"
    REFUNDED = "refunded"


class TimelineStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class SenderRole(str, Enum):
    CLIENT = "client"
    ADMIN = "admin"
    STAFF = "staff"


# Shared pieces
class ClientInfo(BaseModel):
    full_name: str = Field(..., min_length=2, max_length=100)
    email: EmailStr
    phone: str = Field(..., min_length=9, max_length=15)


class GeoPoint(BaseModel):
    latitude: float
    longitude: float


class Venue(BaseModel):
    name: str = Field(..., max_length=200)
    address: str
    city: str
    location: Optional[GeoPoint] = None


class BudgetRange(BaseModel):
    min: float = Field(..., ge=0)
    max: float = Field(..., ge=0)
    currency: str = DEFAULT_CURRENCY

    @model_validator(mode="after")
    def check_bounds(self):
        if self.max < self.min:
            raise ValueError("budget max must not be below min")
        return self


class StatusHistoryItem(BaseModel):
    status: OrderStatus
    changed_at: str
    changed_by: str
    changed_by_name: Optional[str] = None
    notes: str = ""


# Type-specific details
class EventDetails(BaseModel):
    event_type: EventType
    event_date: datetime
    event_time: str = Field(..., pattern=r"^\d{2}:\d{2}$")
    venue: Venue
    guest_count: int = Field(..., ge=1, le=10000)
    description: Optional[str] = None


class ServiceRequest(BaseModel):
    service_id: str
    service_name: str
    package_id: Optional[str] = None
    package_name: Optional[str] = None
    quantity: int = Field(1, ge=1)


class StaffRequest(BaseModel):
    staff_profile_id: str
    staff_name: str
    role: str
    quantity: int = Field(1, ge=1)


class ServiceDetails(BaseModel):
    service_id: str
    service_name: str
    category: str
    package_id: Optional[str] = None
    package_name: Optional[str] = None
    package_features: List[str] = []
    custom_requirements: Optional[str] = None


class ServiceDuration(BaseModel):
    value: float = Field(..., gt=0)
    unit: Literal["hours", "days", "weeks"]


class StaffDetails(BaseModel):
    staff_profile_id: str
    staff_name: str
    role: str
    skills: List[str] = []
    photo_url: Optional[str] = None


class BookingDuration(BaseModel):
    start_time: str = Field(..., pattern=r"^\d{2}:\d{2}$")
    end_time: str = Field(..., pattern=r"^\d{2}:\d{2}$")
    hours: float = Field(..., gt=0)


class OfferDetails(BaseModel):
    offer_id: str
    offer_title: str
    offer_description: str
    discount: str  # e.g. "20%" or "50,000 XAF"
    original_price: Optional[float] = None
    discounted_price: Optional[float] = None
    valid_to: datetime
    redemption_code: Optional[str] = None


class AppliedService(BaseModel):
    service_id: str
    service_name: str


# Create inputs (discriminated on order_type)
class _OrderCreateBase(BaseModel):
    model_config = ConfigDict(extra="forbid")
    client_id: str
    client_info: ClientInfo
    admin_notes: Optional[str] = None


class EventOrderCreate(_OrderCreateBase):
    order_type: Literal["event"] = "event"
    event_details: EventDetails
    services_requested: List[ServiceRequest] = Field(default_factory=list, max_length=20)
    staff_requested: List[StaffRequest] = Field(default_factory=list, max_length=50)
    budget_range: Optional[BudgetRange] = None
    special_requirements: Optional[str] = Field(None, max_length=2000)


class ServiceOrderCreate(_OrderCreateBase):
    order_type: Literal["service"] = "service"
    service_details: ServiceDetails
    service_date: Optional[datetime] = None
    duration: Optional[ServiceDuration] = None
    budget_range: Optional[BudgetRange] = None


class StaffOrderCreate(_OrderCreateBase):
    order_type: Literal["staff"] = "staff"
    staff_details: StaffDetails
    booking_date: datetime
    booking_duration: BookingDuration
    location: str
    requirements: Optional[str] = None
    budget_range: Optional[BudgetRange] = None


class OfferOrderCreate(_OrderCreateBase):
    order_type: Literal["offer"] = "offer"
    offer_details: OfferDetails
    applied_to_service: Optional[AppliedService] = None
    redemption_date: datetime


# Routers discriminate on order_type
OrderCreate = Union[EventOrderCreate, ServiceOrderCreate, StaffOrderCreate, OfferOrderCreate]


# Update inputs - only the fields legal for each order type
class _OrderUpdateBase(BaseModel):
    model_config = ConfigDict(extra="forbid")
    admin_notes: Optional[str] = None


class EventOrderUpdate(_OrderUpdateBase):
    order_type: Literal["event"] = "event"
    event_details: Optional[EventDetails] = None
    services_requested: Optional[List[ServiceRequest]] = None
    staff_requested: Optional[List[StaffRequest]] = None
    budget_range: Optional[BudgetRange] = None
    special_requirements: Optional[str] = None


class ServiceOrderUpdate(_OrderUpdateBase):
    order_type: Literal["service"] = "service"
    service_details: Optional[ServiceDetails] = None
    service_date: Optional[datetime] = None
    duration: Optional[ServiceDuration] = None
    budget_range: Optional[BudgetRange] = None


class StaffOrderUpdate(_OrderUpdateBase):
    order_type: Literal["staff"] = "staff"
    staff_details: Optional[StaffDetails] = None
    booking_date: Optional[datetime] = None
    booking_duration: Optional[BookingDuration] = None
    location: Optional[str] = None
    requirements: Optional[str] = None
    budget_range: Optional[BudgetRange] = None


class OfferOrderUpdate(_OrderUpdateBase):
    order_type: Literal["offer"] = "offer"
    offer_details: Optional[OfferDetails] = None
    applied_to_service: Optional[AppliedService] = None


OrderUpdate = Union[EventOrderUpdate, ServiceOrderUpdate, StaffOrderUpdate, OfferOrderUpdate]


# Lifecycle inputs
class StatusUpdate(BaseModel):
    status: OrderStatus
    notes: str = ""
    force: bool = False  # admin correction outside the transition table


class QuoteBreakdownItem(BaseModel):
    item: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    amount: float = Field(..., ge=0)


class QuoteCreate(BaseModel):
    breakdown: List[QuoteBreakdownItem] = Field(..., max_length=50)
    discount: float = Field(0, ge=0)
    valid_until: Optional[datetime] = None


class PaymentCreate(BaseModel):
    amount: float = Field(..., gt=0)
    method: PaymentMethod
    reference: str = Field(..., max_length=100)
    date: Optional[datetime] = None
    verified_by: Optional[str] = None
    receipt_url: Optional[str] = None


class CancelOrder(BaseModel):
    reason: str = Field(..., min_length=1)
    refund_amount: Optional[float] = Field(None, ge=0)


class AssignOrder(BaseModel):
    admin_ids: List[str] = Field(..., min_length=1)


class TimelineMilestoneCreate(BaseModel):
    milestone: str = Field(..., min_length=1, max_length=200)
    description: str = Field("", max_length=500)
    due_date: datetime


class TimelineMilestoneUpdate(BaseModel):
    status: TimelineStatus
    completed_at: Optional[datetime] = None


# Order chat (legacy per-order messages)
class MessageAttachment(BaseModel):
    type: Literal["image", "document", "video"]
    url: str
    name: str
    size: Optional[int] = None
    mime_type: Optional[str] = None


class OrderMessageCreate(BaseModel):
    text: str = Field(..., min_length=1, max_length=2000)
    attachments: List[MessageAttachment] = []

    @field_validator("text")
    @classmethod
    def strip_text(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("text must not be blank")
        return v


class MarkOrderMessagesSeen(BaseModel):
    message_ids: List[str]


class OrderFilters(BaseModel):
    order_type: Optional[str] = None  # OrderType or "all"
    status: Optional[str] = None  # OrderStatus or "all"
    client_id: Optional[str] = None
    assigned_to: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    min_amount: Optional[float] = None
    max_amount: Optional[float] = None
    search: Optional[str] = None
    sort_by: str = "created_at"
    sort_order: str = "desc"
    page: int = 1
    page_size: int = 20


SORTABLE_ORDER_FIELDS: Dict[str, str] = {
    "created_at": "created_at",
    "updated_at": "updated_at",
    # Numbers outgrow their zero padding, so sort on the stored sequence
    "order_number": "order_seq",
    "status": "status",
    "amount": "quote.final_amount",
}
