"""
Notification Models - push + in-app notifications and device tokens
"""
from pydantic import BaseModel, Field, model_validator
from typing import Optional, List, Dict, Literal
from datetime import datetime
from enum import Enum


class NotificationType(str, Enum):
    ORDER = "order"
    MESSAGE = "message"
    PROMO = "promo"
    REMINDER = "reminder"
    INFO = "info"
    SYSTEM = "system"
    PAYMENT = "payment"
    STAFF = "staff"


class NotificationPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class NotificationStatus(str, Enum):
    PENDING = "pending"
    SCHEDULED = "scheduled"
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"
    CANCELLED = "cancelled"


class NotificationReference(BaseModel):
    type: Literal["order", "conversation", "service", "event", "staff", "offer", "url"]
    id: Optional[str] = None
    url: Optional[str] = None
    metadata: Dict[str, str] = {}


class NotificationAction(BaseModel):
    id: str
    title: str
    action: str  # deep link
    icon: Optional[str] = None


class NotificationCreate(BaseModel):
    """Admin-composed notification for one or more users"""
    title: str = Field(..., min_length=1, max_length=200)
    body: str = Field(..., min_length=1, max_length=1000)
    image_url: Optional[str] = None
    type: NotificationType = NotificationType.INFO
    priority: NotificationPriority = NotificationPriority.NORMAL
    recipient_id: Optional[str] = None
    recipient_ids: List[str] = []
    reference: Optional[NotificationReference] = None
    actions: List[NotificationAction] = []
    scheduled_for: Optional[datetime] = None

    @model_validator(mode="after")
    def check_recipients(self):
        if not self.recipient_id and not self.recipient_ids:
            raise ValueError("recipient_id or recipient_ids is required")
        return self


class DeviceTokenRegister(BaseModel):
    token: str = Field(..., min_length=1)
    device_id: str
    platform: Literal["web", "ios", "android"] = "web"
    token_type: Literal["fcm", "expo", "apns"] = "fcm"
    app_version: Optional[str] = None


class DeviceTokenRemove(BaseModel):
    token: str


class NotificationPreferences(BaseModel):
    """Per-user delivery switches; a missing document means all defaults"""
    push_enabled: bool = True
    email_enabled: bool = True
    sms_enabled: bool = False
    order_notifications: bool = True
    message_notifications: bool = True
    promo_notifications: bool = True
    reminder_notifications: bool = True
    info_notifications: bool = True
    quiet_hours_enabled: bool = False
    quiet_hours_start: Optional[str] = Field(None, pattern=r"^\d{2}:\d{2}$")  # UTC, "22:00"
    quiet_hours_end: Optional[str] = Field(None, pattern=r"^\d{2}:\d{2}$")


class NotificationPreferencesUpdate(BaseModel):
    push_enabled: Optional[bool] = None
    email_enabled: Optional[bool] = None
    sms_enabled: Optional[bool] = None
    order_notifications: Optional[bool] = None
    message_notifications: Optional[bool] = None
    promo_notifications: Optional[bool] = None
    reminder_notifications: Optional[bool] = None
    info_notifications: Optional[bool] = None
    quiet_hours_enabled: Optional[bool] = None
    quiet_hours_start: Optional[str] = Field(None, pattern=r"^\d{2}:\d{2}$")
    quiet_hours_end: Optional[str] = Field(None, pattern=r"^\d{2}:\d{2}$")


# Which preference switch governs each notification type; unlisted types always go out
TYPE_PREFERENCE_FIELDS = {
    NotificationType.ORDER.value: "order_notifications",
    NotificationType.PAYMENT.value: "order_notifications",
    NotificationType.MESSAGE.value: "message_notifications",
    NotificationType.PROMO.value: "promo_notifications",
    NotificationType.REMINDER.value: "reminder_notifications",
    NotificationType.INFO.value: "info_notifications",
}
