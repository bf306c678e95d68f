"""
Notification Dispatcher
Stores in-app notifications and forwards them to the push service.

Dispatch is best-effort: callers on the order/message paths run it as a
background task, and a failed push only marks the notification failed.
"""
from datetime import datetime, timezone, timedelta
from typing import Optional, List, Dict, Any
import logging

from config import MESSAGE_PREVIEW_LENGTH
from errors import NotFoundError, ValidationError, RemoteError
from models.notification import (
    NotificationCreate, NotificationPriority, NotificationStatus, NotificationType,
    DeviceTokenRegister, NotificationPreferences, NotificationPreferencesUpdate, TYPE_PREFERENCE_FIELDS
)
from models.user import User
from services.ledger import format_amount
from services.order_store import generate_id
from services.push_client import PushClient, get_push_client

logger = logging.getLogger(__name__)

ORDER_STATUS_TEMPLATES = {
    "confirmed": ("Order Confirmed!", "Your order #{number} has been confirmed."),
    "completed": ("Order Completed!", "Your order #{number} has been completed."),
    "cancelled": ("Order Cancelled", "Your order #{number} has been cancelled."),
}
DEFAULT_ORDER_TEMPLATE = ("Order Update", "Your order #{number} status has been updated.")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken as UTC; aware ones are converted to it"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def message_preview(text: str) -> str:
    if len(text) > MESSAGE_PREVIEW_LENGTH:
        return text[:MESSAGE_PREVIEW_LENGTH - 3] + "..."
    return text


# ==================== DEVICE TOKENS ====================

async def get_user_tokens(db, user_id: str) -> List[str]:
    user = await db.users.find_one({"user_id": user_id}, {"_id": 0, "fcm_tokens": 1})
    if not user:
        return []
    return [t["token"] for t in user.get("fcm_tokens", []) if t.get("is_active", True)]


async def register_device_token(db, user_id: str, token_in: DeviceTokenRegister) -> Dict[str, Any]:
    """Add a device token; an already-known token is refreshed instead of duplicated"""
    now = _now()
    entry = {
        "token": token_in.token,
        "device_id": token_in.device_id,
        "platform": token_in.platform,
        "token_type": token_in.token_type,
        "app_version": token_in.app_version,
        "is_active": True,
        "created_at": now,
        "last_used": now
    }

    refreshed = await db.users.update_one(
        {"user_id": user_id, "fcm_tokens.token": token_in.token},
        {"$set": {
            "fcm_tokens.$.is_active": True,
            "fcm_tokens.$.device_id": token_in.device_id,
            "fcm_tokens.$.app_version": token_in.app_version,
            "fcm_tokens.$.last_used": now
        }}
    )
    if refreshed.matched_count:
        return {"registered": False, "refreshed": True}

    result = await db.users.update_one({"user_id": user_id}, {"$push": {"fcm_tokens": entry}})
    if result.matched_count == 0:
        raise NotFoundError("User not found.")
    logger.info(f"[Notifications] Registered {token_in.platform} token for {user_id}")
    return {"registered": True, "refreshed": False}


async def remove_device_token(db, user_id: str, token: str) -> bool:
    result = await db.users.update_one(
        {"user_id": user_id},
        {"$pull": {"fcm_tokens": {"token": token}}}
    )
    if result.matched_count == 0:
        raise NotFoundError("User not found.")
    return result.modified_count > 0


async def reactivate_tokens(db, user_id: Optional[str] = None) -> int:
    """Mark every stored token active again, for one user or everyone"""
    query = {"fcm_tokens.is_active": False}
    if user_id:
        query["user_id"] = user_id

    reactivated = 0
    users = await db.users.find(query, {"_id": 0, "user_id": 1, "fcm_tokens": 1}).to_list(10000)
    for user in users:
        tokens = user.get("fcm_tokens", [])
        reactivated += sum(1 for t in tokens if not t.get("is_active", True))
        for t in tokens:
            t["is_active"] = True
        await db.users.update_one({"user_id": user["user_id"]}, {"$set": {"fcm_tokens": tokens}})

    logger.info(f"[Notifications] Reactivated {reactivated} device tokens")
    return reactivated


# ==================== PREFERENCES ====================

async def get_notification_preferences(db, user_id: str) -> Dict[str, Any]:
    stored = await db.notification_preferences.find_one({"user_id": user_id}, {"_id": 0})
    preferences = NotificationPreferences(**(stored or {})).model_dump()
    preferences["user_id"] = user_id
    preferences["updated_at"] = stored.get("updated_at") if stored else None
    return preferences


async def update_notification_preferences(
    db, user_id: str, update: NotificationPreferencesUpdate
) -> Dict[str, Any]:
    """Merge the given switches into the user's preferences, creating them on first use"""
    changes = update.model_dump(exclude_none=True)
    changes["updated_at"] = _now()
    await db.notification_preferences.update_one(
        {"user_id": user_id},
        {"$set": changes},
        upsert=True
    )
    return await get_notification_preferences(db, user_id)


def type_enabled(preferences: dict, notification_type: str) -> bool:
    field = TYPE_PREFERENCE_FIELDS.get(notification_type)
    return field is None or preferences.get(field, True)


def in_quiet_hours(preferences: dict, at: datetime) -> bool:
    start = preferences.get("quiet_hours_start")
    end = preferences.get("quiet_hours_end")
    if not preferences.get("quiet_hours_enabled") or not start or not end:
        return False
    current = at.astimezone(timezone.utc).strftime("%H:%M")
    if start <= end:
        return start <= current < end
    # window wraps midnight, e.g. 22:00-07:00
    return current >= start or current < end


def push_allowed(preferences: dict, priority: str, at: Optional[datetime] = None) -> bool:
    """Urgent notifications ignore quiet hours but not a disabled push channel"""
    if not preferences.get("push_enabled", True):
        return False
    if priority == NotificationPriority.URGENT.value:
        return True
    return not in_quiet_hours(preferences, at or datetime.now(timezone.utc))


# ==================== DISPATCH ====================

def _push_data(notification: dict) -> Dict[str, str]:
    data = {"notification_id": notification["notification_id"], "type": notification["type"]}
    reference = notification.get("reference") or {}
    if reference.get("type"):
        data["reference_type"] = reference["type"]
    if reference.get("id"):
        data["reference_id"] = reference["id"]
    if reference.get("url"):
        data["url"] = reference["url"]
    return data


async def _push(db, notification: dict, push_client: PushClient) -> str:
    """Hand a stored notification to the push service and record the outcome"""
    push_priority = "high" if notification["priority"] in (
        NotificationPriority.HIGH.value, NotificationPriority.URGENT.value
    ) else "normal"
    now = _now()

    try:
        counts = await push_client.send(
            title=notification["title"],
            body=notification["body"],
            user_id=notification["recipient_id"],
            data=_push_data(notification),
            image_url=notification.get("image_url"),
            priority=push_priority
        )
    except Exception as e:
        # Any push error ends the attempt as failed, never left pending
        reason = e.detail if isinstance(e, RemoteError) else f"Push error: {e}"
        logger.warning(f"[Notifications] Push failed for {notification['notification_id']}: {reason}")
        await db.notifications.update_one(
            {"notification_id": notification["notification_id"]},
            {"$set": {
                "status": NotificationStatus.FAILED.value,
                "failure_reason": reason,
                "stats": {"total_recipients": 1, "delivered": 0, "failed": 1},
                "updated_at": now
            }}
        )
        return NotificationStatus.FAILED.value

    fields = {
        "sent_at": now,
        "stats": {"total_recipients": 1, "delivered": counts["success"], "failed": counts["failure"]},
        "updated_at": now
    }
    if counts["success"] > 0:
        fields["status"] = NotificationStatus.DELIVERED.value
        fields["delivered_at"] = now
    else:
        fields["status"] = NotificationStatus.FAILED.value
        fields["failure_reason"] = "No device accepted the notification"

    await db.notifications.update_one({"notification_id": notification["notification_id"]}, {"$set": fields})
    return fields["status"]


def _notification_doc(
    recipient_id: str,
    title: str,
    body: str,
    type: str,
    priority: str,
    status: str,
    reference: Optional[dict] = None,
    sender: Optional[User] = None,
    image_url: Optional[str] = None,
    actions: Optional[List[dict]] = None,
    scheduled_for: Optional[str] = None
) -> dict:
    now = _now()
    return {
        "notification_id": generate_id("notif"),
        "recipient_id": recipient_id,
        "title": title,
        "body": body,
        "image_url": image_url,
        "type": type,
        "priority": priority,
        "reference": reference,
        "actions": actions or [],
        "status": status,
        "is_read": False,
        "read_at": None,
        "clicked": False,
        "clicked_at": None,
        "scheduled_for": scheduled_for,
        "sent_at": None,
        "delivered_at": now if status == NotificationStatus.DELIVERED.value else None,
        "failure_reason": None,
        "stats": None,
        "sender_id": sender.user_id if sender else "system",
        "sender_name": sender.name if sender else "System",
        "created_at": now,
        "updated_at": now
    }


async def send_notification_to_user(
    db,
    recipient_id: str,
    title: str,
    body: str,
    type: str = NotificationType.INFO.value,
    reference: Optional[dict] = None,
    priority: str = NotificationPriority.NORMAL.value,
    sender: Optional[User] = None,
    push_client: Optional[PushClient] = None,
    image_url: Optional[str] = None,
    actions: Optional[List[dict]] = None
) -> Optional[str]:
    """Store a notification and push it to the user's devices.

    Users without active tokens, or whose preferences hold push back, still
    get the in-app notification, stored as delivered. A type the user turned
    off is not stored at all. Returns the notification id, or None if the
    notification was skipped or the dispatch broke.
    """
    try:
        preferences = await get_notification_preferences(db, recipient_id)
        if not type_enabled(preferences, type):
            logger.info(f"[Notifications] {recipient_id} turned off {type} notifications; skipped")
            return None

        tokens = await get_user_tokens(db, recipient_id) if push_allowed(preferences, priority) else []
        status = NotificationStatus.PENDING.value if tokens else NotificationStatus.DELIVERED.value
        notification = _notification_doc(
            recipient_id, title, body, type, priority, status,
            reference=reference, sender=sender, image_url=image_url, actions=actions
        )
        await db.notifications.insert_one(notification)

        if tokens:
            await _push(db, notification, push_client or get_push_client())
        return notification["notification_id"]
    except Exception as e:
        logger.exception(f"[Notifications] Dispatch to {recipient_id} failed: {e}")
        return None


async def send_message_notification(
    db,
    recipient_id: str,
    sender: User,
    text: str,
    conversation_id: str,
    message_id: str,
    push_client: Optional[PushClient] = None
) -> Optional[str]:
    return await send_notification_to_user(
        db,
        recipient_id,
        title=f"New message from {sender.name}",
        body=message_preview(text),
        type=NotificationType.MESSAGE.value,
        reference={"type": "conversation", "id": conversation_id, "metadata": {"message_id": message_id}},
        priority=NotificationPriority.HIGH.value,
        sender=sender,
        push_client=push_client,
        image_url=sender.picture,
        actions=[{"id": "view_message", "title": "View Message", "action": f"/messages/{conversation_id}"}]
    )


async def send_order_notification(
    db,
    order: dict,
    event: str,
    sender: Optional[User] = None,
    push_client: Optional[PushClient] = None
) -> Optional[str]:
    """Tell the order's client about a status change, a new quote or a payment"""
    number = order["order_number"]
    priority = NotificationPriority.NORMAL.value
    notification_type = NotificationType.ORDER.value

    if event == "quote":
        quote = order["quote"]
        title = "Quote Sent"
        body = f"A quote of {format_amount(quote['final_amount'])} {quote['currency']} has been sent for order {number}."
    elif event == "payment":
        transaction = order["payment"]["transactions"][-1]
        title = "Payment Received"
        body = f"Payment of {format_amount(transaction['amount'])} {order['quote']['currency']} received for order {number}."
        notification_type = NotificationType.PAYMENT.value
    else:
        title, body = ORDER_STATUS_TEMPLATES.get(event, DEFAULT_ORDER_TEMPLATE)
        body = body.format(number=number)
        if event == "confirmed":
            priority = NotificationPriority.HIGH.value

    return await send_notification_to_user(
        db,
        order["client_id"],
        title=title,
        body=body,
        type=notification_type,
        reference={"type": "order", "id": order["order_id"], "metadata": {"order_number": number}},
        priority=priority,
        sender=sender,
        push_client=push_client,
        actions=[{"id": "view_order", "title": "View Order", "action": f"/orders/{order['order_id']}"}]
    )


async def create_notification(
    db,
    notification_in: NotificationCreate,
    sender: User,
    push_client: Optional[PushClient] = None
) -> Dict[str, Any]:
    """Admin-composed notification; held back as scheduled when scheduled_for is in the future"""
    recipients = list(dict.fromkeys(notification_in.recipient_ids or [notification_in.recipient_id]))
    reference = notification_in.reference.model_dump() if notification_in.reference else None
    actions = [a.model_dump() for a in notification_in.actions]

    scheduled_for = notification_in.scheduled_for
    if scheduled_for and _as_utc(scheduled_for) > datetime.now(timezone.utc):
        notifications = [
            _notification_doc(
                rid, notification_in.title, notification_in.body,
                notification_in.type.value, notification_in.priority.value,
                NotificationStatus.SCHEDULED.value,
                reference=reference, sender=sender, image_url=notification_in.image_url,
                actions=actions, scheduled_for=_as_utc(scheduled_for).isoformat()
            )
            for rid in recipients
        ]
        await db.notifications.insert_many(notifications)
        logger.info(f"[Notifications] Scheduled {len(notifications)} notification(s) for {scheduled_for}")
        return {
            "status": NotificationStatus.SCHEDULED.value,
            "notification_ids": [n["notification_id"] for n in notifications]
        }

    notification_ids = []
    skipped = 0
    for rid in recipients:
        preferences = await get_notification_preferences(db, rid)
        if not type_enabled(preferences, notification_in.type.value):
            skipped += 1
            continue
        notification_id = await send_notification_to_user(
            db, rid, notification_in.title, notification_in.body,
            type=notification_in.type.value, reference=reference,
            priority=notification_in.priority.value, sender=sender,
            push_client=push_client, image_url=notification_in.image_url, actions=actions
        )
        if notification_id:
            notification_ids.append(notification_id)

    return {
        "status": "sent",
        "notification_ids": notification_ids,
        "skipped": skipped,
        "failed": len(recipients) - skipped - len(notification_ids)
    }


async def send_due_notifications(db, push_client: Optional[PushClient] = None) -> int:
    """Deliver scheduled notifications whose time has come; returns how many were dispatched"""
    now = _now()
    due = await db.notifications.find(
        {"status": NotificationStatus.SCHEDULED.value, "scheduled_for": {"$lte": now}},
        {"_id": 0}
    ).to_list(500)

    client = push_client or get_push_client()
    dispatched = 0
    for notification in due:
        # Claim it so a second runner cannot send it again
        claimed = await db.notifications.update_one(
            {"notification_id": notification["notification_id"], "status": NotificationStatus.SCHEDULED.value},
            {"$set": {"status": NotificationStatus.PENDING.value, "updated_at": now}}
        )
        if claimed.modified_count == 0:
            continue

        try:
            preferences = await get_notification_preferences(db, notification["recipient_id"])
            if not type_enabled(preferences, notification["type"]):
                await db.notifications.update_one(
                    {"notification_id": notification["notification_id"]},
                    {"$set": {
                        "status": NotificationStatus.CANCELLED.value,
                        "failure_reason": "Recipient turned off this notification type",
                        "updated_at": now
                    }}
                )
                continue

            tokens = []
            if push_allowed(preferences, notification["priority"]):
                tokens = await get_user_tokens(db, notification["recipient_id"])
            if tokens:
                await _push(db, notification, client)
            else:
                await db.notifications.update_one(
                    {"notification_id": notification["notification_id"]},
                    {"$set": {"status": NotificationStatus.DELIVERED.value, "delivered_at": now, "updated_at": now}}
                )
            dispatched += 1
        except Exception as e:
            logger.exception(f"[Notifications] Scheduled send {notification['notification_id']} failed: {e}")
            await db.notifications.update_one(
                {"notification_id": notification["notification_id"]},
                {"$set": {"status": NotificationStatus.FAILED.value, "failure_reason": str(e), "updated_at": now}}
            )

    if due:
        logger.info(f"[Notifications] Sent {dispatched}/{len(due)} scheduled notifications")
    return dispatched


async def cancel_scheduled_notification(db, notification_id: str) -> dict:
    notification = await db.notifications.find_one({"notification_id": notification_id}, {"_id": 0})
    if not notification:
        raise NotFoundError("Notification not found.")
    if notification["status"] != NotificationStatus.SCHEDULED.value:
        raise ValidationError("Only scheduled notifications can be cancelled.")
    if notification["scheduled_for"] <= _now():
        raise ValidationError("Notification is already due for sending.")

    result = await db.notifications.update_one(
        {"notification_id": notification_id, "status": NotificationStatus.SCHEDULED.value},
        {"$set": {"status": NotificationStatus.CANCELLED.value, "updated_at": _now()}}
    )
    if result.modified_count == 0:
        raise ValidationError("Only scheduled notifications can be cancelled.")
    notification["status"] = NotificationStatus.CANCELLED.value
    return notification


# ==================== ANALYTICS ====================

def _percent(part: int, whole: int) -> int:
    return round(part / whole * 100) if whole else 0


async def notification_analytics(db, days: int = 30) -> Dict[str, Any]:
    """Delivery, open and click figures for notifications created in the last N days"""
    since = (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()
    notifications = await db.notifications.find(
        {"created_at": {"$gte": since}},
        {"_id": 0, "type": 1, "status": 1, "stats": 1, "is_read": 1, "clicked": 1, "created_at": 1}
    ).to_list(100000)

    totals = {"sent": 0, "delivered": 0, "failed": 0, "opened": 0, "clicked": 0}
    by_type: Dict[str, int] = {}
    by_status: Dict[str, int] = {}
    trend: Dict[str, Dict[str, int]] = {}

    for n in notifications:
        stats = n.get("stats") or {}
        status = n.get("status")
        sent = status in (NotificationStatus.SENT.value, NotificationStatus.DELIVERED.value)
        delivered = status == NotificationStatus.DELIVERED.value

        if sent:
            totals["sent"] += stats.get("total_recipients") or 1
        if delivered:
            totals["delivered"] += stats.get("delivered") or 1
        if status == NotificationStatus.FAILED.value:
            totals["failed"] += 1
        if n.get("is_read"):
            totals["opened"] += 1
        if n.get("clicked"):
            totals["clicked"] += 1

        notification_type = n.get("type", NotificationType.INFO.value)
        by_type[notification_type] = by_type.get(notification_type, 0) + 1
        by_status[status] = by_status.get(status, 0) + 1

        day = trend.setdefault(n["created_at"][:10], {"sent": 0, "delivered": 0, "opened": 0})
        day["sent"] += 1
        if delivered:
            day["delivered"] += 1
        if n.get("is_read"):
            day["opened"] += 1

    return {
        "days": days,
        "total_sent": totals["sent"],
        "total_delivered": totals["delivered"],
        "total_failed": totals["failed"],
        "total_opened": totals["opened"],
        "total_clicked": totals["clicked"],
        "open_rate": _percent(totals["opened"], totals["sent"]),
        "click_rate": _percent(totals["clicked"], totals["sent"]),
        "by_type": by_type,
        "by_status": by_status,
        "trend": [{"date": date, **counts} for date, counts in sorted(trend.items())]
    }


# ==================== INBOX ====================

async def list_notifications(db, user_id: str, unread_only: bool = False, limit: int = 50) -> dict:
    # Scheduled and cancelled notifications are not visible to the recipient yet
    query = {
        "recipient_id": user_id,
        "status": {"$nin": [NotificationStatus.SCHEDULED.value, NotificationStatus.CANCELLED.value]}
    }
    if unread_only:
        query["is_read"] = False

    notifications = await db.notifications.find(
        query, {"_id": 0}
    ).sort("created_at", -1).limit(limit).to_list(limit)

    unread_count = await count_unread(db, user_id)
    return {"notifications": notifications, "unread_count": unread_count}


async def count_unread(db, user_id: str) -> int:
    return await db.notifications.count_documents({
        "recipient_id": user_id,
        "is_read": False,
        "status": {"$nin": [NotificationStatus.SCHEDULED.value, NotificationStatus.CANCELLED.value]}
    })


async def mark_notification_read(db, notification_id: str, user_id: str) -> None:
    result = await db.notifications.update_one(
        {"notification_id": notification_id, "recipient_id": user_id},
        {"$set": {"is_read": True, "read_at": _now()}}
    )
    if result.matched_count == 0:
        raise NotFoundError("Notification not found.")


async def mark_all_notifications_read(db, user_id: str) -> int:
    result = await db.notifications.update_many(
        {"recipient_id": user_id, "is_read": False},
        {"$set": {"is_read": True, "read_at": _now()}}
    )
    return result.modified_count


async def record_click(db, notification_id: str, user_id: str) -> None:
    """A click also counts as reading the notification"""
    now = _now()
    result = await db.notifications.update_one(
        {"notification_id": notification_id, "recipient_id": user_id},
        {"$set": {"clicked": True, "clicked_at": now, "is_read": True, "read_at": now}}
    )
    if result.matched_count == 0:
        raise NotFoundError("Notification not found.")


async def delete_notification(db, notification_id: str, user_id: str) -> None:
    result = await db.notifications.delete_one({"notification_id": notification_id, "recipient_id": user_id})
    if result.deleted_count == 0:
        raise NotFoundError("Notification not found.")
