"""
Notifications Router
Handles user notifications, admin broadcasts and device tokens
"""
from fastapi import APIRouter, Depends, Query
from typing import Optional

from database import get_db
from models.user import User
from models.notification import (
    NotificationCreate, DeviceTokenRegister, DeviceTokenRemove, NotificationPreferencesUpdate
)
from dependencies import get_current_user, require_admin
from services import notification_dispatcher
from services.push_client import PushClient, get_push_client
from services.scheduler import get_scheduler_status

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("")
async def get_notifications(
    unread_only: bool = False,
    limit: int = Query(50, ge=1, le=100),
    user: User = Depends(get_current_user),
    db=Depends(get_db)
):
    """Get user's notifications"""
    return await notification_dispatcher.list_notifications(db, user.user_id, unread_only=unread_only, limit=limit)


@router.get("/unread-count")
async def get_unread_count(user: User = Depends(get_current_user), db=Depends(get_db)):
    """Get count of unread notifications"""
    count = await notification_dispatcher.count_unread(db, user.user_id)
    return {"unread_count": count}


@router.get("/analytics")
async def get_notification_analytics(
    days: int = Query(30, ge=1, le=365),
    user: User = Depends(require_admin),
    db=Depends(get_db)
):
    """Sent, delivered, failed, opened and clicked counts with a daily trend"""
    return await notification_dispatcher.notification_analytics(db, days)


@router.get("/preferences")
async def get_preferences(user: User = Depends(get_current_user), db=Depends(get_db)):
    return await notification_dispatcher.get_notification_preferences(db, user.user_id)


@router.put("/preferences")
async def update_preferences(
    preferences: NotificationPreferencesUpdate,
    user: User = Depends(get_current_user),
    db=Depends(get_db)
):
    """Switch push delivery, notification types or quiet hours for the current user"""
    return await notification_dispatcher.update_notification_preferences(db, user.user_id, preferences)


@router.post("")
async def create_notification(
    notification: NotificationCreate,
    user: User = Depends(require_admin),
    db=Depends(get_db),
    push_client: PushClient = Depends(get_push_client)
):
    """Send (or schedule) a notification to one or more users"""
    return await notification_dispatcher.create_notification(db, notification, user, push_client)


@router.post("/{notification_id}/cancel")
async def cancel_scheduled(notification_id: str, user: User = Depends(require_admin), db=Depends(get_db)):
    """Cancel a scheduled notification before it goes out"""
    return await notification_dispatcher.cancel_scheduled_notification(db, notification_id)


@router.get("/scheduler/status")
async def scheduler_status(user: User = Depends(require_admin)):
    return get_scheduler_status()


@router.put("/read-all")
async def mark_all_as_read(user: User = Depends(get_current_user), db=Depends(get_db)):
    """Mark all notifications as read"""
    marked = await notification_dispatcher.mark_all_notifications_read(db, user.user_id)
    return {"success": True, "marked_read": marked}


@router.put("/{notification_id}/read")
async def mark_as_read(notification_id: str, user: User = Depends(get_current_user), db=Depends(get_db)):
    """Mark a notification as read"""
    await notification_dispatcher.mark_notification_read(db, notification_id, user.user_id)
    return {"success": True}


@router.put("/{notification_id}/click")
async def record_click(notification_id: str, user: User = Depends(get_current_user), db=Depends(get_db)):
    await notification_dispatcher.record_click(db, notification_id, user.user_id)
    return {"success": True}


# ============== Device Tokens ==============

@router.post("/tokens")
async def register_token(token: DeviceTokenRegister, user: User = Depends(get_current_user), db=Depends(get_db)):
    """Register this device for push notifications"""
    result = await notification_dispatcher.register_device_token(db, user.user_id, token)
    return {"success": True, **result}


@router.delete("/tokens")
async def remove_token(token: DeviceTokenRemove, user: User = Depends(get_current_user), db=Depends(get_db)):
    removed = await notification_dispatcher.remove_device_token(db, user.user_id, token.token)
    return {"success": True, "removed": removed}


@router.post("/tokens/reactivate")
async def reactivate_tokens(
    user_id: Optional[str] = None,
    user: User = Depends(require_admin),
    db=Depends(get_db)
):
    """Re-enable device tokens that were switched off (one user or all)"""
    reactivated = await notification_dispatcher.reactivate_tokens(db, user_id)
    return {"success": True, "reactivated": reactivated}


@router.delete("/{notification_id}")
async def delete_notification(notification_id: str, user: User = Depends(get_current_user), db=Depends(get_db)):
    """Delete a notification"""
    await notification_dispatcher.delete_notification(db, notification_id, user.user_id)
    return {"success": True}
