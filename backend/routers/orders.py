"""
Orders Router
Order lifecycle, quotes and payments, timeline, order chat and analytics
"""
from fastapi import APIRouter, HTTPException, Depends, Query, Body, BackgroundTasks
from typing import Optional
from datetime import datetime

from database import get_db
from models.user import User
from models.order import (
    OrderCreate, OrderUpdate, OrderFilters, StatusUpdate, QuoteCreate, PaymentCreate,
    CancelOrder, AssignOrder, TimelineMilestoneCreate, TimelineMilestoneUpdate,
    OrderMessageCreate, MarkOrderMessagesSeen
)
from dependencies import get_current_user, require_admin
from services import order_store
from services.notification_dispatcher import send_order_notification
from services.push_client import PushClient, get_push_client

router = APIRouter(prefix="/orders", tags=["orders"])


async def _load_visible_order(db, order_id: str, user: User) -> dict:
    """Clients only see their own orders"""
    order = await order_store.get_order(db, order_id)
    if user.role == "client" and order["client_id"] != user.user_id:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


@router.get("")
async def get_orders(
    order_type: Optional[str] = None,
    status: Optional[str] = None,
    client_id: Optional[str] = None,
    assigned_to: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    min_amount: Optional[float] = None,
    max_amount: Optional[float] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Items per page"),
    sort_by: str = Query("created_at", description="Field to sort by"),
    sort_order: str = Query("desc", description="Sort order: asc or desc"),
    user: User = Depends(get_current_user),
    db=Depends(get_db)
):
    """Get orders with optional filters and pagination

    Status and order_type accept "all" to disable the filter.
    Clients are always restricted to their own orders.
    """
    if user.role == "client":
        client_id = user.user_id

    filters = OrderFilters(
        order_type=order_type,
        status=status,
        client_id=client_id,
        assigned_to=assigned_to,
        date_from=date_from,
        date_to=date_to,
        min_amount=min_amount,
        max_amount=max_amount,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        page_size=page_size
    )
    return await order_store.list_orders(db, filters)


@router.post("")
async def create_order(
    order_data: OrderCreate = Body(..., discriminator="order_type"),
    user: User = Depends(get_current_user),
    db=Depends(get_db)
):
    """Create an order; clients may only order for themselves"""
    if user.role == "client" and order_data.client_id != user.user_id:
        raise HTTPException(status_code=403, detail="Not authorized")
    return await order_store.create_order(db, order_data, actor=user)


@router.get("/analytics")
async def get_order_analytics(user: User = Depends(require_admin), db=Depends(get_db)):
    """Status, type and revenue breakdown across all orders"""
    return await order_store.order_analytics(db)


@router.get("/{order_id}")
async def get_order(order_id: str, user: User = Depends(get_current_user), db=Depends(get_db)):
    return await _load_visible_order(db, order_id, user)


@router.put("/{order_id}")
async def update_order(
    order_id: str,
    update_data: OrderUpdate = Body(..., discriminator="order_type"),
    user: User = Depends(require_admin),
    db=Depends(get_db)
):
    """Update the type-specific details of an order"""
    return await order_store.update_order_details(db, order_id, update_data, user)


@router.put("/{order_id}/status")
async def update_order_status(
    order_id: str,
    status_data: StatusUpdate,
    background_tasks: BackgroundTasks,
    user: User = Depends(require_admin),
    db=Depends(get_db),
    push_client: PushClient = Depends(get_push_client)
):
    """Move an order through its lifecycle and notify the client"""
    order = await order_store.update_status(
        db, order_id, status_data.status.value, user,
        notes=status_data.notes, force=status_data.force
    )
    background_tasks.add_task(send_order_notification, db, order, order["status"], user, push_client)
    return order


@router.post("/{order_id}/quote")
async def send_quote(
    order_id: str,
    quote_data: QuoteCreate,
    background_tasks: BackgroundTasks,
    user: User = Depends(require_admin),
    db=Depends(get_db),
    push_client: PushClient = Depends(get_push_client)
):
    """Attach a priced quote; the order moves to quoted"""
    order = await order_store.create_quote(db, order_id, quote_data, user)
    background_tasks.add_task(send_order_notification, db, order, "quote", user, push_client)
    return order


@router.post("/{order_id}/payments")
async def add_payment(
    order_id: str,
    payment_data: PaymentCreate,
    background_tasks: BackgroundTasks,
    user: User = Depends(require_admin),
    db=Depends(get_db),
    push_client: PushClient = Depends(get_push_client)
):
    """Record a payment transaction against the quote"""
    order = await order_store.add_payment(db, order_id, payment_data, user)
    background_tasks.add_task(send_order_notification, db, order, "payment", user, push_client)
    return order


@router.post("/{order_id}/cancel")
async def cancel_order(
    order_id: str,
    cancel_data: CancelOrder,
    background_tasks: BackgroundTasks,
    user: User = Depends(require_admin),
    db=Depends(get_db),
    push_client: PushClient = Depends(get_push_client)
):
    order = await order_store.cancel_order(db, order_id, cancel_data, user)
    background_tasks.add_task(send_order_notification, db, order, "cancelled", user, push_client)
    return order


@router.delete("/{order_id}")
async def delete_order(order_id: str, user: User = Depends(require_admin), db=Depends(get_db)):
    """Soft delete: the order is cancelled and kept"""
    order = await order_store.delete_order(db, order_id, user)
    return {"message": "Order deleted", "order_id": order_id, "status": order["status"]}


@router.delete("/{order_id}/permanent")
async def purge_order(order_id: str, user: User = Depends(get_current_user), db=Depends(get_db)):
    """Remove an order and its chat for good (admin only)"""
    if user.role != "admin":
        raise HTTPException(status_code=403, detail="Only admins can permanently delete orders")
    deleted_messages = await order_store.purge_order(db, order_id)
    return {"message": "Order permanently deleted", "order_id": order_id, "deleted_messages": deleted_messages}


@router.put("/{order_id}/assign")
async def assign_order(
    order_id: str,
    assign_data: AssignOrder,
    user: User = Depends(require_admin),
    db=Depends(get_db)
):
    return await order_store.assign_order(db, order_id, assign_data.admin_ids, user)


# ============== Timeline ==============

@router.post("/{order_id}/timeline")
async def add_milestone(
    order_id: str,
    milestone: TimelineMilestoneCreate,
    user: User = Depends(require_admin),
    db=Depends(get_db)
):
    return await order_store.add_timeline_milestone(db, order_id, milestone)


@router.put("/{order_id}/timeline/{index}")
async def update_milestone(
    order_id: str,
    index: int,
    update: TimelineMilestoneUpdate,
    user: User = Depends(require_admin),
    db=Depends(get_db)
):
    return await order_store.update_timeline_milestone(db, order_id, index, update)


# ============== Order Chat ==============

@router.get("/{order_id}/messages")
async def get_order_messages(order_id: str, user: User = Depends(get_current_user), db=Depends(get_db)):
    await _load_visible_order(db, order_id, user)
    return await order_store.list_order_messages(db, order_id, user_id=user.user_id)


@router.post("/{order_id}/messages")
async def send_order_message(
    order_id: str,
    message: OrderMessageCreate,
    user: User = Depends(get_current_user),
    db=Depends(get_db)
):
    await _load_visible_order(db, order_id, user)
    return await order_store.send_order_message(db, order_id, message, user)


@router.put("/{order_id}/messages/seen")
async def mark_order_messages_seen(
    order_id: str,
    seen: MarkOrderMessagesSeen,
    user: User = Depends(get_current_user),
    db=Depends(get_db)
):
    await _load_visible_order(db, order_id, user)
    marked = await order_store.mark_order_messages_seen(db, order_id, seen.message_ids, user.user_id)
    return {"success": True, "marked_seen": marked}
