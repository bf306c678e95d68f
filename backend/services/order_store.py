"""
Order Store
Order creation, lifecycle transitions, quote/payment ledger, timeline and order chat.

Every mutation of an order document is a compare-and-set on its revision
counter, so concurrent quote/payment/status writes cannot overwrite each other.
Side effects (system chat messages) are best-effort: their failure is logged
and the primary write stands.
"""
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple
import logging
import re
import uuid

from config import ORDER_NUMBER_PREFIX, ORDER_NUMBER_LENGTH, ORDER_WRITE_RETRIES, DEFAULT_CURRENCY
from database import next_sequence
from errors import NotFoundError, ValidationError, ConflictError
from models.order import (
    OrderStatus, OrderType, OrderFilters, SORTABLE_ORDER_FIELDS,
    QuoteCreate, PaymentCreate, CancelOrder, TimelineMilestoneCreate,
    TimelineMilestoneUpdate, OrderMessageCreate, TimelineStatus, SenderRole
)
from models.user import User
from services.ledger import build_quote, apply_payment, recompute_payment, format_amount
from services.status_machine import (
    check_transition, history_entry, status_change_text, QUOTABLE_STATUSES
)

logger = logging.getLogger(__name__)

ORDER_COUNTER = "order_counter"
MAX_TIMELINE_MILESTONES = 20


def generate_id(prefix: str) -> str:
    """Generate unique ID with prefix"""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    # Stored timestamps are UTC ISO strings and compared as text
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def format_order_number(number: int, prefix: str = ORDER_NUMBER_PREFIX) -> str:
    return f"{prefix}-{str(number).zfill(ORDER_NUMBER_LENGTH)}"


async def next_order_number(db) -> Tuple[int, str]:
    """Atomically allocate the next order sequence and its ORD-### number"""
    sequence = await next_sequence(db, ORDER_COUNTER)
    return sequence, format_order_number(sequence)


# ==================== READS ====================

async def get_order(db, order_id: str) -> dict:
    order = await db.orders.find_one({"order_id": order_id}, {"_id": 0})
    if not order:
        raise NotFoundError("Order not found.")
    return order


def build_orders_query(filters: OrderFilters) -> dict:
    query = {}
    if filters.order_type and filters.order_type != "all":
        query["order_type"] = filters.order_type
    if filters.status and filters.status != "all":
        query["status"] = filters.status
    if filters.client_id:
        query["client_id"] = filters.client_id
    if filters.assigned_to:
        query["assigned_to"] = filters.assigned_to

    created = {}
    if filters.date_from:
        created["$gte"] = _iso(filters.date_from)
    if filters.date_to:
        created["$lte"] = _iso(filters.date_to)
    if created:
        query["created_at"] = created

    amount = {}
    if filters.min_amount is not None:
        amount["$gte"] = filters.min_amount
    if filters.max_amount is not None:
        amount["$lte"] = filters.max_amount
    if amount:
        query["quote.final_amount"] = amount

    if filters.search:
        pattern = {"$regex": re.escape(filters.search.strip()), "$options": "i"}
        query["$or"] = [
            {"order_number": pattern},
            {"client_info.full_name": pattern},
            {"client_info.email": pattern}
        ]
    return query


async def list_orders(db, filters: OrderFilters) -> dict:
    query = build_orders_query(filters)
    total_count = await db.orders.count_documents(query)

    sort_field = SORTABLE_ORDER_FIELDS.get(filters.sort_by, "created_at")
    sort_direction = 1 if filters.sort_order == "asc" else -1
    skip = (filters.page - 1) * filters.page_size

    orders = await db.orders.find(query, {"_id": 0}).sort(
        sort_field, sort_direction
    ).skip(skip).limit(filters.page_size).to_list(filters.page_size)

    return {
        "orders": orders,
        "has_more": skip + len(orders) < total_count,
        "pagination": {
            "page": filters.page,
            "page_size": filters.page_size,
            "total_count": total_count,
            "total_pages": (total_count + filters.page_size - 1) // filters.page_size
        }
    }


# ==================== CREATE ====================

async def create_order(db, payload, actor: Optional[User] = None) -> dict:
    """Create an order of any type in status pending with its first history entry"""
    order_seq, order_number = await next_order_number(db)
    now = _now()

    data = payload.model_dump(mode="json", exclude_none=True)
    order_type = data.pop("order_type")
    notes = "Offer redeemed" if order_type == OrderType.OFFER.value else "Order created"

    order = {
        "order_id": generate_id("ord"),
        "order_number": order_number,
        "order_seq": order_seq,
        "order_type": order_type,
        **data,
        "status": OrderStatus.PENDING.value,
        "status_history": [
            history_entry(
                OrderStatus.PENDING.value,
                changed_by=payload.client_id,
                changed_by_name=payload.client_info.full_name,
                notes=notes
            )
        ],
        "assigned_to": [],
        "timeline": [],
        "documents": [],
        "created_by": actor.user_id if actor else payload.client_id,
        "revision": 0,
        "created_at": now,
        "updated_at": now
    }

    await db.orders.insert_one(order)
    order.pop("_id", None)
    logger.info(f"[Orders] Created {order_number} ({order_type}) for client {payload.client_id}")
    return order


# ==================== MUTATIONS ====================

async def _update_order(db, order_id: str, compute: Callable[[dict], dict]) -> dict:
    """Read-compute-write loop guarded by the order's revision.

    compute receives the current order and returns a Mongo update document;
    it may raise to abort. The write only lands if nobody else wrote in between.
    """
    for attempt in range(ORDER_WRITE_RETRIES):
        order = await get_order(db, order_id)
        update = compute(order)
        update.setdefault("$set", {})["updated_at"] = _now()
        update.setdefault("$inc", {})["revision"] = 1

        result = await db.orders.update_one(
            {"order_id": order_id, "revision": order.get("revision", 0)},
            update
        )
        if result.matched_count:
            return await get_order(db, order_id)

        logger.info(f"[Orders] Concurrent write on {order_id}, retrying ({attempt + 1}/{ORDER_WRITE_RETRIES})")

    raise ConflictError("Order was modified concurrently, please retry.")


async def post_system_message(db, order_id: str, text: str, actor: Optional[User] = None):
    """Append an automated notice to the order chat; never raises"""
    message = {
        "message_id": generate_id("omsg"),
        "order_id": order_id,
        "sender_id": actor.user_id if actor else "system",
        "sender_name": "System",
        "sender_role": SenderRole.ADMIN.value,
        "text": text,
        "attachments": [],
        "is_system_message": True,
        "seen_by": [],
        "created_at": _now()
    }
    try:
        await db.order_messages.insert_one(message)
    except Exception as e:
        logger.exception(f"[Orders] Failed to write system message for {order_id}: {e}")
        return None
    message.pop("_id", None)
    return message


async def update_status(
    db,
    order_id: str,
    status: str,
    actor: User,
    notes: str = "",
    force: bool = False
) -> dict:
    new_status = OrderStatus(status).value

    def compute(order):
        check_transition(order["status"], new_status, force=force, order_number=order.get("order_number", ""))
        return {
            "$set": {"status": new_status},
            "$push": {"status_history": history_entry(new_status, actor.user_id, actor.name, notes)}
        }

    order = await _update_order(db, order_id, compute)
    logger.info(f"[Orders] {order['order_number']} status -> {new_status} by {actor.user_id}")

    await post_system_message(db, order_id, status_change_text(new_status, notes), actor)
    return order


async def create_quote(db, order_id: str, quote_in: QuoteCreate, actor: User) -> dict:
    def compute(order):
        if order["status"] not in QUOTABLE_STATUSES:
            raise ValidationError("Cannot send quote for this order status.")

        quote = build_quote(
            [item.model_dump() for item in quote_in.breakdown],
            discount=quote_in.discount,
            sent_by=actor.user_id,
            valid_until=_iso(quote_in.valid_until),
            currency=order.get("budget_range", {}).get("currency", DEFAULT_CURRENCY)
        )
        notes = f"Quote sent: {format_amount(quote['final_amount'])} {quote['currency']}"
        update = {
            "$set": {"quote": quote, "status": OrderStatus.QUOTED.value},
            "$push": {"status_history": history_entry(OrderStatus.QUOTED.value, actor.user_id, actor.name, notes)}
        }
        if order.get("payment"):
            update["$set"]["payment"] = recompute_payment(order["payment"], quote["final_amount"])
        return update

    order = await _update_order(db, order_id, compute)
    quote = order["quote"]
    logger.info(f"[Orders] Quote {quote['final_amount']} {quote['currency']} on {order['order_number']}")

    await post_system_message(
        db, order_id, f"Quote sent: {format_amount(quote['final_amount'])} {quote['currency']}", actor
    )
    return order


async def add_payment(db, order_id: str, payment_in: PaymentCreate, actor: User) -> dict:
    transaction = {
        "transaction_id": generate_id("txn"),
        "amount": payment_in.amount,
        "method": payment_in.method.value,
        "reference": payment_in.reference,
        "date": _iso(payment_in.date) or _now(),
        "verified_by": payment_in.verified_by or actor.user_id,
        "receipt_url": payment_in.receipt_url
    }

    def compute(order):
        if order["status"] == OrderStatus.CANCELLED.value:
            raise ValidationError("Cannot add payment for this order status.")
        return {"$set": {"payment": apply_payment(order, transaction)}}

    order = await _update_order(db, order_id, compute)
    currency = order["quote"]["currency"]
    logger.info(
        f"[Orders] Payment {payment_in.amount} on {order['order_number']}, "
        f"due {order['payment']['amount_due']} ({order['payment']['status']})"
    )

    await post_system_message(
        db, order_id,
        f"Payment received: {format_amount(payment_in.amount)} {currency} via {payment_in.method.value}",
        actor
    )
    return order


async def cancel_order(db, order_id: str, cancel_in: CancelOrder, actor: User) -> dict:
    def compute(order):
        if order["status"] == OrderStatus.CANCELLED.value:
            raise ValidationError("This order has already been cancelled.")
        if order["status"] == OrderStatus.COMPLETED.value:
            raise ValidationError("This order has already been completed.")
        return {
            "$set": {
                "status": OrderStatus.CANCELLED.value,
                "cancellation_reason": cancel_in.reason,
                "refund_amount": cancel_in.refund_amount
            },
            "$push": {
                "status_history": history_entry(OrderStatus.CANCELLED.value, actor.user_id, actor.name, cancel_in.reason)
            }
        }

    order = await _update_order(db, order_id, compute)
    logger.info(f"[Orders] {order['order_number']} cancelled: {cancel_in.reason}")

    text = f"Order cancelled: {cancel_in.reason}"
    if cancel_in.refund_amount:
        currency = (order.get("quote") or {}).get("currency", DEFAULT_CURRENCY)
        text += f" | Refund: {format_amount(cancel_in.refund_amount)} {currency}"
    await post_system_message(db, order_id, text, actor)
    return order


async def delete_order(db, order_id: str, actor: User) -> dict:
    """Soft delete: the order is cancelled, never removed"""
    def compute(order):
        if order["status"] == OrderStatus.CANCELLED.value:
            return {}
        return {
            "$set": {"status": OrderStatus.CANCELLED.value},
            "$push": {
                "status_history": history_entry(OrderStatus.CANCELLED.value, actor.user_id, actor.name, "Order deleted")
            }
        }

    order = await _update_order(db, order_id, compute)
    logger.info(f"[Orders] {order['order_number']} soft-deleted by {actor.user_id}")
    return order


async def purge_order(db, order_id: str) -> int:
    """Hard delete of an order and its order chat"""
    result = await db.orders.delete_one({"order_id": order_id})
    if result.deleted_count == 0:
        raise NotFoundError("Order not found.")
    messages = await db.order_messages.delete_many({"order_id": order_id})
    logger.warning(f"[Orders] Permanently deleted order {order_id} ({messages.deleted_count} messages)")
    return messages.deleted_count


async def update_order_details(db, order_id: str, update_in, actor: User) -> dict:
    fields = update_in.model_dump(mode="json", exclude_unset=True, exclude={"order_type"})
    if not fields:
        raise ValidationError("No fields to update.")

    def compute(order):
        if order["order_type"] != update_in.order_type:
            raise ValidationError("Invalid order type.")
        return {"$set": fields}

    order = await _update_order(db, order_id, compute)
    logger.info(f"[Orders] {order['order_number']} details updated by {actor.user_id}: {sorted(fields)}")
    return order


async def assign_order(db, order_id: str, admin_ids: List[str], actor: User) -> dict:
    admin_ids = list(dict.fromkeys(admin_ids))
    order = await _update_order(db, order_id, lambda order: {"$set": {"assigned_to": admin_ids}})
    await post_system_message(db, order_id, f"Order assigned to {len(admin_ids)} admin(s)", actor)
    return order


async def add_timeline_milestone(db, order_id: str, milestone_in: TimelineMilestoneCreate) -> dict:
    milestone = {
        "milestone": milestone_in.milestone,
        "description": milestone_in.description,
        "due_date": _iso(milestone_in.due_date),
        "status": TimelineStatus.PENDING.value,
        "completed_at": None
    }

    def compute(order):
        if len(order.get("timeline", [])) >= MAX_TIMELINE_MILESTONES:
            raise ValidationError(f"An order can have at most {MAX_TIMELINE_MILESTONES} milestones.")
        return {"$push": {"timeline": milestone}}

    return await _update_order(db, order_id, compute)


async def update_timeline_milestone(db, order_id: str, index: int, update_in: TimelineMilestoneUpdate) -> dict:
    def compute(order):
        if index < 0 or index >= len(order.get("timeline", [])):
            raise NotFoundError("Milestone not found.")
        completed_at = None
        if update_in.status == TimelineStatus.COMPLETED:
            completed_at = _iso(update_in.completed_at) or _now()
        return {"$set": {
            f"timeline.{index}.status": update_in.status.value,
            f"timeline.{index}.completed_at": completed_at
        }}

    return await _update_order(db, order_id, compute)


# ==================== ORDER CHAT ====================

async def list_order_messages(db, order_id: str, user_id: Optional[str] = None) -> dict:
    await get_order(db, order_id)
    messages = await db.order_messages.find(
        {"order_id": order_id}, {"_id": 0}
    ).sort([("created_at", 1), ("_id", 1)]).to_list(1000)

    unread_count = 0
    if user_id:
        unread_count = sum(
            1 for m in messages
            if not any(seen.get("user_id") == user_id for seen in m.get("seen_by", []))
        )

    return {
        "messages": messages,
        "total": len(messages),
        "unread_count": unread_count
    }


async def send_order_message(db, order_id: str, message_in: OrderMessageCreate, sender: User) -> dict:
    await get_order(db, order_id)
    now = _now()
    message = {
        "message_id": generate_id("omsg"),
        "order_id": order_id,
        "sender_id": sender.user_id,
        "sender_name": sender.name,
        "sender_role": SenderRole.CLIENT.value if sender.role == "client" else SenderRole.ADMIN.value,
        "text": message_in.text,
        "attachments": [a.model_dump() for a in message_in.attachments],
        "is_system_message": False,
        "seen_by": [{"user_id": sender.user_id, "seen_at": now}],
        "created_at": now
    }
    await db.order_messages.insert_one(message)
    message.pop("_id", None)
    return message


async def mark_order_messages_seen(db, order_id: str, message_ids: List[str], user_id: str) -> int:
    if not message_ids:
        return 0
    result = await db.order_messages.update_many(
        {
            "order_id": order_id,
            "message_id": {"$in": message_ids},
            "seen_by.user_id": {"$ne": user_id}
        },
        {"$push": {"seen_by": {"user_id": user_id, "seen_at": _now()}}}
    )
    return result.modified_count


# ==================== ANALYTICS ====================

async def order_analytics(db) -> dict:
    by_status = {s.value: 0 for s in OrderStatus}
    status_rows = await db.orders.aggregate([{"$group": {"_id": "$status", "count": {"$sum": 1}}}]).to_list(100)
    for row in status_rows:
        by_status[row["_id"]] = row["count"]

    by_type = {t.value: 0 for t in OrderType}
    type_rows = await db.orders.aggregate([{"$group": {"_id": "$order_type", "count": {"$sum": 1}}}]).to_list(100)
    for row in type_rows:
        by_type[row["_id"]] = row["count"]

    revenue_by_type = {t.value: 0 for t in OrderType}
    revenue_pipeline = [
        {"$match": {"payment.amount_paid": {"$gt": 0}}},
        {"$group": {"_id": "$order_type", "revenue": {"$sum": "$payment.amount_paid"}}}
    ]
    for row in await db.orders.aggregate(revenue_pipeline).to_list(100):
        revenue_by_type[row["_id"]] = row["revenue"]

    total = sum(by_status.values())
    total_revenue = sum(revenue_by_type.values())
    paying_orders = await db.orders.count_documents({"payment.amount_paid": {"$gt": 0}})

    return {
        "order_status_metrics": {**by_status, "total": total},
        "order_type_metrics": {**by_type, "total": total},
        "revenue_metrics": {
            "total_revenue": total_revenue,
            "average_order_value": round(total_revenue / paying_orders, 2) if paying_orders else 0,
            "revenue_by_type": revenue_by_type
        },
        "cancellation_rate": round(by_status[OrderStatus.CANCELLED.value] / total, 4) if total else 0
    }
