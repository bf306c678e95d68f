"""
Shop Store
Rentable/sellable products and the simple shop orders placed against them
"""
from datetime import datetime, timezone
from typing import Optional
import logging
import re

from config import SHOP_ORDER_PREFIX
from database import next_sequence
from errors import NotFoundError, ValidationError
from models.shop import Product, ProductCreate, ProductUpdate, ShopOrderCreate, ShopOrderUpdate, ShopOrderStatus
from services.order_store import generate_id, format_order_number

logger = logging.getLogger(__name__)

SHOP_ORDER_COUNTER = "shop_order_counter"

# Status -> timestamp field stamped when the order enters it
STATUS_TIMESTAMPS = {
    ShopOrderStatus.CONFIRMED.value: "confirmed_at",
    ShopOrderStatus.COMPLETED.value: "completed_at",
    ShopOrderStatus.CANCELLED.value: "cancelled_at",
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ==================== PRODUCTS ====================

async def create_product(db, product_in: ProductCreate) -> dict:
    product = Product(**product_in.model_dump())
    doc = product.model_dump(mode="json")
    if not doc["thumbnail_url"] and doc["images"]:
        thumbnail = next((i for i in doc["images"] if i["is_thumbnail"]), doc["images"][0])
        doc["thumbnail_url"] = thumbnail["url"]

    await db.shop_products.insert_one(doc)
    doc.pop("_id", None)
    logger.info(f"[Shop] Created product {doc['product_id']} ({doc['name']})")
    return doc


async def get_product(db, product_id: str) -> dict:
    product = await db.shop_products.find_one({"product_id": product_id}, {"_id": 0})
    if not product:
        raise NotFoundError("Product not found.")
    return product


async def list_products(
    db,
    category: Optional[str] = None,
    is_active: Optional[bool] = None,
    is_featured: Optional[bool] = None,
    search: Optional[str] = None,
    limit: int = 100
) -> list:
    query = {}
    if category and category != "all":
        query["category"] = category
    if is_active is not None:
        query["is_active"] = is_active
    if is_featured is not None:
        query["is_featured"] = is_featured
    if search:
        pattern = {"$regex": re.escape(search.strip()), "$options": "i"}
        query["$or"] = [{"name": pattern}, {"description": pattern}]

    return await db.shop_products.find(query, {"_id": 0}).sort("created_at", -1).limit(limit).to_list(limit)


async def update_product(db, product_id: str, updates: ProductUpdate) -> dict:
    update_data = {k: v for k, v in updates.model_dump(mode="json").items() if v is not None}
    if not update_data:
        raise ValidationError("No fields to update.")
    update_data["updated_at"] = _now()

    result = await db.shop_products.update_one({"product_id": product_id}, {"$set": update_data})
    if result.matched_count == 0:
        raise NotFoundError("Product not found.")
    return await get_product(db, product_id)


async def deactivate_product(db, product_id: str) -> None:
    """Soft delete: hidden from the catalogue, kept for existing orders"""
    result = await db.shop_products.update_one(
        {"product_id": product_id},
        {"$set": {"is_active": False, "updated_at": _now()}}
    )
    if result.matched_count == 0:
        raise NotFoundError("Product not found.")


async def delete_product(db, product_id: str) -> None:
    result = await db.shop_products.delete_one({"product_id": product_id})
    if result.deleted_count == 0:
        raise NotFoundError("Product not found.")
    logger.warning(f"[Shop] Permanently deleted product {product_id}")


# ==================== SHOP ORDERS ====================

async def create_shop_order(db, order_in: ShopOrderCreate) -> dict:
    number = await next_sequence(db, SHOP_ORDER_COUNTER)
    items = []
    for item in order_in.items:
        items.append({**item.model_dump(), "subtotal": item.subtotal})

    now = _now()
    order = {
        "shop_order_id": generate_id("sorder"),
        "order_number": format_order_number(number, prefix=SHOP_ORDER_PREFIX),
        "client_id": order_in.client_id,
        "client_name": order_in.client_name,
        "client_email": order_in.client_email,
        "client_phone": order_in.client_phone,
        "items": items,
        "total_amount": round(sum(i["subtotal"] for i in items), 2),
        "currency": order_in.currency,
        "status": ShopOrderStatus.PENDING.value,
        "notes": order_in.notes,
        "confirmed_at": None,
        "completed_at": None,
        "cancelled_at": None,
        "created_at": now,
        "updated_at": now
    }
    await db.shop_orders.insert_one(order)
    order.pop("_id", None)
    logger.info(f"[Shop] Created {order['order_number']} for {order_in.client_id}: {order['total_amount']} {order['currency']}")
    return order


async def get_shop_order(db, shop_order_id: str) -> dict:
    order = await db.shop_orders.find_one({"shop_order_id": shop_order_id}, {"_id": 0})
    if not order:
        raise NotFoundError("Shop order not found.")
    return order


async def list_shop_orders(db, status: Optional[str] = None, client_id: Optional[str] = None, limit: int = 100) -> list:
    query = {}
    if status and status != "all":
        query["status"] = status
    if client_id:
        query["client_id"] = client_id
    return await db.shop_orders.find(query, {"_id": 0}).sort("created_at", -1).limit(limit).to_list(limit)


async def update_shop_order(db, shop_order_id: str, updates: ShopOrderUpdate) -> dict:
    now = _now()
    update_data = {"updated_at": now}
    if updates.notes is not None:
        update_data["notes"] = updates.notes
    if updates.status is not None:
        update_data["status"] = updates.status.value
        stamp = STATUS_TIMESTAMPS.get(updates.status.value)
        if stamp:
            update_data[stamp] = now
    if len(update_data) == 1:
        raise ValidationError("No fields to update.")

    result = await db.shop_orders.update_one({"shop_order_id": shop_order_id}, {"$set": update_data})
    if result.matched_count == 0:
        raise NotFoundError("Shop order not found.")
    return await get_shop_order(db, shop_order_id)


async def delete_shop_order(db, shop_order_id: str) -> None:
    result = await db.shop_orders.delete_one({"shop_order_id": shop_order_id})
    if result.deleted_count == 0:
        raise NotFoundError("Shop order not found.")


async def shop_stats(db) -> dict:
    total_products = await db.shop_products.count_documents({})
    active_products = await db.shop_products.count_documents({"is_active": True})

    orders_by_status = {s.value: 0 for s in ShopOrderStatus}
    status_rows = await db.shop_orders.aggregate([{"$group": {"_id": "$status", "count": {"$sum": 1}}}]).to_list(100)
    for row in status_rows:
        orders_by_status[row["_id"]] = row["count"]

    revenue_rows = await db.shop_orders.aggregate([
        {"$match": {"status": ShopOrderStatus.COMPLETED.value}},
        {"$group": {"_id": None, "revenue": {"$sum": "$total_amount"}}}
    ]).to_list(1)

    return {
        "total_products": total_products,
        "active_products": active_products,
        "total_orders": sum(orders_by_status.values()),
        "orders_by_status": orders_by_status,
        "total_revenue": revenue_rows[0]["revenue"] if revenue_rows else 0
    }
