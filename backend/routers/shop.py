"""
Shop Router
Product catalogue and shop orders
"""
from fastapi import APIRouter, HTTPException, Depends, Query
from typing import Optional

from database import get_db
from models.user import User
from models.shop import ProductCreate, ProductUpdate, ShopOrderCreate, ShopOrderUpdate, PRODUCT_CATEGORIES
from dependencies import get_current_user, require_admin
from services import shop_store

router = APIRouter(prefix="/shop", tags=["shop"])


@router.get("/categories")
async def get_categories(user: User = Depends(get_current_user)):
    return PRODUCT_CATEGORIES


@router.get("/stats")
async def get_shop_stats(user: User = Depends(require_admin), db=Depends(get_db)):
    return await shop_store.shop_stats(db)


# ============== Products ==============

@router.get("/products")
async def get_products(
    category: Optional[str] = None,
    is_active: Optional[bool] = None,
    is_featured: Optional[bool] = None,
    search: Optional[str] = None,
    limit: int = Query(100, ge=1, le=500),
    user: User = Depends(get_current_user),
    db=Depends(get_db)
):
    """Get products; clients only ever see active ones"""
    if user.role == "client":
        is_active = True
    return await shop_store.list_products(
        db, category=category, is_active=is_active, is_featured=is_featured, search=search, limit=limit
    )


@router.post("/products")
async def create_product(product: ProductCreate, user: User = Depends(require_admin), db=Depends(get_db)):
    return await shop_store.create_product(db, product)


@router.get("/products/{product_id}")
async def get_product(product_id: str, user: User = Depends(get_current_user), db=Depends(get_db)):
    return await shop_store.get_product(db, product_id)


@router.put("/products/{product_id}")
async def update_product(
    product_id: str,
    updates: ProductUpdate,
    user: User = Depends(require_admin),
    db=Depends(get_db)
):
    return await shop_store.update_product(db, product_id, updates)


@router.delete("/products/{product_id}")
async def delete_product(
    product_id: str,
    permanent: bool = False,
    user: User = Depends(require_admin),
    db=Depends(get_db)
):
    """Deactivate a product, or remove it entirely with permanent=true (admin only)"""
    if permanent:
        if user.role != "admin":
            raise HTTPException(status_code=403, detail="Only admins can permanently delete products")
        await shop_store.delete_product(db, product_id)
        return {"message": "Product permanently deleted"}

    await shop_store.deactivate_product(db, product_id)
    return {"message": "Product deactivated"}


# ============== Shop Orders ==============

@router.get("/orders")
async def get_shop_orders(
    status: Optional[str] = None,
    client_id: Optional[str] = None,
    limit: int = Query(100, ge=1, le=500),
    user: User = Depends(get_current_user),
    db=Depends(get_db)
):
    if user.role == "client":
        client_id = user.user_id
    return await shop_store.list_shop_orders(db, status=status, client_id=client_id, limit=limit)


@router.post("/orders")
async def create_shop_order(order: ShopOrderCreate, user: User = Depends(get_current_user), db=Depends(get_db)):
    if user.role == "client" and order.client_id != user.user_id:
        raise HTTPException(status_code=403, detail="Not authorized")
    return await shop_store.create_shop_order(db, order)


@router.get("/orders/{shop_order_id}")
async def get_shop_order(shop_order_id: str, user: User = Depends(get_current_user), db=Depends(get_db)):
    order = await shop_store.get_shop_order(db, shop_order_id)
    if user.role == "client" and order["client_id"] != user.user_id:
        raise HTTPException(status_code=404, detail="Shop order not found")
    return order


@router.put("/orders/{shop_order_id}")
async def update_shop_order(
    shop_order_id: str,
    updates: ShopOrderUpdate,
    user: User = Depends(require_admin),
    db=Depends(get_db)
):
    return await shop_store.update_shop_order(db, shop_order_id, updates)


@router.delete("/orders/{shop_order_id}")
async def delete_shop_order(shop_order_id: str, user: User = Depends(require_admin), db=Depends(get_db)):
    await shop_store.delete_shop_order(db, shop_order_id)
    return {"message": "Shop order deleted"}
