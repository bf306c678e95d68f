from fastapi import APIRouter, HTTPException, Depends, Query
from typing import Optional

from database import get_db
from models.user import User
from dependencies import get_current_user, require_admin
from services import conversation_store

router = APIRouter(prefix="/users", tags=["users"])

# Device tokens stay server-side
USER_PROJECTION = {"_id": 0, "fcm_tokens": 0}


@router.get("")
async def get_users(
    role: Optional[str] = None,
    user: User = Depends(require_admin),
    db=Depends(get_db)
):
    """Get all users (admins and staff only)"""
    query = {}
    if role:
        query["role"] = role
    users = await db.users.find(query, USER_PROJECTION).to_list(1000)
    return users


# ============== Client lookup for messaging ==============

@router.get("/clients")
async def get_clients_for_messaging(
    search: Optional[str] = None,
    user: User = Depends(require_admin),
    db=Depends(get_db)
):
    return await conversation_store.list_clients_for_messaging(db, search)


@router.get("/clients/search")
async def search_clients(
    q: str = Query("", description="Name or email fragment, at least 2 characters"),
    user: User = Depends(require_admin),
    db=Depends(get_db)
):
    """Find clients to start a conversation with"""
    return await conversation_store.search_clients(db, q)


@router.get("/clients/by-email")
async def find_client_by_email(email: str, user: User = Depends(require_admin), db=Depends(get_db)):
    client = await conversation_store.find_client_by_email(db, email)
    if not client:
        raise HTTPException(status_code=404, detail="Client not found")
    return client


@router.put("/{user_id}/role")
async def update_user_role(user_id: str, role: str, user: User = Depends(get_current_user), db=Depends(get_db)):
    """Update user role (admin only)"""
    if user.role != "admin":
        raise HTTPException(status_code=403, detail="Not authorized")

    if role not in ["admin", "staff", "client"]:
        raise HTTPException(status_code=400, detail="Invalid role")

    result = await db.users.update_one(
        {"user_id": user_id},
        {"$set": {"role": role}}
    )

    if result.matched_count == 0:
        raise HTTPException(status_code=404, detail="User not found")

    return {"message": "Role updated"}


@router.get("/{user_id}")
async def get_user(user_id: str, user: User = Depends(get_current_user), db=Depends(get_db)):
    """Get a single user; clients may only look themselves up"""
    if user.role == "client" and user_id != user.user_id:
        raise HTTPException(status_code=403, detail="Not authorized")

    target = await db.users.find_one({"user_id": user_id}, USER_PROJECTION)
    if not target:
        raise HTTPException(status_code=404, detail="User not found")
    return target
