from fastapi import APIRouter, Request, Response, Depends
import logging

from database import get_db
from models.user import User
from dependencies import get_current_user

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger(__name__)

# Sessions are issued by the external identity provider; this API only reads and revokes them


@router.get("/me")
async def get_me(user: User = Depends(get_current_user)):
    """Get current authenticated user"""
    return user.model_dump()


@router.post("/logout")
async def logout(request: Request, response: Response, db=Depends(get_db)):
    """Logout user"""
    session_token = request.cookies.get("session_token")
    if not session_token:
        auth_header = request.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            session_token = auth_header.split(" ")[1]

    if session_token:
        result = await db.user_sessions.delete_many({"session_token": session_token})
        logger.info(f"[Auth] Logged out ({result.deleted_count} session(s) removed)")

    response.delete_cookie(key="session_token", path="/", samesite="lax", secure=True)
    return {"message": "Logged out"}
