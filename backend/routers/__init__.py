from routers.auth import router as auth_router
from routers.users import router as users_router
from routers.orders import router as orders_router
from routers.conversations import router as conversations_router
from routers.notifications import router as notifications_router
from routers.shop import router as shop_router

__all__ = [
    "auth_router",
    "users_router",
    "orders_router",
    "conversations_router",
    "notifications_router",
    "shop_router"
]
