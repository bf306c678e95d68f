from models.user import User, UserSession
from models.order import (
    OrderType, OrderStatus, OrderCreate, OrderUpdate, OrderFilters,
    StatusUpdate, QuoteCreate, PaymentCreate, CancelOrder, AssignOrder
)
from models.messaging import (
    ConversationStatus, MessageStatus, ConversationCreate, ConversationUpdate, MessageCreate
)
from models.notification import (
    NotificationType, NotificationPriority, NotificationStatus, NotificationCreate, DeviceTokenRegister,
    NotificationPreferences, NotificationPreferencesUpdate
)
from models.shop import Product, ProductCreate, ProductUpdate, ShopOrderCreate, ShopOrderUpdate

__all__ = [
    "User", "UserSession",
    "OrderType", "OrderStatus", "OrderCreate", "OrderUpdate", "OrderFilters",
    "StatusUpdate", "QuoteCreate", "PaymentCreate", "CancelOrder", "AssignOrder",
    "ConversationStatus", "MessageStatus", "ConversationCreate", "ConversationUpdate", "MessageCreate",
    "NotificationType", "NotificationPriority", "NotificationStatus", "NotificationCreate", "DeviceTokenRegister",
    "NotificationPreferences", "NotificationPreferencesUpdate",
    "Product", "ProductCreate", "ProductUpdate", "ShopOrderCreate", "ShopOrderUpdate"
]
