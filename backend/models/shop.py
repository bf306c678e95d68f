from pydantic import BaseModel, Field, ConfigDict
from typing import List, Optional
from datetime import datetime, timezone
from enum import Enum
import uuid

from config import DEFAULT_CURRENCY


class ShopOrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


PRODUCT_CATEGORIES = [
    "Wedding Dresses",
    "Suits & Tuxedos",
    "Accessories",
    "Decorations",
    "Vehicles",
    "Furniture",
    "Lighting",
    "Flowers",
    "Catering Equipment",
    "Audio/Visual",
    "Other",
]


class ProductImage(BaseModel):
    url: str
    public_id: Optional[str] = None
    alt: Optional[str] = None
    is_thumbnail: bool = False


class Product(BaseModel):
    model_config = ConfigDict(extra="ignore")
    product_id: str = Field(default_factory=lambda: f"prod_{uuid.uuid4().hex[:12]}")
    name: str
    description: str = ""
    category: str = "Other"
    price: float = Field(..., ge=0)
    currency: str = DEFAULT_CURRENCY
    quantity: int = Field(0, ge=0)
    images: List[ProductImage] = []
    thumbnail_url: Optional[str] = None
    is_active: bool = True
    is_featured: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: str = ""
    category: str = "Other"
    price: float = Field(..., ge=0)
    currency: str = DEFAULT_CURRENCY
    quantity: int = Field(0, ge=0)
    images: List[ProductImage] = []
    thumbnail_url: Optional[str] = None
    is_active: bool = True
    is_featured: bool = False


class ProductUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    currency: Optional[str] = None
    quantity: Optional[int] = Field(None, ge=0)
    images: Optional[List[ProductImage]] = None
    thumbnail_url: Optional[str] = None
    is_active: Optional[bool] = None
    is_featured: Optional[bool] = None


class ShopOrderItem(BaseModel):
    product_id: str
    product_name: str
    product_image: Optional[str] = None
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0)

    @property
    def subtotal(self) -> float:
        return self.quantity * self.price


class ShopOrderCreate(BaseModel):
    client_id: str
    client_name: str
    client_email: str
    client_phone: Optional[str] = None
    items: List[ShopOrderItem] = Field(..., min_length=1)
    currency: str = DEFAULT_CURRENCY
    notes: Optional[str] = None


class ShopOrderUpdate(BaseModel):
    status: Optional[ShopOrderStatus] = None
    notes: Optional[str] = None

