"""
Schemas for the storefront builder.

Request bodies and persisted records share one set of pydantic models. Field
names are snake_case in Python and camelCase on the wire (`store_id` <->
`storeId`); both spellings are accepted on input.
"""
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Annotated, Any, ClassVar, Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, PlainSerializer, StringConstraints, model_validator
from pydantic.alias_generators import to_camel

CENT = Decimal("0.01")
# Largest amount a Money field holds (12 digits, 2 after the point)
MAX_AMOUNT = Decimal("9999999999.99")

# Fixed-point amount, two decimal places, serialized as a JSON number
Money = Annotated[
    Decimal,
    Field(ge=0, max_digits=12, decimal_places=2),
    PlainSerializer(float, return_type=float, when_used="json"),
]

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PartialUpdate(CamelModel):
    """PATCH body: omitted fields are left alone, explicit nulls clear nullable fields."""

    not_nullable: ClassVar[FrozenSet[str]] = frozenset()

    @model_validator(mode="after")
    def reject_cleared_required(self):
        cleared = sorted(f for f in self.not_nullable if f in self.model_fields_set and getattr(self, f) is None)
        if cleared:
            raise ValueError(f"{', '.join(cleared)} cannot be null")
        return self

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)


# --------- Stores ---------

class StoreCreate(CamelModel):
    name: NonEmptyStr = Field(..., description="Store name")
    category: Optional[str] = Field(None, description="Store category, e.g. fashion")
    description: Optional[str] = None
    template: str = Field("modern", description="Storefront template key")
    custom_domain: Optional[str] = None
    settings: Dict[str, Any] = Field(default_factory=dict, description="Free-form store settings")


class StoreUpdate(PartialUpdate):
    not_nullable: ClassVar[FrozenSet[str]] = frozenset({"name", "template", "is_active", "settings"})

    name: Optional[NonEmptyStr] = None
    category: Optional[str] = None
    description: Optional[str] = None
    template: Optional[str] = None
    custom_domain: Optional[str] = None
    is_active: Optional[bool] = None
    settings: Optional[Dict[str, Any]] = None


class Store(StoreCreate):
    id: str
    is_active: bool = True
    created_at: datetime


# --------- Products ---------

class ProductCreate(CamelModel):
    store_id: NonEmptyStr
    name: NonEmptyStr
    description: Optional[str] = None
    price: Money
    category: Optional[str] = None
    image_url: Optional[str] = None
    stock: int = Field(0, ge=0, description="Units in stock")
    is_active: bool = True


class NewProduct(ProductCreate):
    ai_generated: bool = False


class ProductUpdate(PartialUpdate):
    not_nullable: ClassVar[FrozenSet[str]] = frozenset({"name", "price", "stock", "is_active"})

    name: Optional[NonEmptyStr] = None
    description: Optional[str] = None
    price: Optional[Money] = None
    category: Optional[str] = None
    image_url: Optional[str] = None
    stock: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None


class Product(NewProduct):
    id: str
    created_at: datetime


class PriceRange(CamelModel):
    min: Money
    max: Money

    @model_validator(mode="after")
    def check_bounds(self):
        if self.min > self.max:
            raise ValueError("min must not exceed max")
        return self


class GenerateProductsRequest(CamelModel):
    category: NonEmptyStr
    count: int = Field(5, ge=1, le=20)
    price_range: PriceRange
    with_images: bool = False


# --------- Orders ---------

class OrderStatus(str, Enum):
    pending = "pending"
    confirmed = "confirmed"
    shipped = "shipped"
    delivered = "delivered"
    cancelled = "cancelled"


ORDER_TRANSITIONS = {
    OrderStatus.pending: {OrderStatus.confirmed, OrderStatus.shipped, OrderStatus.delivered, OrderStatus.cancelled},
    OrderStatus.confirmed: {OrderStatus.shipped, OrderStatus.delivered, OrderStatus.cancelled},
    OrderStatus.shipped: {OrderStatus.delivered},
    OrderStatus.delivered: set(),
    OrderStatus.cancelled: set(),
}


def can_transition(current: OrderStatus, requested: OrderStatus) -> bool:
    return requested in ORDER_TRANSITIONS[current]


class LineItem(CamelModel):
    product_id: NonEmptyStr
    name: Optional[str] = None
    quantity: int = Field(..., ge=1)
    unit_price: Money

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


def order_total(items: List[LineItem]) -> Decimal:
    return sum((item.line_total for item in items), Decimal("0"))


class OrderCreate(CamelModel):
    store_id: NonEmptyStr
    customer_name: NonEmptyStr
    customer_email: EmailStr
    customer_phone: Optional[str] = None
    items: List[LineItem] = Field(..., min_length=1)
    # Accepted for client convenience, never trusted
    total_amount: Optional[Money] = None

    @model_validator(mode="after")
    def check_total(self):
        if order_total(self.items) > MAX_AMOUNT:
            raise ValueError(f"order total exceeds {MAX_AMOUNT}")
        return self


class NewOrder(CamelModel):
    store_id: str
    customer_name: str
    customer_email: EmailStr
    customer_phone: Optional[str] = None
    items: List[LineItem]
    total_amount: Money
    status: OrderStatus = OrderStatus.pending

    @classmethod
    def from_request(cls, payload: OrderCreate) -> "NewOrder":
        return cls(
            store_id=payload.store_id,
            customer_name=payload.customer_name,
            customer_email=payload.customer_email,
            customer_phone=payload.customer_phone,
            items=payload.items,
            total_amount=to_money(order_total(payload.items)),
        )


class Order(NewOrder):
    id: str
    created_at: datetime


class OrderStatusUpdate(CamelModel):
    status: OrderStatus
