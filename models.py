# models.py
from __future__ import annotations
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing_extensions import List, Optional, Literal
import uuid

from pydantic import BaseModel, ConfigDict, Field, computed_field

CENTS = Decimal("0.01")


def money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


# ---------- Menu ----------
class MenuItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str = Field(min_length=1)
    description: str = ""
    price: Decimal
    category: str = "Other"
    available: bool = True
    dietary_tags: List[str] = Field(default_factory=list)
    ingredients: List[str] = Field(default_factory=list)


class ConversationTurn(BaseModel):
    role: Literal["user", "assistant"]
    content: str
    timestamp: datetime = Field(default_factory=utcnow)


# ---------- Orders ----------
class OrderStatus(str, Enum):
    PENDING = "PENDING"
    PREPARING = "PREPARING"
    READY = "READY"
    SERVED = "SERVED"
    CANCELLED = "CANCELLED"


class OrderItem(BaseModel):
    menu_item_id: str
    name: str
    quantity: int = Field(ge=1)
    # captured from the menu when the line is created; never refreshed
    price_at_time: Decimal
    notes: Optional[str] = None

    @property
    def line_total(self) -> Decimal:
        return money(self.price_at_time * self.quantity)


class Order(BaseModel):
    id: str = Field(default_factory=new_id)
    restaurant_id: str
    session_id: str
    table_number: str
    items: List[OrderItem] = Field(default_factory=list)
    status: OrderStatus = OrderStatus.PENDING
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    notes: Optional[str] = None
    needs_staff_attention: bool = False

    @computed_field  # type: ignore[misc]
    @property
    def total(self) -> Decimal:
        return money(sum((it.price_at_time * it.quantity for it in self.items), Decimal("0")))

    @property
    def short_code(self) -> str:
        return self.id[-6:].upper()

    def summary(self) -> str:
        lines = ", ".join(f"{it.quantity}x {it.name}" for it in self.items) or "no items"
        return f"#{self.short_code} ({self.status.value}): {lines} - ${self.total}"


# ---------- Sessions ----------
class SessionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    CLOSED = "CLOSED"


class SessionStats(BaseModel):
    total_orders: int = 0
    total_spent: Decimal = Decimal("0.00")


class CustomerSession(BaseModel):
    id: str = Field(default_factory=new_id)
    restaurant_id: str
    table_number: str
    customer_name: Optional[str] = None
    status: SessionStatus = SessionStatus.ACTIVE
    start_time: datetime = Field(default_factory=utcnow)
    end_time: Optional[datetime] = None
    total_orders: int = 0
    total_spent: Decimal = Decimal("0.00")

    @property
    def stats(self) -> SessionStats:
        return SessionStats(total_orders=self.total_orders, total_spent=self.total_spent)
