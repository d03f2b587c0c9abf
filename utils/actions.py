# utils/actions.py
"""
Candidate / pending actions.

An action is a `PendingAction` envelope around a kind-specific payload. The
payload union is closed and discriminated on `kind`; every dispatch over it
ends in `assert_never`, so adding a kind surfaces in the type checker at
every place that has to learn about it.
"""
from __future__ import annotations
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Union
from typing_extensions import Annotated, List, Literal, Optional, assert_never

from pydantic import BaseModel, Field, TypeAdapter

from models import money, new_id, utcnow


class ActionKind(str, Enum):
    ADD_TO_ORDER = "ADD_TO_ORDER"
    REMOVE_FROM_ORDER = "REMOVE_FROM_ORDER"
    MODIFY_ORDER_ITEM = "MODIFY_ORDER_ITEM"
    CONFIRM_ORDER = "CONFIRM_ORDER"
    CANCEL_ORDER = "CANCEL_ORDER"
    REQUEST_RECOMMENDATION = "REQUEST_RECOMMENDATION"
    REQUEST_CLARIFICATION = "REQUEST_CLARIFICATION"
    SPECIFIC_ORDER_EDIT = "SPECIFIC_ORDER_EDIT"
    NO_ACTION = "NO_ACTION"


class ActionStatus(str, Enum):
    PROPOSED = "PROPOSED"
    CONFIRMED = "CONFIRMED"
    EXECUTED = "EXECUTED"
    FAILED = "FAILED"
    DECLINED = "DECLINED"
    EXPIRED = "EXPIRED"


TERMINAL_STATUSES = {ActionStatus.EXECUTED, ActionStatus.FAILED, ActionStatus.DECLINED, ActionStatus.EXPIRED}


class Provenance(str, Enum):
    GENERATIVE = "generative"
    PATTERN = "pattern"
    NONE = "none"


class ParsedItem(BaseModel):
    menu_item_id: str
    name: str
    quantity: int = Field(default=1, ge=1)
    unit_price: Decimal
    notes: Optional[str] = None

    @property
    def line_total(self) -> Decimal:
        return money(self.unit_price * self.quantity)


class RecommendedItem(BaseModel):
    menu_item_id: str
    name: str
    price: Decimal
    reason: str = ""
    score: float = 0.0


# ---------- Payloads (one per kind) ----------
class AddToOrderPayload(BaseModel):
    kind: Literal[ActionKind.ADD_TO_ORDER] = ActionKind.ADD_TO_ORDER
    items: List[ParsedItem] = Field(min_length=1)
    order_id: Optional[str] = None  # None: latest open order, or a new one


class RemoveFromOrderPayload(BaseModel):
    kind: Literal[ActionKind.REMOVE_FROM_ORDER] = ActionKind.REMOVE_FROM_ORDER
    items: List[ParsedItem] = Field(min_length=1)
    order_id: Optional[str] = None


class ModifyOrderItemPayload(BaseModel):
    kind: Literal[ActionKind.MODIFY_ORDER_ITEM] = ActionKind.MODIFY_ORDER_ITEM
    menu_item_id: str
    name: str
    unit_price: Decimal
    old_quantity: Optional[int] = Field(default=None, ge=1)
    new_quantity: int = Field(ge=1)
    order_id: Optional[str] = None
    notes: Optional[str] = None

    @property
    def price_difference(self) -> Optional[Decimal]:
        if self.old_quantity is None:
            return None
        return money(self.unit_price * (self.new_quantity - self.old_quantity))


class ConfirmOrderPayload(BaseModel):
    kind: Literal[ActionKind.CONFIRM_ORDER] = ActionKind.CONFIRM_ORDER
    items: List[ParsedItem] = Field(min_length=1)
    notes: Optional[str] = None

    @property
    def total(self) -> Decimal:
        return money(sum((it.unit_price * it.quantity for it in self.items), Decimal("0")))


class CancelOrderPayload(BaseModel):
    kind: Literal[ActionKind.CANCEL_ORDER] = ActionKind.CANCEL_ORDER
    order_id: Optional[str] = None
    reason: str = "customer request"


class RecommendationPayload(BaseModel):
    kind: Literal[ActionKind.REQUEST_RECOMMENDATION] = ActionKind.REQUEST_RECOMMENDATION
    preferences: str = ""
    recommendations: List[RecommendedItem] = Field(default_factory=list)


class ClarificationPayload(BaseModel):
    kind: Literal[ActionKind.REQUEST_CLARIFICATION] = ActionKind.REQUEST_CLARIFICATION
    question: str
    options: List[str] = Field(default_factory=list)
    original_request: str = ""


class SpecificOrderEditPayload(BaseModel):
    kind: Literal[ActionKind.SPECIFIC_ORDER_EDIT] = ActionKind.SPECIFIC_ORDER_EDIT
    order_ref: str = Field(min_length=1)  # short code, with or without '#'
    operation: Literal["view", "add", "remove", "modify", "cancel"] = "view"
    items: List[ParsedItem] = Field(default_factory=list)

    @property
    def short_code(self) -> str:
        return self.order_ref.lstrip("#").upper()


class NoActionPayload(BaseModel):
    kind: Literal[ActionKind.NO_ACTION] = ActionKind.NO_ACTION
    reason: str = ""


ActionPayload = Annotated[
    Union[
        AddToOrderPayload,
        RemoveFromOrderPayload,
        ModifyOrderItemPayload,
        ConfirmOrderPayload,
        CancelOrderPayload,
        RecommendationPayload,
        ClarificationPayload,
        SpecificOrderEditPayload,
        NoActionPayload,
    ],
    Field(discriminator="kind"),
]

payload_adapter: TypeAdapter[ActionPayload] = TypeAdapter(ActionPayload)


def mutates_order(payload: ActionPayload) -> bool:
    if isinstance(payload, (AddToOrderPayload, RemoveFromOrderPayload, ModifyOrderItemPayload,
                            ConfirmOrderPayload, CancelOrderPayload)):
        return True
    if isinstance(payload, SpecificOrderEditPayload):
        return payload.operation != "view"
    if isinstance(payload, (RecommendationPayload, ClarificationPayload, NoActionPayload)):
        return False
    assert_never(payload)


# ---------- Envelope ----------
class PendingAction(BaseModel):
    id: str = Field(default_factory=lambda: "act_" + new_id())
    payload: ActionPayload
    description: str
    confirmation_message: str
    confidence: float = Field(ge=0.0, le=1.0)
    provenance: Provenance
    created_at: datetime = Field(default_factory=utcnow)
    status: ActionStatus = ActionStatus.PROPOSED
    fallback_options: List[str] = Field(default_factory=list)
    restaurant_id: str
    table_number: Optional[str] = None
    session_id: Optional[str] = None

    @property
    def kind(self) -> ActionKind:
        return self.payload.kind

    @property
    def mutates_order(self) -> bool:
        return mutates_order(self.payload)

    def expires_at(self, ttl_seconds: int) -> datetime:
        return self.created_at + timedelta(seconds=ttl_seconds)

    def is_expired(self, ttl_seconds: int, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.expires_at(ttl_seconds)


# ---------- Text ----------
def _items_text(items: List[ParsedItem]) -> str:
    return ", ".join(f"{it.quantity}x {it.name}" for it in items)


def describe(payload: ActionPayload) -> str:
    if isinstance(payload, AddToOrderPayload):
        return f"Add {_items_text(payload.items)} to order"
    if isinstance(payload, RemoveFromOrderPayload):
        return f"Remove {_items_text(payload.items)} from order"
    if isinstance(payload, ModifyOrderItemPayload):
        before = payload.old_quantity if payload.old_quantity is not None else "?"
        return f"Change {payload.name} quantity from {before} to {payload.new_quantity}"
    if isinstance(payload, ConfirmOrderPayload):
        return f"Order: {_items_text(payload.items)}"
    if isinstance(payload, CancelOrderPayload):
        return f"Cancel order ({payload.reason})"
    if isinstance(payload, RecommendationPayload):
        return f"Recommend items based on: {payload.preferences or 'current order'}"
    if isinstance(payload, ClarificationPayload):
        return f"Clarify request: {payload.original_request or payload.question}"
    if isinstance(payload, SpecificOrderEditPayload):
        return f"{payload.operation.capitalize()} order #{payload.short_code}"
    if isinstance(payload, NoActionPayload):
        return "No action"
    assert_never(payload)


def confirmation_text(payload: ActionPayload) -> str:
    if isinstance(payload, AddToOrderPayload):
        if len(payload.items) == 1:
            it = payload.items[0]
            return f"Add {it.quantity}x {it.name} (${money(it.unit_price)} each) to your order?"
        return f"Add {_items_text(payload.items)} to your order?"
    if isinstance(payload, RemoveFromOrderPayload):
        refund = money(sum((it.line_total for it in payload.items), Decimal("0")))
        return f"Remove {_items_text(payload.items)} from your order? This will reduce your total by ${refund}."
    if isinstance(payload, ModifyOrderItemPayload):
        diff = payload.price_difference
        if diff is None:
            return f"Change {payload.name} quantity to {payload.new_quantity}?"
        change = f"increase your total by ${diff}" if diff > 0 else f"reduce your total by ${abs(diff)}"
        return f"Change {payload.name} quantity from {payload.old_quantity} to {payload.new_quantity}? This will {change}."
    if isinstance(payload, ConfirmOrderPayload):
        lines = "\n".join(f"- {it.quantity}x {it.name} - ${it.line_total}" for it in payload.items)
        return f"I'll place this order for you:\n\n{lines}\n\nTotal: ${payload.total}\n\nShall I place this order?"
    if isinstance(payload, CancelOrderPayload):
        return f"Cancel your order? Reason: {payload.reason}"
    if isinstance(payload, RecommendationPayload):
        if payload.recommendations:
            names = ", ".join(r.name for r in payload.recommendations)
            return f"You might enjoy: {names}. Would you like to add any of these?"
        return "Would you like me to recommend some dishes?"
    if isinstance(payload, ClarificationPayload):
        return payload.question
    if isinstance(payload, SpecificOrderEditPayload):
        if payload.operation == "cancel":
            return f"Are you sure you want to cancel order #{payload.short_code}?"
        if payload.operation == "view":
            return f"You've selected order #{payload.short_code}. What would you like to do with this order?"
        if payload.items:
            return f"{payload.operation.capitalize()} {_items_text(payload.items)} on order #{payload.short_code}?"
        return f"What would you like to {payload.operation} on order #{payload.short_code}?"
    if isinstance(payload, NoActionPayload):
        return ""
    assert_never(payload)


def default_fallback_options(payload: ActionPayload) -> List[str]:
    if isinstance(payload, AddToOrderPayload):
        return ["show_alternatives", "modify_quantity"]
    if isinstance(payload, RemoveFromOrderPayload):
        return ["replace_with_alternative", "keep_item"]
    if isinstance(payload, ModifyOrderItemPayload):
        return ["keep_original_quantity", "try_different_quantity"]
    if isinstance(payload, ConfirmOrderPayload):
        return ["modify_quantities", "remove_items", "add_more_items"]
    if isinstance(payload, CancelOrderPayload):
        return ["keep_order", "modify_order"]
    if isinstance(payload, RecommendationPayload):
        return [r.name for r in payload.recommendations]
    if isinstance(payload, ClarificationPayload):
        return list(payload.options)
    if isinstance(payload, SpecificOrderEditPayload):
        return ["check_orders", "place_new_order"]
    if isinstance(payload, NoActionPayload):
        return []
    assert_never(payload)


def build_action(
    payload: ActionPayload,
    *,
    confidence: float,
    provenance: Provenance,
    restaurant_id: str,
    table_number: Optional[str] = None,
    session_id: Optional[str] = None,
    fallback_options: Optional[List[str]] = None,
) -> PendingAction:
    return PendingAction(
        payload=payload,
        description=describe(payload),
        confirmation_message=confirmation_text(payload),
        confidence=max(0.0, min(1.0, confidence)),
        provenance=provenance,
        fallback_options=fallback_options if fallback_options is not None else default_fallback_options(payload),
        restaurant_id=restaurant_id,
        table_number=table_number,
        session_id=session_id,
    )
