# managers/order_manager.py
"""
Order lifecycle.

Status transitions are a closed table: anything not listed is refused with a
`TransitionError` and the stored order is left as it was. Item edits and
cancellation go through the modifiability policy for the order's status.
Every successful write is followed by a session recount.
"""
from typing import Dict, FrozenSet, List, Literal, Optional, Sequence, Union
import logging

from pydantic import BaseModel, Field

from managers.session_manager import SessionManager
from models import MenuItem, Order, OrderItem, OrderStatus, utcnow
from utils import db
from utils.actions import ParsedItem
from utils.errors import ErrorKind, OrderNotFoundError

logger = logging.getLogger(__name__)

TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PREPARING, OrderStatus.CANCELLED}),
    OrderStatus.PREPARING: frozenset({OrderStatus.READY, OrderStatus.CANCELLED}),
    OrderStatus.READY: frozenset({OrderStatus.SERVED}),
    OrderStatus.SERVED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

LOCKING_STATUSES = frozenset({OrderStatus.PREPARING, OrderStatus.READY, OrderStatus.SERVED})


def can_transition(current: OrderStatus, new: OrderStatus) -> bool:
    return new in TRANSITIONS[current]


# ---------- modifiability policy ----------
class Modifiability(BaseModel):
    status: OrderStatus
    can_add: bool
    can_remove: bool
    can_modify: bool
    can_cancel: bool
    cancel_needs_staff: bool = False
    reason: str = ""


MODIFIABILITY: Dict[OrderStatus, Modifiability] = {
    OrderStatus.PENDING: Modifiability(status=OrderStatus.PENDING, can_add=True, can_remove=True,
                                       can_modify=True, can_cancel=True),
    OrderStatus.PREPARING: Modifiability(status=OrderStatus.PREPARING, can_add=False, can_remove=False,
                                         can_modify=False, can_cancel=True, cancel_needs_staff=True,
                                         reason="Your order is already being prepared"),
    OrderStatus.READY: Modifiability(status=OrderStatus.READY, can_add=False, can_remove=False,
                                     can_modify=False, can_cancel=False, reason="Your order is already ready"),
    OrderStatus.SERVED: Modifiability(status=OrderStatus.SERVED, can_add=False, can_remove=False,
                                      can_modify=False, can_cancel=False, reason="Your order has already been served"),
    OrderStatus.CANCELLED: Modifiability(status=OrderStatus.CANCELLED, can_add=False, can_remove=False,
                                         can_modify=False, can_cancel=False, reason="That order was cancelled"),
}

Operation = Literal["add", "remove", "modify", "cancel"]


def modifiability(status: OrderStatus) -> Modifiability:
    return MODIFIABILITY[status]


def allows(status: OrderStatus, operation: Operation) -> bool:
    policy = MODIFIABILITY[status]
    return {"add": policy.can_add, "remove": policy.can_remove,
            "modify": policy.can_modify, "cancel": policy.can_cancel}[operation]


# ---------- typed results ----------
class TransitionError(BaseModel):
    kind: ErrorKind = ErrorKind.INVALID_TRANSITION
    order_id: str
    current: OrderStatus
    attempted: OrderStatus

    @property
    def message(self) -> str:
        return f"invalid transition: order is {self.current.value}, cannot move to {self.attempted.value}"


class EditRejected(BaseModel):
    kind: ErrorKind
    order_id: str
    status: OrderStatus
    operation: str
    message: str


class SessionLock(BaseModel):
    locked: bool
    order_id: Optional[str] = None
    status: Optional[OrderStatus] = None
    reason: str = ""


class OrderLine(BaseModel):
    menu_item_id: str
    quantity: int = Field(default=1, ge=1)
    notes: Optional[str] = None


# only id, quantity and notes are read; prices always come from the menu
LineRequest = Union[OrderLine, ParsedItem]


class UnknownMenuItemError(LookupError):
    def __init__(self, menu_item_id: str):
        super().__init__(f"menu item {menu_item_id} is not available")
        self.menu_item_id = menu_item_id


EditResult = Union[Order, EditRejected]


class OrderManager:
    def __init__(self, store: db.Store, sessions: SessionManager, recent_window: int = 5):
        self.store = store
        self.sessions = sessions
        self.recent_window = recent_window

    # ---------- helpers ----------
    def _menu(self, restaurant_id: str) -> Dict[str, MenuItem]:
        return {m.id: m for m in self.store.load_menu(restaurant_id)}

    def _price_lines(self, restaurant_id: str, items: Sequence[LineRequest]) -> List[OrderItem]:
        """Prices are taken from the current menu at order time, not from the request."""
        menu = self._menu(restaurant_id)
        lines: List[OrderItem] = []
        for it in items:
            m = menu.get(it.menu_item_id)
            if m is None or not m.available:
                raise UnknownMenuItemError(it.menu_item_id)
            lines.append(OrderItem(menu_item_id=m.id, name=m.name, quantity=it.quantity,
                                   price_at_time=m.price, notes=it.notes))
        return lines

    def get_order(self, order_id: str) -> Order:
        order = self.store.get_order(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    # ---------- creation ----------
    def create_order(self, restaurant_id: str, table_number: str, items: Sequence[LineRequest],
                     notes: Optional[str] = None) -> Order:
        if not items:
            raise ValueError("an order needs at least one item")
        lines = self._price_lines(restaurant_id, items)
        session = self.sessions.get_or_create_active_session(restaurant_id, table_number)
        order = Order(restaurant_id=restaurant_id, session_id=session.id, table_number=table_number,
                      items=lines, notes=notes)
        self.store.save_order(order)
        self.store.add_order_to_session(session.id, order.id)
        self.sessions.recompute_session_stats(session.id)
        logger.info("order #%s created for %s/%s total=%s", order.short_code, restaurant_id, table_number, order.total)
        return order

    # ---------- status ----------
    def update_order_status(self, order_id: str, new_status: OrderStatus) -> Union[Order, TransitionError]:
        rejected: Dict[str, TransitionError] = {}

        def _move(o: Order) -> Optional[Order]:
            rejected.clear()
            if not can_transition(o.status, new_status):
                rejected["err"] = TransitionError(order_id=o.id, current=o.status, attempted=new_status)
                return None
            return o.model_copy(update={"status": new_status, "updated_at": utcnow()})

        order = self.store.update(db.order_key(order_id), Order, _move)
        if order is None:
            raise OrderNotFoundError(order_id)
        if "err" in rejected:
            logger.info(rejected["err"].message)
            return rejected["err"]
        self.sessions.recompute_session_stats(order.session_id)
        return order

    # ---------- item edits ----------
    def _edit(self, order_id: str, operation: Operation, change) -> EditResult:
        rejected: Dict[str, EditRejected] = {}

        def _apply(o: Order) -> Optional[Order]:
            rejected.clear()
            if not allows(o.status, operation):
                rejected["err"] = EditRejected(kind=ErrorKind.CONCURRENT_MODIFICATION, order_id=o.id, status=o.status,
                                               operation=operation, message=MODIFIABILITY[o.status].reason)
                return None
            out = change(o)
            if isinstance(out, EditRejected):
                rejected["err"] = out
                return None
            return out.model_copy(update={"updated_at": utcnow()})

        order = self.store.update(db.order_key(order_id), Order, _apply)
        if order is None:
            raise OrderNotFoundError(order_id)
        if "err" in rejected:
            return rejected["err"]
        self.sessions.recompute_session_stats(order.session_id)
        return order

    def add_items(self, order_id: str, items: Sequence[LineRequest]) -> EditResult:
        current = self.get_order(order_id)
        lines = self._price_lines(current.restaurant_id, items)

        def _add(o: Order):
            merged = [it.model_copy() for it in o.items]
            for new in lines:
                same = next((it for it in merged if it.menu_item_id == new.menu_item_id and it.notes == new.notes), None)
                if same is not None:
                    # keep the price the line was first captured at
                    same.quantity += new.quantity
                else:
                    merged.append(new)
            return o.model_copy(update={"items": merged})

        return self._edit(order_id, "add", _add)

    def remove_item(self, order_id: str, menu_item_id: str, quantity: Optional[int] = None) -> EditResult:
        def _remove(o: Order):
            line = next((it for it in o.items if it.menu_item_id == menu_item_id), None)
            if line is None:
                return EditRejected(kind=ErrorKind.ARGUMENT_VALIDATION, order_id=o.id, status=o.status,
                                    operation="remove", message="That item isn't in your order")
            if quantity is None or quantity >= line.quantity:
                items = [it for it in o.items if it is not line]
            else:
                items = [it.model_copy(update={"quantity": it.quantity - quantity}) if it is line else it
                         for it in o.items]
            if not items:
                # last line gone: the order goes away with it
                return o.model_copy(update={"items": items, "status": OrderStatus.CANCELLED})
            return o.model_copy(update={"items": items})

        return self._edit(order_id, "remove", _remove)

    def change_quantity(self, order_id: str, menu_item_id: str, quantity: int, notes: Optional[str] = None) -> EditResult:
        if quantity < 1:
            raise ValueError("quantity must be at least 1; use remove_item to drop a line")

        def _change(o: Order):
            if not any(it.menu_item_id == menu_item_id for it in o.items):
                return EditRejected(kind=ErrorKind.ARGUMENT_VALIDATION, order_id=o.id, status=o.status,
                                    operation="modify", message="That item isn't in your order")
            items = [
                it.model_copy(update={"quantity": quantity, "notes": notes if notes is not None else it.notes})
                if it.menu_item_id == menu_item_id else it
                for it in o.items
            ]
            return o.model_copy(update={"items": items})

        return self._edit(order_id, "modify", _change)

    def cancel_order(self, order_id: str, reason: Optional[str] = None) -> EditResult:
        """PREPARING orders may still be cancelled, but are flagged for staff."""
        def _cancel(o: Order):
            flag = MODIFIABILITY[o.status].cancel_needs_staff
            note = o.notes if not reason else f"{o.notes + '; ' if o.notes else ''}cancelled: {reason}"
            return o.model_copy(update={"status": OrderStatus.CANCELLED, "needs_staff_attention": flag,
                                        "notes": note})

        return self._edit(order_id, "cancel", _cancel)

    # ---------- queries ----------
    def recent_orders(self, session_id: str, limit: Optional[int] = None) -> List[Order]:
        live = [o for o in self.store.session_orders(session_id) if o.status != OrderStatus.CANCELLED]
        return live[-(limit or self.recent_window):]

    def session_lock(self, session_id: str) -> SessionLock:
        for o in reversed(self.recent_orders(session_id)):
            if o.status in LOCKING_STATUSES:
                return SessionLock(locked=True, order_id=o.id, status=o.status,
                                   reason=f"Your order is already {o.status.value.lower()}")
        return SessionLock(locked=False)

    def latest_open_order(self, session_id: str, menu_item_id: Optional[str] = None) -> Optional[Order]:
        pending = [o for o in self.store.session_orders(session_id) if o.status == OrderStatus.PENDING]
        if menu_item_id:
            holding = [o for o in pending if any(it.menu_item_id == menu_item_id for it in o.items)]
            if holding:
                return holding[-1]
        return pending[-1] if pending else None

    def latest_cancellable_order(self, session_id: str) -> Optional[Order]:
        live = [o for o in self.store.session_orders(session_id) if allows(o.status, "cancel")]
        return live[-1] if live else None

    def resolve_order(self, session_id: str, short_code: str) -> Optional[Order]:
        code = short_code.lstrip("#").upper()
        for o in reversed(self.store.session_orders(session_id)):
            if o.short_code == code:
                return o
        return None
