# managers/action_manager.py
"""
Pending action lifecycle: propose, confirm, decline, expire.

Order-changing actions are stored as PROPOSED with a time box and only run
after an explicit confirm. Every status move is a compare-and-set against the
stored record, so a late confirm and an expiry cannot both win.
"""
from datetime import datetime
from typing import Callable, Dict, Literal, Optional, Union
import logging

from pydantic import BaseModel
from typing_extensions import assert_never

from app.logging_hooks import action_logger
from managers.order_manager import (
    EditRejected, OrderManager, TransitionError, UnknownMenuItemError, allows, MODIFIABILITY,
)
from managers.session_manager import SessionManager
from models import CustomerSession, Order, OrderStatus, utcnow
from utils import db
from utils.actions import (
    ActionStatus, AddToOrderPayload, CancelOrderPayload, ClarificationPayload, ConfirmOrderPayload,
    ModifyOrderItemPayload, NoActionPayload, PendingAction, RecommendationPayload, RemoveFromOrderPayload,
    SpecificOrderEditPayload,
)
from utils.config import DetectorSettings
from utils.errors import ErrorKind, OrderNotFoundError

logger = logging.getLogger(__name__)

OutcomeStatus = Literal["proposed", "executed", "rejected", "conflict", "expired", "not_found", "declined", "invalid_state"]

# extra seconds the record outlives its confirm window, so a late confirm reads "expired" not "not found"
EXPIRY_GRACE_SECONDS = 600


class ActionOutcome(BaseModel):
    status: OutcomeStatus
    action: Optional[PendingAction] = None
    order: Optional[Order] = None
    message: str = ""
    error: Optional[ErrorKind] = None
    blocking_status: Optional[OrderStatus] = None


class PolicyBlock(BaseModel):
    reason: str
    order_id: Optional[str] = None
    status: Optional[OrderStatus] = None


Executed = Union[Order, None, EditRejected, TransitionError, PolicyBlock]


class ActionManager:
    def __init__(self, store: db.Store, orders: OrderManager, sessions: SessionManager,
                 settings: Optional[DetectorSettings] = None, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.orders = orders
        self.sessions = sessions
        self.settings = settings or DetectorSettings()
        self.clock = clock

    # ---------- storage ----------
    def get(self, action_id: str) -> Optional[PendingAction]:
        return self.store.get_model(db.action_key(action_id), PendingAction)

    def _save(self, action: PendingAction) -> None:
        self.store.put_model(db.action_key(action.id), action,
                             ttl=self.settings.action_ttl_seconds + EXPIRY_GRACE_SECONDS)

    def _set_status(self, action_id: str, status: ActionStatus) -> Optional[PendingAction]:
        return self.store.update(db.action_key(action_id), PendingAction,
                                 lambda a: a.model_copy(update={"status": status}), keep_ttl=True)

    def _session(self, action: PendingAction) -> Optional[CustomerSession]:
        if action.session_id:
            s = self.store.get_session(action.session_id)
            if s is not None:
                return s
        if action.table_number is None:
            return None
        return self.sessions.find_active_session(action.restaurant_id, action.table_number)

    # ---------- policy ----------
    def _target(self, action: PendingAction, session: Optional[CustomerSession]) -> Optional[Order]:
        p = action.payload
        order_id = getattr(p, "order_id", None)
        if order_id:
            return self.store.get_order(order_id)
        if session is None:
            return None
        if isinstance(p, SpecificOrderEditPayload):
            return self.orders.resolve_order(session.id, p.short_code)
        if isinstance(p, CancelOrderPayload):
            return self.orders.latest_cancellable_order(session.id) or self._latest(session)
        item_id = None
        if isinstance(p, ModifyOrderItemPayload):
            item_id = p.menu_item_id
        elif isinstance(p, RemoveFromOrderPayload):
            item_id = p.items[0].menu_item_id
        return self.orders.latest_open_order(session.id, item_id) or self._latest(session)

    def _latest(self, session: CustomerSession) -> Optional[Order]:
        recent = self.orders.recent_orders(session.id)
        return recent[-1] if recent else None

    def _block_for(self, order: Optional[Order], operation, missing: str) -> Optional[PolicyBlock]:
        if order is None:
            return PolicyBlock(reason=missing)
        if not allows(order.status, operation):
            return PolicyBlock(reason=MODIFIABILITY[order.status].reason, order_id=order.id, status=order.status)
        return None

    def check_policy(self, action: PendingAction) -> Optional[PolicyBlock]:
        """Would the modifiability policy refuse this action right now?"""
        p = action.payload
        session = self._session(action)
        lock = self.orders.session_lock(session.id) if session is not None else None

        if isinstance(p, AddToOrderPayload):
            if p.order_id:
                return self._block_for(self.store.get_order(p.order_id), "add", "I couldn't find that order")
            if lock is not None and lock.locked:
                return PolicyBlock(reason=lock.reason, order_id=lock.order_id, status=lock.status)
            return None
        if isinstance(p, (RemoveFromOrderPayload, ModifyOrderItemPayload)):
            op = "remove" if isinstance(p, RemoveFromOrderPayload) else "modify"
            if lock is not None and lock.locked and not p.order_id:
                return PolicyBlock(reason=lock.reason, order_id=lock.order_id, status=lock.status)
            return self._block_for(self._target(action, session), op, "You don't have an open order to change yet")
        if isinstance(p, CancelOrderPayload):
            return self._block_for(self._target(action, session), "cancel", "You don't have an order to cancel")
        if isinstance(p, SpecificOrderEditPayload):
            if p.operation == "view":
                return None
            target = self._target(action, session)
            return self._block_for(target, p.operation, f"I couldn't find order #{p.short_code}")
        if isinstance(p, (ConfirmOrderPayload, RecommendationPayload, ClarificationPayload, NoActionPayload)):
            return None
        assert_never(p)

    # ---------- lifecycle ----------
    def propose(self, action: PendingAction) -> ActionOutcome:
        # a clarification is answered by the next message, never by yes/no
        asks = isinstance(action.payload, ClarificationPayload)
        if not action.mutates_order and (asks or action.confidence >= self.settings.safe_auto_threshold):
            done = action.model_copy(update={"status": ActionStatus.EXECUTED})
            action_logger(done.id, done.kind.value, "auto_executed")
            return ActionOutcome(status="executed", action=done, message=done.confirmation_message)

        if action.mutates_order:
            block = self.check_policy(action)
            if block is not None:
                action_logger(action.id, action.kind.value, "rejected", block.reason)
                return ActionOutcome(status="rejected", action=action, message=block.reason,
                                     error=ErrorKind.CONCURRENT_MODIFICATION, blocking_status=block.status)

        proposed = action.model_copy(update={"status": ActionStatus.PROPOSED})
        self._save(proposed)
        action_logger(proposed.id, proposed.kind.value, "proposed")
        return ActionOutcome(status="proposed", action=proposed, message=proposed.confirmation_message)

    def _claim(self, action_id: str, target: ActionStatus) -> Union[PendingAction, ActionOutcome]:
        """PROPOSED -> target, or PROPOSED -> EXPIRED when the window has passed."""
        seen: Dict[str, ActionStatus] = {}

        def _cas(a: PendingAction) -> Optional[PendingAction]:
            seen["before"] = a.status
            if a.status != ActionStatus.PROPOSED:
                return None
            if a.is_expired(self.settings.action_ttl_seconds, self.clock()):
                return a.model_copy(update={"status": ActionStatus.EXPIRED})
            return a.model_copy(update={"status": target})

        action = self.store.update(db.action_key(action_id), PendingAction, _cas, keep_ttl=True)
        if action is None:
            return ActionOutcome(status="not_found", message="That request is no longer available. What would you like to do?",
                                 error=ErrorKind.ACTION_NOT_FOUND)
        if seen.get("before") != ActionStatus.PROPOSED:
            return ActionOutcome(status="invalid_state", action=action,
                                 message=f"That request was already {action.status.value.lower()}.")
        if action.status == ActionStatus.EXPIRED:
            action_logger(action.id, action.kind.value, "expired")
            return ActionOutcome(status="expired", action=action, error=ErrorKind.ACTION_EXPIRED,
                                 message="That request timed out. Could you tell me again what you'd like?")
        return action

    def confirm(self, action_id: str) -> ActionOutcome:
        action = self._claim(action_id, ActionStatus.CONFIRMED)
        if isinstance(action, ActionOutcome):
            return action

        result = self.execute(action)
        if isinstance(result, (EditRejected, TransitionError, PolicyBlock)):
            failed = self._set_status(action.id, ActionStatus.FAILED) or action
            if isinstance(result, PolicyBlock):
                reason, status = result.reason, result.status
            elif isinstance(result, TransitionError):
                reason, status = result.message, result.current
            else:
                reason, status = result.message, result.status
            action_logger(action.id, action.kind.value, "conflict", reason)
            return ActionOutcome(status="conflict", action=failed, error=ErrorKind.CONCURRENT_MODIFICATION,
                                 blocking_status=status,
                                 message=f"I couldn't do that: {reason}. Would you like to try something else?")

        done = self._set_status(action.id, ActionStatus.EXECUTED) or action
        action_logger(action.id, action.kind.value, "executed")
        return ActionOutcome(status="executed", action=done, order=result, message=self._done_text(done, result))

    def decline(self, action_id: str) -> ActionOutcome:
        action = self._claim(action_id, ActionStatus.DECLINED)
        if isinstance(action, ActionOutcome):
            return action
        action_logger(action.id, action.kind.value, "declined")
        return ActionOutcome(status="declined", action=action, message="No problem, I won't do that.")

    # ---------- execution ----------
    def execute(self, action: PendingAction) -> Executed:
        """Apply a confirmed action. The policy is re-checked since the order may have moved on."""
        try:
            return self._apply(action)
        except UnknownMenuItemError as e:
            name = next((it.name for it in getattr(action.payload, "items", []) or []
                         if it.menu_item_id == e.menu_item_id), e.menu_item_id)
            return PolicyBlock(reason=f"{name} is no longer available")
        except OrderNotFoundError:
            return PolicyBlock(reason="that order no longer exists")

    def _apply(self, action: PendingAction) -> Executed:
        p = action.payload
        block = self.check_policy(action) if action.mutates_order else None
        if block is not None:
            return block
        session = self._session(action)
        table = action.table_number or ""

        if isinstance(p, AddToOrderPayload):
            target = self.store.get_order(p.order_id) if p.order_id else (
                self.orders.latest_open_order(session.id) if session is not None else None)
            if target is None:
                return self.orders.create_order(action.restaurant_id, table, p.items)
            return self.orders.add_items(target.id, p.items)
        if isinstance(p, ConfirmOrderPayload):
            return self.orders.create_order(action.restaurant_id, table, p.items, notes=p.notes)
        if isinstance(p, RemoveFromOrderPayload):
            target = self._target(action, session)
            if target is None:
                return PolicyBlock(reason="You don't have an open order to change yet")
            out: Executed = target
            for it in p.items:
                out = self.orders.remove_item(target.id, it.menu_item_id, it.quantity)
                if not isinstance(out, Order):
                    return out
            return out
        if isinstance(p, ModifyOrderItemPayload):
            target = self._target(action, session)
            if target is None:
                return PolicyBlock(reason="You don't have an open order to change yet")
            return self.orders.change_quantity(target.id, p.menu_item_id, p.new_quantity, p.notes)
        if isinstance(p, CancelOrderPayload):
            target = self._target(action, session)
            if target is None:
                return PolicyBlock(reason="You don't have an order to cancel")
            return self.orders.cancel_order(target.id, p.reason)
        if isinstance(p, SpecificOrderEditPayload):
            target = self._target(action, session)
            if target is None:
                return PolicyBlock(reason=f"I couldn't find order #{p.short_code}")
            return self._edit_specific(target, p)
        if isinstance(p, (RecommendationPayload, ClarificationPayload, NoActionPayload)):
            return None
        assert_never(p)

    def _edit_specific(self, order: Order, p: SpecificOrderEditPayload) -> Executed:
        if p.operation == "view":
            return order
        if p.operation == "cancel":
            return self.orders.cancel_order(order.id, "customer request")
        if p.operation == "add":
            return self.orders.add_items(order.id, p.items) if p.items else order
        out: Executed = order
        for it in p.items:
            if p.operation == "remove":
                out = self.orders.remove_item(order.id, it.menu_item_id, it.quantity)
            else:
                out = self.orders.change_quantity(order.id, it.menu_item_id, it.quantity)
            if not isinstance(out, Order):
                return out
        return out

    @staticmethod
    def _done_text(action: PendingAction, order: Optional[Order]) -> str:
        if order is None:
            if isinstance(action.payload, RecommendationPayload):
                return "Great! Just tell me which one you'd like and how many."
            if isinstance(action.payload, ClarificationPayload):
                return "Okay, which option would you like?"
            return "Done."
        if order.status == OrderStatus.CANCELLED:
            extra = " A staff member will confirm with the kitchen." if order.needs_staff_attention else ""
            return f"Order #{order.short_code} has been cancelled.{extra}"
        return f"Done! Order #{order.short_code} now has: " + ", ".join(
            f"{it.quantity}x {it.name}" for it in order.items) + f". Total ${order.total}."
