# ordering.py
from typing import List, Dict, Any, Optional
import logging

from pydantic import BaseModel, Field

from managers.action_manager import ActionOutcome
from managers.recovery_manager import RecoveryAdvice
from managers.services import Services
from models import ConversationTurn, OrderStatus
from nodes.router import last_user_text
from utils.actions import ClarificationPayload, PendingAction, RecommendationPayload
from utils.detection import DetectionContext
from utils.validation import validate_node

logger = logging.getLogger(__name__)


# ---------- Schemas ----------
class TurnInput(BaseModel):
    session_id: str
    restaurant_id: str = Field(min_length=1)
    messages: List[Dict[str, str]] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)

class TurnOutput(BaseModel):
    session_id: str
    restaurant_id: str
    messages: List[Dict[str, str]] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)


# ---------- Helpers ----------
def _say(state: Dict[str, Any], text: str) -> None:
    if text:
        state.setdefault("messages", []).append({"role": "assistant", "content": text})


def _history(state: Dict[str, Any]) -> List[ConversationTurn]:
    msgs = [m for m in state.get("messages", []) if m.get("role") in ("user", "assistant") and m.get("content")]
    # the message being handled is not history yet
    if msgs and msgs[-1].get("role") == "user":
        msgs = msgs[:-1]
    return [ConversationTurn(role=m["role"], content=m["content"]) for m in msgs]


def _context(svc: Services, state: Dict[str, Any]) -> DetectionContext:
    rid = state.get("restaurant_id", "")
    table = state.get("table_number")
    session = svc.sessions.find_active_session(rid, table) if table else None
    orders = svc.orders.recent_orders(session.id) if session else []
    return DetectionContext(
        restaurant_id=rid,
        table_number=table,
        restaurant_name=(state.get("metadata") or {}).get("restaurant_name"),
        menu_items=svc.store.load_menu(rid),
        history=_history(state),
        current_orders=orders,
        session=session,
    )


def _present(action: PendingAction) -> str:
    """Text for an action shown without asking for a yes/no."""
    p = action.payload
    if isinstance(p, RecommendationPayload) and p.recommendations:
        lines = "\n".join(f"- {r.name} (${r.price}) - {r.reason}" for r in p.recommendations)
        return f"Here are a few suggestions:\n{lines}\nWould you like to add any of these?"
    if isinstance(p, ClarificationPayload):
        opts = "\n".join(f"- {o}" for o in p.options)
        return f"{p.question}\n{opts}" if opts else p.question
    return action.confirmation_message


def _offer(svc: Services, state: Dict[str, Any], outcome: ActionOutcome) -> None:
    md = state.setdefault("metadata", {})
    md["last_outcome"] = {"status": outcome.status, "error": outcome.error.value if outcome.error else None}
    if outcome.status == "proposed" and outcome.action is not None:
        md["pending_action_id"] = outcome.action.id
        _say(state, f"{_present(outcome.action)} (yes/no)")
    elif outcome.status == "executed" and outcome.action is not None:
        _say(state, _present(outcome.action))


def _recover(svc: Services, state: Dict[str, Any], advice: RecoveryAdvice) -> None:
    md = state.setdefault("metadata", {})
    _say(state, advice.message)
    md["suggested_actions"] = advice.suggested_actions
    md["helpful_tips"] = advice.helpful_tips
    if advice.alternatives:
        _offer(svc, state, svc.actions.propose(advice.alternatives[0]))


def _open_items(svc: Services, state: Dict[str, Any]):
    ctx_orders = _context(svc, state).current_orders
    return [it for o in ctx_orders if o.status == OrderStatus.PENDING for it in o.items]


# ---------- Nodes ----------
def make_detect_node(svc: Services):
    @validate_node(name="Detect", tags=["ordering", "detect"], input_model=TurnInput, output_model=TurnOutput)
    def detect_node(state: Dict[str, Any]) -> Dict[str, Any]:
        md: Dict[str, Any] = state.setdefault("metadata", {})
        text = last_user_text(state)
        md.pop("pending_action_id", None)

        ctx = _context(svc, state)
        result = svc.detector.detect(text, ctx)
        md["last_detection"] = {
            "kind": result.action.kind.value if result.action else None,
            "confidence": result.confidence,
            "used_fallback": result.used_fallback,
            "provenance": result.provenance.value,
            "reasoning": result.reasoning,
        }

        if result.action is None:
            if result.response_text:
                _say(state, result.response_text)
            elif result.used_fallback:
                _recover(svc, state, svc.advisor(ctx.restaurant_id).advise_unavailable())
            else:
                _say(state, "Happy to help! What can I get for you?")
            return state

        outcome = svc.actions.propose(result.action)
        if outcome.status == "rejected":
            md["last_outcome"] = {"status": outcome.status, "error": outcome.error.value if outcome.error else None}
            advice = svc.advisor(ctx.restaurant_id).advise_conflict(result.action, outcome.message,
                                                                      outcome.blocking_status)
            _recover(svc, state, advice)
            return state

        _offer(svc, state, outcome)
        return state

    return detect_node


def make_confirm_node(svc: Services):
    @validate_node(name="Confirm", tags=["ordering", "confirm"], input_model=TurnInput, output_model=TurnOutput)
    def confirm_node(state: Dict[str, Any]) -> Dict[str, Any]:
        md: Dict[str, Any] = state.setdefault("metadata", {})
        action_id: Optional[str] = md.pop("pending_action_id", None)
        if not action_id:
            _say(state, "There's nothing waiting for confirmation. What would you like?")
            return state

        outcome = svc.actions.confirm(action_id)
        md["last_outcome"] = {"status": outcome.status, "error": outcome.error.value if outcome.error else None}
        if outcome.order is not None:
            md["last_order_id"] = outcome.order.id

        if outcome.status == "conflict" and outcome.blocking_status is None:
            # nothing to work around: the item or order is gone
            _say(state, outcome.message)
            md["suggested_actions"] = ["Browse menu", "Get recommendations"]
            return state

        if outcome.status == "conflict" and outcome.action is not None:
            _say(state, outcome.message)
            advice = svc.advisor(outcome.action.restaurant_id).advise_conflict(
                outcome.action, outcome.message, outcome.blocking_status)
            md["suggested_actions"] = advice.suggested_actions
            if advice.alternatives:
                _offer(svc, state, svc.actions.propose(advice.alternatives[0]))
            return state

        _say(state, outcome.message)
        return state

    return confirm_node


def make_decline_node(svc: Services):
    @validate_node(name="Decline", tags=["ordering", "decline"], input_model=TurnInput, output_model=TurnOutput)
    def decline_node(state: Dict[str, Any]) -> Dict[str, Any]:
        md: Dict[str, Any] = state.setdefault("metadata", {})
        action_id: Optional[str] = md.pop("pending_action_id", None)
        outcome = svc.actions.decline(action_id or "")
        md["last_outcome"] = {"status": outcome.status, "error": outcome.error.value if outcome.error else None}

        if outcome.status != "declined" or outcome.action is None:
            _say(state, outcome.message)
            return state

        advisor = svc.advisor(outcome.action.restaurant_id)
        advice = advisor.advise(outcome.action, _open_items(svc, state), _history(state), last_user_text(state))
        _recover(svc, state, advice)
        return state

    return decline_node
