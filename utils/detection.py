# utils/detection.py
"""
Action detection.

`GenerativeDetector` asks the function-calling backend which declared
function (if any) the guest's message maps to, and turns the reply into a
typed payload. It reports every failure as a `GenerativeOutcome` with
`ok=False` instead of raising.

`HybridDetector` is the entry point: generative first, the deterministic
`PatternMatcher` when that path fails or is unsure about something that would
change an order.
"""
from __future__ import annotations
from typing import Any, Callable, Dict, List, Optional, Sequence
import json, logging, re

import requests
from pydantic import BaseModel, Field, ValidationError
from langsmith import traceable

from app.logging_hooks import detection_logger
from models import ConversationTurn, CustomerSession, MenuItem, Order, OrderItem, OrderStatus
from utils import llm
from utils.actions import (
    ActionKind, ActionPayload, AddToOrderPayload, CancelOrderPayload, ClarificationPayload,
    ConfirmOrderPayload, ModifyOrderItemPayload, NoActionPayload, ParsedItem, PendingAction,
    Provenance, RecommendationPayload, RemoveFromOrderPayload, SpecificOrderEditPayload,
    build_action, mutates_order,
)
from utils.config import DetectorSettings
from utils.context import build_messages
from utils.errors import ContextError, ErrorKind, LLMError
from utils.functions import (
    AddToOrderArgs, CancelOrderArgs, ConfirmOrderArgs, FUNCTIONS_BY_NAME, ItemArg, ModifyOrderItemArgs,
    NoActionArgs, RemoveFromOrderArgs, RequestClarificationArgs, RequestRecommendationArgs,
    SpecificOrderEditArgs, tool_declarations,
)
from utils.nlu import PatternMatcher
from utils.recommend import MenuRecommender, Recommender

logger = logging.getLogger(__name__)

# Base confidence per declared function before completeness / hedging adjustments
BASE_CONFIDENCE: Dict[ActionKind, float] = {
    ActionKind.CONFIRM_ORDER: 0.80,
    ActionKind.ADD_TO_ORDER: 0.75,
    ActionKind.REMOVE_FROM_ORDER: 0.75,
    ActionKind.MODIFY_ORDER_ITEM: 0.70,
    ActionKind.CANCEL_ORDER: 0.85,
    ActionKind.REQUEST_RECOMMENDATION: 0.80,
    ActionKind.REQUEST_CLARIFICATION: 0.60,
    ActionKind.SPECIFIC_ORDER_EDIT: 0.75,
    ActionKind.NO_ACTION: 0.90,
}

_HEDGES = re.compile(
    r"\b(maybe|perhaps|not\s+sure|i\s+think|i\s+guess|might|possibly|probably|unclear|i\s+assume)\b", re.I
)
_CLOSURE = re.compile(
    r"\b(thank(?:s| you)|you'?re\s+welcome|bye|goodbye|enjoy|have\s+a\s+(?:great|nice|good|lovely)|no\s+problem|my\s+pleasure|see\s+you)\b",
    re.I,
)

LLMCall = Callable[..., llm.LLMReply]


class DetectionContext(BaseModel):
    restaurant_id: str
    table_number: Optional[str] = None
    restaurant_name: Optional[str] = None
    menu_items: List[MenuItem] = Field(default_factory=list)
    history: List[ConversationTurn] = Field(default_factory=list)
    current_orders: List[Order] = Field(default_factory=list)
    session: Optional[CustomerSession] = None

    @property
    def open_items(self) -> List[OrderItem]:
        return [it for o in self.current_orders if o.status != OrderStatus.CANCELLED for it in o.items]


class GenerativeOutcome(BaseModel):
    ok: bool
    payload: Optional[ActionPayload] = None
    confidence: Optional[float] = None
    reasoning: str = ""
    response_text: str = ""
    failure: Optional[ErrorKind] = None


class DetectionResult(BaseModel):
    action: Optional[PendingAction] = None
    confidence: float
    used_fallback: bool
    reasoning: str
    response_text: str = ""
    provenance: Provenance = Provenance.NONE


class _Unresolved(Exception):
    pass


def _failed(kind: ErrorKind, reason: str, text: str = "") -> GenerativeOutcome:
    return GenerativeOutcome(ok=False, failure=kind, reasoning=reason, response_text=text)


# ========= Generative =========
class GenerativeDetector:
    def __init__(self, call: Optional[LLMCall] = None, settings: Optional[DetectorSettings] = None):
        self.call = call or llm.chat_with_tools
        self.settings = settings or DetectorSettings()

    # ---------- item resolution ----------
    @staticmethod
    def _resolve(arg: ItemArg, menu: Sequence[MenuItem]) -> MenuItem:
        available = [m for m in menu if m.available]
        if arg.menu_item_id:
            for m in available:
                if m.id == arg.menu_item_id:
                    return m
        name = arg.name.strip().lower()
        for m in available:
            if m.name.lower() == name:
                return m
        for m in available:
            if name in m.name.lower() or m.name.lower() in name:
                return m
        raise _Unresolved(arg.name)

    def _items(self, args: Sequence[ItemArg], menu: Sequence[MenuItem]) -> List[ParsedItem]:
        out = []
        for a in args:
            m = self._resolve(a, menu)
            out.append(ParsedItem(menu_item_id=m.id, name=m.name, quantity=a.quantity,
                                  unit_price=m.price, notes=a.notes))
        return out

    def _to_payload(self, args: BaseModel, context: DetectionContext) -> ActionPayload:
        menu = context.menu_items
        if isinstance(args, AddToOrderArgs):
            return AddToOrderPayload(items=self._items(args.items, menu), order_id=args.order_id)
        if isinstance(args, RemoveFromOrderArgs):
            return RemoveFromOrderPayload(items=self._items(args.items, menu), order_id=args.order_id)
        if isinstance(args, ModifyOrderItemArgs):
            m = self._resolve(ItemArg(name=args.name, menu_item_id=args.menu_item_id), menu)
            return ModifyOrderItemPayload(menu_item_id=m.id, name=m.name, unit_price=m.price,
                                          old_quantity=args.old_quantity, new_quantity=args.new_quantity,
                                          order_id=args.order_id, notes=args.notes)
        if isinstance(args, ConfirmOrderArgs):
            return ConfirmOrderPayload(items=self._items(args.items, menu), notes=args.notes)
        if isinstance(args, CancelOrderArgs):
            return CancelOrderPayload(order_id=args.order_id, reason=args.reason)
        if isinstance(args, RequestRecommendationArgs):
            return RecommendationPayload(preferences=args.preferences)
        if isinstance(args, RequestClarificationArgs):
            return ClarificationPayload(question=args.question, options=args.options)
        if isinstance(args, SpecificOrderEditArgs):
            return SpecificOrderEditPayload(order_ref=args.order_ref, operation=args.operation,
                                            items=self._items(args.items, menu))
        if isinstance(args, NoActionArgs):
            return NoActionPayload(reason=args.reason)
        raise TypeError(f"no payload for {type(args).__name__}")

    def _confidence(self, kind: ActionKind, args: BaseModel, text: str, menu: Sequence[MenuItem]) -> float:
        conf = BASE_CONFIDENCE[kind]
        items: List[ItemArg] = list(getattr(args, "items", []) or [])
        if items:
            ids = {m.id for m in menu}
            with_ids = sum(1 for a in items if a.menu_item_id in ids)
            conf += 0.1 * (with_ids / len(items))
            if kind is ActionKind.CONFIRM_ORDER:
                conf += 0.1
        if _HEDGES.search(text or ""):
            conf -= self.settings.hedge_penalty
        return round(max(0.1, min(1.0, conf)), 2)

    @traceable(name="Detect.generative", tags=["detection", "llm"])
    def detect(self, message: str, context: DetectionContext) -> GenerativeOutcome:
        msgs = build_messages(message, context.menu_items, context.history, context.current_orders,
                              context.restaurant_name, context.table_number, self.settings.history_window)
        try:
            reply = self.call(msgs, tool_declarations(), timeout=self.settings.llm_timeout)
        except (LLMError, requests.RequestException) as e:
            logger.warning("generative detection unavailable: %s", e)
            return _failed(ErrorKind.DETECTION_DEGRADED, f"generative call failed: {e}")

        text = reply.text or ""
        if not reply.function_name:
            closure = bool(_CLOSURE.search(text)) or bool(_CLOSURE.search(message))
            return GenerativeOutcome(
                ok=True,
                payload=NoActionPayload(reason="conversational closure" if closure else "informational reply"),
                confidence=0.9 if closure else 0.8,
                reasoning="no function call",
                response_text=text,
            )

        declared = FUNCTIONS_BY_NAME.get(reply.function_name)
        if declared is None:
            return _failed(ErrorKind.ARGUMENT_VALIDATION, f"unknown function '{reply.function_name}'", text)
        try:
            raw: Any = json.loads(reply.arguments or "{}")
            if not isinstance(raw, dict):
                raise ValueError("arguments are not a JSON object")
            args = declared.args_model.model_validate(raw)
        except (ValueError, ValidationError) as e:
            logger.info("rejected %s arguments: %s", declared.name, e)
            return _failed(ErrorKind.ARGUMENT_VALIDATION, f"invalid arguments for {declared.name}", text)

        try:
            payload = self._to_payload(args, context)
        except _Unresolved as e:
            return _failed(ErrorKind.ARGUMENT_VALIDATION, f"'{e}' is not on the menu", text)
        except ValidationError as e:
            return _failed(ErrorKind.ARGUMENT_VALIDATION, f"payload for {declared.name} invalid: {e.error_count()} error(s)", text)

        return GenerativeOutcome(
            ok=True,
            payload=payload,
            confidence=self._confidence(declared.kind, args, text, context.menu_items),
            reasoning=f"function call {declared.name}",
            response_text=text,
        )


# ========= Hybrid =========
class HybridDetector:
    def __init__(
        self,
        generative: Optional[GenerativeDetector] = None,
        settings: Optional[DetectorSettings] = None,
        recommender: Optional[Recommender] = None,
    ):
        self.settings = settings or DetectorSettings()
        self.generative = generative or GenerativeDetector(settings=self.settings)
        self.recommender = recommender

    def _enrich(self, payload: ActionPayload, message: str, context: DetectionContext) -> ActionPayload:
        if isinstance(payload, RecommendationPayload) and not payload.recommendations:
            rec = self.recommender or MenuRecommender(context.menu_items)
            picks = rec.recommend(context.open_items, context.history, message)
            return payload.model_copy(update={"recommendations": picks})
        if isinstance(payload, ModifyOrderItemPayload) and payload.old_quantity is None:
            for order in sorted(context.current_orders, key=lambda o: o.created_at, reverse=True):
                if order.status != OrderStatus.PENDING:
                    continue
                line = next((it for it in order.items if it.menu_item_id == payload.menu_item_id), None)
                if line is not None:
                    return payload.model_copy(update={"old_quantity": line.quantity,
                                                      "order_id": payload.order_id or order.id})
        return payload

    def _action(self, payload: ActionPayload, confidence: float, provenance: Provenance,
                message: str, context: DetectionContext) -> PendingAction:
        payload = self._enrich(payload, message, context)
        return build_action(
            payload,
            confidence=confidence,
            provenance=provenance,
            restaurant_id=context.restaurant_id,
            table_number=context.table_number,
            session_id=context.session.id if context.session else None,
        )

    def _finish(self, message: str, result: DetectionResult) -> DetectionResult:
        detection_logger(message, result.action.kind.value if result.action else None,
                         result.confidence, result.provenance.value, result.used_fallback)
        return result

    @traceable(name="Detect.hybrid", tags=["detection"])
    def detect(self, message: str, context: DetectionContext) -> DetectionResult:
        if not isinstance(message, str):
            raise ContextError("message must be a string")
        if not isinstance(context, DetectionContext) or not (context.restaurant_id or "").strip():
            raise ContextError("detection needs a restaurant id")

        gen: Optional[GenerativeOutcome] = None
        held: Optional[GenerativeOutcome] = None
        if self.settings.generative_enabled:
            gen = self.generative.detect(message, context)
            if gen.ok and gen.payload is not None and gen.confidence is not None:
                if isinstance(gen.payload, NoActionPayload):
                    return self._finish(message, DetectionResult(
                        action=None, confidence=gen.confidence, used_fallback=False,
                        reasoning=f"{gen.reasoning}: {gen.payload.reason}", response_text=gen.response_text,
                        provenance=Provenance.GENERATIVE,
                    ))
                if not (mutates_order(gen.payload) and gen.confidence < self.settings.fallback_floor):
                    action = self._action(gen.payload, gen.confidence, Provenance.GENERATIVE, message, context)
                    return self._finish(message, DetectionResult(
                        action=action, confidence=gen.confidence, used_fallback=False,
                        reasoning=gen.reasoning, response_text=gen.response_text or action.confirmation_message,
                        provenance=Provenance.GENERATIVE,
                    ))
                held = gen

        matcher = PatternMatcher(context.menu_items, self.settings)
        found = matcher.match(message, context.history)
        why = "generative disabled" if gen is None else (gen.reasoning if not gen.ok else "generative below floor")
        if found is not None:
            action = self._action(found.payload, found.confidence, Provenance.PATTERN, message, context)
            return self._finish(message, DetectionResult(
                action=action, confidence=found.confidence, used_fallback=True,
                reasoning=f"{why}; pattern: {found.reasoning}", response_text=action.confirmation_message,
                provenance=Provenance.PATTERN,
            ))

        if held is not None and held.payload is not None and held.confidence is not None:
            # nothing better found; keep the low-confidence candidate, it still needs confirmation
            action = self._action(held.payload, held.confidence, Provenance.GENERATIVE, message, context)
            return self._finish(message, DetectionResult(
                action=action, confidence=held.confidence, used_fallback=True,
                reasoning=f"{why}; pattern matcher found nothing", response_text=action.confirmation_message,
                provenance=Provenance.GENERATIVE,
            ))

        return self._finish(message, DetectionResult(
            action=None, confidence=self.settings.degraded_confidence, used_fallback=True,
            reasoning=f"{why}; pattern matcher found nothing",
            response_text=gen.response_text if gen is not None else "",
            provenance=Provenance.NONE,
        ))
