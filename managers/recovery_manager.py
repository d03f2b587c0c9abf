# managers/recovery_manager.py
"""
What to offer after the guest says no, or after an action could not run.

Dispatch is a closed switch on the rejected action's payload, so the advice
for a given action and menu is always the same.
"""
from typing import List, Optional, Sequence, Tuple
import logging, re

from pydantic import BaseModel, Field
from typing_extensions import assert_never

from models import ConversationTurn, MenuItem, OrderItem, OrderStatus
from utils.actions import (
    AddToOrderPayload, CancelOrderPayload, ClarificationPayload, ConfirmOrderPayload, ModifyOrderItemPayload,
    NoActionPayload, ParsedItem, PendingAction, Provenance, RecommendationPayload, RecommendedItem,
    RemoveFromOrderPayload, SpecificOrderEditPayload, build_action,
)
from utils.recommend import MenuRecommender, Recommender

logger = logging.getLogger(__name__)

CONFIRM_OPTIONS = ["Add more items", "Remove items", "Change quantities", "Start over"]


class RecoveryAdvice(BaseModel):
    message: str
    alternatives: List[PendingAction] = Field(default_factory=list)
    suggested_actions: List[str] = Field(default_factory=list)
    helpful_tips: List[str] = Field(default_factory=list)


def _words(name: str) -> List[str]:
    return [w for w in re.findall(r"[a-z]+", name.lower()) if len(w) > 2]


def similar_items(target_id: str, target_name: str, menu: Sequence[MenuItem], limit: int = 3) -> List[MenuItem]:
    """+2 per shared name word, +1 for the same category. Ties break on name."""
    target = next((m for m in menu if m.id == target_id), None)
    category = target.category.lower() if target is not None else ""
    words = set(_words(target_name))
    scored: List[Tuple[int, MenuItem]] = []
    for m in menu:
        if m.id == target_id or not m.available:
            continue
        score = 2 * len(words & set(_words(m.name)))
        if category and m.category.lower() == category:
            score += 1
        if score > 0:
            scored.append((score, m))
    scored.sort(key=lambda s: (-s[0], s[1].name))
    return [m for _, m in scored[:limit]]


class RecoveryAdvisor:
    def __init__(self, menu: Sequence[MenuItem], recommender: Optional[Recommender] = None):
        self.menu = list(menu)
        self.recommender = recommender or MenuRecommender(self.menu)

    def _recommendation(self, picks: List[RecommendedItem], preferences: str, rejected: PendingAction) -> PendingAction:
        return build_action(
            RecommendationPayload(preferences=preferences, recommendations=picks),
            confidence=1.0,
            provenance=Provenance.NONE,
            restaurant_id=rejected.restaurant_id,
            table_number=rejected.table_number,
            session_id=rejected.session_id,
        )

    def _clarification(self, question: str, options: List[str], rejected: PendingAction) -> PendingAction:
        return build_action(
            ClarificationPayload(question=question, options=options, original_request="modify your order"),
            confidence=1.0,
            provenance=Provenance.NONE,
            restaurant_id=rejected.restaurant_id,
            table_number=rejected.table_number,
            session_id=rejected.session_id,
        )

    # ---------- declined by the guest ----------
    def advise(self, rejected: PendingAction, current_order: Sequence[OrderItem] = (),
               history: Sequence[ConversationTurn] = (), user_message: str = "") -> RecoveryAdvice:
        p = rejected.payload
        if isinstance(p, AddToOrderPayload):
            return self._after_add(rejected, p.items, current_order, history, user_message)
        if isinstance(p, RemoveFromOrderPayload):
            names = ", ".join(it.name for it in p.items)
            return RecoveryAdvice(
                message=f"Alright, I'll keep the {names} in your order. Is there anything else you'd like to change?",
                suggested_actions=["Modify quantities", "Add more items", "Review current order"],
                helpful_tips=["You can change quantities instead of removing items completely"],
            )
        if isinstance(p, ModifyOrderItemPayload):
            qty = p.old_quantity if p.old_quantity is not None else "the original amount"
            return RecoveryAdvice(
                message=f"Got it, I'll leave the {p.name} quantity at {qty}. Would you like to change anything else?",
                suggested_actions=["Modify other items", "Add more items", "Remove items", "Review order summary"],
                helpful_tips=["Let me know if you want to try a different quantity"],
            )
        if isinstance(p, ConfirmOrderPayload):
            return RecoveryAdvice(
                message="That's perfectly fine! Would you like to add more items, change something, or start over?",
                alternatives=[self._clarification("What would you like to change?", list(CONFIRM_OPTIONS), rejected)],
                suggested_actions=list(CONFIRM_OPTIONS) + ["Get recommendations"],
                helpful_tips=["Take your time to get your order just right"],
            )
        if isinstance(p, CancelOrderPayload):
            return RecoveryAdvice(
                message="No worries! Your order is still active. What would you like to do next?",
                suggested_actions=["Continue with current order", "Add more items", "Modify existing items"],
                helpful_tips=["Your order is safe and ready when you are"],
            )
        if isinstance(p, SpecificOrderEditPayload):
            return RecoveryAdvice(
                message=f"Okay, order #{p.short_code} stays as it is. Anything else?",
                suggested_actions=["Check order status", "Place a new order"],
            )
        if isinstance(p, RecommendationPayload):
            return RecoveryAdvice(
                message="No problem! Tell me what you're in the mood for and I'll find something.",
                suggested_actions=["Browse menu", "Ask about dietary options", "See what's popular"],
            )
        if isinstance(p, ClarificationPayload):
            return RecoveryAdvice(
                message="Sorry for the confusion. Could you tell me the dish name as it appears on the menu?",
                suggested_actions=["Browse menu", "Get recommendations"],
            )
        if isinstance(p, NoActionPayload):
            return RecoveryAdvice(message="No problem! What would you like to do instead?",
                                  suggested_actions=["Browse menu", "Get recommendations", "Ask questions"])
        assert_never(p)

    def _after_add(self, rejected: PendingAction, items: List[ParsedItem], current_order: Sequence[OrderItem],
                   history: Sequence[ConversationTurn], user_message: str) -> RecoveryAdvice:
        first = items[0]
        alternatives: List[PendingAction] = []
        similar = similar_items(first.menu_item_id, first.name, self.menu)
        if similar:
            picks = [RecommendedItem(menu_item_id=m.id, name=m.name, price=m.price,
                                     reason=f"Similar to {first.name}", score=float(len(similar) - i))
                     for i, m in enumerate(similar)]
            alternatives.append(self._recommendation(picks, f"alternatives to {first.name}", rejected))
        if current_order:
            extra = self.recommender.recommend(current_order, history, user_message)
            if extra:
                alternatives.append(self._recommendation(extra[:1], "goes with your order", rejected))
        return RecoveryAdvice(
            message=f"No problem! Would you like something similar to {first.name}, or would you prefer to browse other options?",
            alternatives=alternatives,
            suggested_actions=["Show similar items", "Browse other categories", "Get personalized recommendations"],
            helpful_tips=["You can always ask me about ingredients or dietary options"],
        )

    # ---------- refused by the order policy ----------
    def advise_conflict(self, action: PendingAction, reason: str,
                        blocking_status: Optional[OrderStatus] = None) -> RecoveryAdvice:
        p = action.payload
        staff = blocking_status == OrderStatus.PREPARING
        if isinstance(p, AddToOrderPayload):
            fresh = build_action(
                ConfirmOrderPayload(items=p.items),
                confidence=action.confidence,
                provenance=Provenance.NONE,
                restaurant_id=action.restaurant_id,
                table_number=action.table_number,
                session_id=action.session_id,
            )
            return RecoveryAdvice(
                message=f"I'm sorry, but {reason.lower()}, so it can't be changed. Would you like to place a new order instead?",
                alternatives=[fresh],
                suggested_actions=["Place a new order", "Check order status"],
            )
        tip = ["A staff member can help with changes once the kitchen has started"] if staff else []
        return RecoveryAdvice(
            message=f"I'm sorry, but {reason.lower()}. Orders can't be changed at this stage.",
            suggested_actions=["Speak with staff", "Place a new order", "Check order status"],
            helpful_tips=tip,
        )

    def advise_unavailable(self) -> RecoveryAdvice:
        return RecoveryAdvice(
            message="I'm having a little trouble understanding that right now. Could you name the dish from the menu?",
            suggested_actions=["Browse menu", "Get recommendations", "Try again"],
            helpful_tips=["Try being specific, e.g. 'two Caesar Salads'"],
        )
