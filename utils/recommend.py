# utils/recommend.py
from __future__ import annotations
from decimal import Decimal
from typing_extensions import List, Protocol, Sequence, Tuple
import re

from models import ConversationTurn, MenuItem, OrderItem
from utils.actions import RecommendedItem

RankedItem = RecommendedItem


class Recommender(Protocol):
    def recommend(self, current_order: Sequence[OrderItem], history: Sequence[ConversationTurn],
                  user_message: str) -> List[RankedItem]: ...


DIETARY_KEYWORDS = {
    "vegetarian": ["vegetarian", "veggie", "no meat"],
    "vegan": ["vegan", "plant based", "plant-based"],
    "gluten-free": ["gluten free", "gluten-free", "celiac", "no gluten"],
    "spicy": ["spicy", "hot", "heat"],
    "healthy": ["healthy", "light", "low calorie", "salad"],
}

DESSERT_THRESHOLD = Decimal("25")


def _category(item: MenuItem) -> str:
    c = (item.category or "").lower()
    if any(k in c for k in ("drink", "beverage", "bar", "wine", "coffee")):
        return "drink"
    if any(k in c for k in ("side", "starter", "appetizer", "small")):
        return "side"
    if any(k in c for k in ("dessert", "sweet")):
        return "dessert"
    if any(k in c for k in ("main", "entree", "pizza", "pasta", "burger", "bowl")):
        return "main"
    return "other"


class MenuRecommender:
    """Rule-based suggestions drawn from the menu: dietary match, complementary courses, popular picks."""

    def __init__(self, menu_items: Sequence[MenuItem], limit: int = 3):
        self.menu = [m for m in menu_items if m.available]
        self.limit = limit

    def _dietary_wants(self, text: str) -> List[str]:
        t = (text or "").lower()
        return [tag for tag, words in DIETARY_KEYWORDS.items() if any(w in t for w in words)]

    def recommend(self, current_order: Sequence[OrderItem], history: Sequence[ConversationTurn] = (),
                  user_message: str = "") -> List[RankedItem]:
        ordered_ids = {it.menu_item_id for it in current_order}
        by_id = {m.id: m for m in self.menu}
        cats = {_category(by_id[i]) for i in ordered_ids if i in by_id}
        value = sum((it.price_at_time * it.quantity for it in current_order), Decimal("0"))

        # (priority, confidence, item, reason)
        picks: List[Tuple[int, float, MenuItem, str]] = []
        candidates = [m for m in self.menu if m.id not in ordered_ids]

        recent = " ".join(t.content for t in list(history)[-3:] if t.role == "user")
        for tag in self._dietary_wants(f"{user_message} {recent}"):
            for m in candidates:
                blob = " ".join(m.dietary_tags + [m.name, m.description]).lower()
                if tag in blob or re.sub("-", " ", tag) in blob:
                    picks.append((9, 0.9, m, f"matches your {tag} preference"))

        if "main" in cats and "drink" not in cats:
            picks += [(8, 0.9, m, "a drink to go with your meal") for m in candidates if _category(m) == "drink"]
        if "main" in cats and "side" not in cats:
            picks += [(7, 0.8, m, "pairs well with your main") for m in candidates if _category(m) == "side"]
        if value > DESSERT_THRESHOLD and "dessert" not in cats:
            picks += [(6, 0.7, m, "something sweet to finish") for m in candidates if _category(m) == "dessert"]

        popular = [m for m in candidates if {"popular", "signature", "chef"} & {t.lower() for t in m.dietary_tags}]
        picks += [(5, 0.6, m, "a guest favourite") for m in popular]
        if not picks:
            picks += [(3, 0.5, m, "from our menu") for m in candidates if _category(m) == "main"]

        picks.sort(key=lambda p: (-(p[0] * p[1]), p[2].name))
        out: List[RankedItem] = []
        seen = set()
        for priority, conf, m, reason in picks:
            if m.id in seen:
                continue
            seen.add(m.id)
            out.append(RankedItem(menu_item_id=m.id, name=m.name, price=m.price, reason=reason,
                                  score=round(priority * conf, 2)))
            if len(out) >= self.limit:
                break
        return out
