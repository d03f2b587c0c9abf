# utils/nlu.py
"""
Deterministic pattern matcher.

Regex/keyword detection over menu item names and action verbs. It has no
semantic understanding, so its confidence is held inside a low band
(`DetectorSettings.pattern_min`..`pattern_max`). It never raises: a message it
cannot make sense of simply yields None.
"""
from __future__ import annotations
from typing import Dict, List, Optional, Tuple
import difflib, logging, re

from pydantic import BaseModel
from langsmith import traceable

from models import ConversationTurn, MenuItem
from utils.actions import (
    ActionPayload, AddToOrderPayload, CancelOrderPayload, ClarificationPayload, ConfirmOrderPayload,
    ModifyOrderItemPayload, ParsedItem, RecommendationPayload, RemoveFromOrderPayload,
    SpecificOrderEditPayload,
)
from utils.config import DetectorSettings
from utils.functions import MAX_ITEM_QUANTITY

logger = logging.getLogger(__name__)

# ========= Vocab =========
NUMBER_WORDS: Dict[str, int] = {
    "a": 1, "an": 1, "one": 1, "single": 1,
    "two": 2, "couple": 2, "pair": 2, "double": 2,
    "three": 3, "few": 3, "four": 4, "five": 5, "six": 6, "seven": 7,
    "eight": 8, "nine": 9, "ten": 10, "eleven": 11, "twelve": 12, "dozen": 12,
}
ARTICLES = {"a", "an"}

_NUM_WORDS_RE = "|".join(sorted(NUMBER_WORDS, key=len, reverse=True))
_QTY_BEFORE = re.compile(
    r"(?:(?<![\w#])(\d{1,3})|\b(" + _NUM_WORDS_RE + r"))\s*(?:x\s+)?(?:of\s+)?(?:(?:the|your|those|these)\s+)?[\"']?$",
    re.I,
)
_QTY_AFTER = re.compile(r"^[\"']?\s*(?:x\s*(\d{1,3})\b|\(\s*(\d{1,3})\s*\))", re.I)

_ADD_VERBS = re.compile(
    r"\b(add|get\s+me|give\s+me|(?:i'll|i\s+will|i'd|we'll|we\s+will|we'd)\s+(?:have|like|take)|i\s+want|we\s+want"
    r"|can\s+(?:i|we)\s+(?:get|have)|bring|order|another|one\s+more)\b",
    re.I,
)
_REMOVE_VERBS = re.compile(r"\b(remove|delete|drop|take\s+(?:off|out)|no\s+more|(?:don'?t|do\s+not)\s+want)\b", re.I)
_CANCEL_VERBS = re.compile(r"\b(cancel|call\s+off|scrap)\b", re.I)
_MODIFY_VERBS = re.compile(r"\b(change|make\s+(?:it|that|them)|update|switch|instead\s+of|only\s+want)\b", re.I)
_CONFIRM_VERBS = re.compile(
    r"\b(confirm|place\s+(?:my|the|our|this)?\s*order|that'?s\s+(?:all|it)|that\s+is\s+(?:all|it)|ready\s+to\s+order|send\s+it)\b",
    re.I,
)
_RECOMMEND_VERBS = re.compile(
    r"\b(recommend\w*|suggest\w*|what'?s\s+good|what\s+should\s+(?:i|we)|popular|best\s+dish|surprise\s+me|chef'?s\s+special)\b",
    re.I,
)
_ORDER_VOCAB = re.compile(r"\b(order|want|like|have|get|add|hungry|eat|drink|food|dish|plate|bring)\b", re.I)
_ORDER_REF = re.compile(r"#\s*([a-z0-9]{6})\b", re.I)
_BARE_NUMBER = re.compile(r"\b(\d{1,3})\b")

# Replies to a pending confirmation
YES_SET = {"yes", "y", "ok", "okay", "yeah", "yep", "yup", "sure", "confirm", "place", "proceed",
           "go ahead", "do it", "please", "yes please", "sounds good", "perfect", "absolutely", "definitely"}
NO_SET = {"no", "n", "nope", "nah", "cancel", "not now", "no thanks", "never mind", "nevermind", "stop", "dont", "don't"}


def _qty(raw: str) -> int:
    return max(1, min(MAX_ITEM_QUANTITY, int(raw)))


def _norm(s: str) -> str:
    return re.sub(r"[^a-z0-9'\s]", "", (s or "").lower()).strip()


def is_positive_reply(text: str) -> bool:
    t = _norm(text)
    return t in YES_SET or any(t.startswith(y + " ") for y in ("yes", "yeah", "yep", "sure", "ok", "okay"))


def is_negative_reply(text: str) -> bool:
    t = _norm(text)
    return t in NO_SET or any(t.startswith(n + " ") for n in ("no", "nope", "nah"))


# ========= Types =========
class ItemMention(BaseModel):
    item: MenuItem
    quantity: int
    explicit_quantity: bool
    start: int
    end: int


class PatternMatch(BaseModel):
    payload: ActionPayload
    confidence: float
    reasoning: str


# ========= Matcher =========
class PatternMatcher:
    def __init__(self, menu_items: List[MenuItem], settings: Optional[DetectorSettings] = None):
        self.settings = settings or DetectorSettings()
        self.menu = [m for m in menu_items if m.available]
        # longest names first so "chicken caesar salad" wins over "caesar salad"
        self._patterns: List[Tuple[MenuItem, re.Pattern]] = [
            (m, self._compile_name(m.name)) for m in sorted(self.menu, key=lambda m: len(m.name), reverse=True)
        ]

    @staticmethod
    def _compile_name(name: str) -> re.Pattern:
        words = [re.escape(w) for w in name.lower().split()]
        body = r"[\s\-]+".join(words)
        # exact, plural, possessive; quotes fall outside the word boundaries
        return re.compile(r"(?<![a-z0-9])" + body + r"(?P<plural>e?s)?(?:'s)?(?![a-z0-9])", re.I)

    def _quantity_for(self, text: str, start: int, end: int, plural: bool) -> Tuple[int, bool]:
        before = _QTY_BEFORE.search(text[:start])
        if before:
            if before.group(1):
                return _qty(before.group(1)), True
            word = before.group(2).lower()
            if word not in ARTICLES:
                return NUMBER_WORDS[word], True
        after = _QTY_AFTER.search(text[end:])
        if after:
            return _qty(after.group(1) or after.group(2)), True
        return (2, False) if plural else (1, False)

    def extract_items(self, text: str) -> List[ItemMention]:
        taken: List[Tuple[int, int]] = []
        found: List[ItemMention] = []
        for item, pattern in self._patterns:
            for m in pattern.finditer(text):
                s, e = m.span()
                if any(s < te and ts < e for ts, te in taken):
                    continue
                qty, explicit = self._quantity_for(text, s, e, bool(m.group("plural")))
                taken.append((s, e))
                found.append(ItemMention(item=item, quantity=qty, explicit_quantity=explicit, start=s, end=e))
        found.sort(key=lambda x: x.start)
        return found

    def _from_history(self, history: List[ConversationTurn]) -> Optional[MenuItem]:
        for turn in reversed(history):
            mentions = self.extract_items(turn.content or "")
            if mentions:
                return mentions[-1].item
        return None

    def _close_matches(self, text: str, limit: int = 3) -> List[str]:
        names: List[str] = []
        vocab: Dict[str, List[str]] = {}
        for item in self.menu:
            for w in re.findall(r"[a-z]{4,}", item.name.lower()):
                vocab.setdefault(w, []).append(item.name)
        for token in re.findall(r"[a-z]{4,}", text.lower()):
            for hit in difflib.get_close_matches(token, list(vocab), n=2, cutoff=0.75):
                for name in vocab[hit]:
                    if name not in names:
                        names.append(name)
        return sorted(names)[:limit]

    def _score(self, verb: bool, explicit_qty: bool) -> float:
        conf = self.settings.pattern_min + (0.10 if verb else 0.0) + (0.05 if explicit_qty else 0.0)
        return round(max(self.settings.pattern_min, min(self.settings.pattern_max, conf)), 2)

    @staticmethod
    def _parsed(mentions: List[ItemMention]) -> List[ParsedItem]:
        return [
            ParsedItem(menu_item_id=m.item.id, name=m.item.name, quantity=m.quantity, unit_price=m.item.price)
            for m in mentions
        ]

    @traceable(name="PatternMatcher.match", tags=["nlu", "pattern"])
    def match(self, message: str, history: Optional[List[ConversationTurn]] = None) -> Optional[PatternMatch]:
        if not isinstance(message, str):
            return None
        text = message.strip()
        if not text:
            return None
        history = history or []

        mentions = self.extract_items(text)
        explicit = any(m.explicit_quantity for m in mentions)
        is_add = bool(_ADD_VERBS.search(text))
        is_remove = bool(_REMOVE_VERBS.search(text))
        is_cancel = bool(_CANCEL_VERBS.search(text))
        is_modify = bool(_MODIFY_VERBS.search(text))
        is_confirm = bool(_CONFIRM_VERBS.search(text))
        is_recommend = bool(_RECOMMEND_VERBS.search(text))

        # ---------- 1. explicit order reference ----------
        ref = _ORDER_REF.search(text)
        if ref:
            if is_cancel and not mentions:
                op = "cancel"
            elif is_remove or (is_cancel and mentions):
                op = "remove"
            elif is_modify:
                op = "modify"
            elif mentions:
                op = "add"
            else:
                op = "view"
            payload = SpecificOrderEditPayload(order_ref=ref.group(1), operation=op, items=self._parsed(mentions))
            return PatternMatch(payload=payload, confidence=self._score(True, explicit),
                                reasoning=f"order reference #{ref.group(1).upper()} with operation '{op}'")

        # ---------- 2. verb-driven kinds ----------
        if is_cancel and not mentions:
            return PatternMatch(payload=CancelOrderPayload(reason="customer request"),
                                confidence=self._score(True, False), reasoning="cancel verb without items")

        if mentions and (is_remove or is_cancel):
            return PatternMatch(payload=RemoveFromOrderPayload(items=self._parsed(mentions)),
                                confidence=self._score(True, explicit), reasoning="remove verb with menu items")

        if is_modify:
            target = mentions[0] if mentions else None
            if target is not None and target.explicit_quantity:
                payload = ModifyOrderItemPayload(menu_item_id=target.item.id, name=target.item.name,
                                                 unit_price=target.item.price, new_quantity=target.quantity)
                return PatternMatch(payload=payload, confidence=self._score(True, True),
                                    reasoning="change verb with item and quantity")
            bare = _BARE_NUMBER.search(text)
            prior = target.item if target is not None else self._from_history(history)
            if prior is not None and bare:
                payload = ModifyOrderItemPayload(menu_item_id=prior.id, name=prior.name, unit_price=prior.price,
                                                 new_quantity=_qty(bare.group(1)))
                return PatternMatch(payload=payload, confidence=self._score(True, True),
                                    reasoning="change verb; item resolved from conversation")

        if is_recommend and not mentions:
            return PatternMatch(payload=RecommendationPayload(preferences=text),
                                confidence=self._score(True, False), reasoning="recommendation vocabulary")

        if mentions and is_confirm and not is_add:
            return PatternMatch(payload=ConfirmOrderPayload(items=self._parsed(mentions)),
                                confidence=self._score(True, explicit), reasoning="confirm verb with menu items")

        if mentions:
            return PatternMatch(payload=AddToOrderPayload(items=self._parsed(mentions)),
                                confidence=self._score(is_add, explicit),
                                reasoning=f"{len(mentions)} menu item(s) named" + (" with add verb" if is_add else ""))

        # ---------- 3. order-ish but nothing recognised ----------
        if _ORDER_VOCAB.search(text) or is_add or is_modify or is_confirm or is_remove:
            options = self._close_matches(text) or ["See the menu", "Get a recommendation"]
            payload = ClarificationPayload(
                question="I couldn't find that on our menu. Did you mean one of these?",
                options=options,
                original_request=text,
            )
            return PatternMatch(payload=payload, confidence=self.settings.pattern_min,
                                reasoning="order vocabulary without a recognised menu item")

        return None
