# Deterministic matcher: items, quantities, verbs, degradation

import pytest

from models import ConversationTurn
from utils.actions import ActionKind, AddToOrderPayload
from utils.config import DetectorSettings
from utils.detection import HybridDetector
from utils.nlu import PatternMatcher, is_negative_reply, is_positive_reply


@pytest.fixture
def matcher(menu):
    return PatternMatcher(menu)


class TestItemsAndQuantities:
    """Menu names and the quantities next to them"""

    def test_caesar_scenario_through_hybrid(self, ctx):
        detector = HybridDetector(settings=DetectorSettings(generative_enabled=False))
        result = detector.detect("give me 2 caesar salads", ctx)

        assert result.used_fallback is True
        assert result.action is not None
        assert result.action.kind == ActionKind.ADD_TO_ORDER
        item = result.action.payload.items[0]
        assert item.name == "Caesar Salad"
        assert item.quantity == 2
        assert str(item.unit_price) == "12.99"
        assert 0.45 <= result.confidence <= 0.65

    def test_number_words(self, matcher):
        found = matcher.match("I'll have three lemonades")
        assert found.payload.items[0].name == "Lemonade"
        assert found.payload.items[0].quantity == 3
        assert found.confidence == pytest.approx(0.60)

    def test_plural_without_number_means_two(self, matcher):
        found = matcher.match("caesar salads please")
        assert isinstance(found.payload, AddToOrderPayload)
        assert found.payload.items[0].quantity == 2
        assert found.confidence == pytest.approx(0.45)

    def test_quoted_name_with_number(self, matcher):
        found = matcher.match('add 2 "Truffle Pasta"')
        assert found.payload.items[0].name == "Truffle Pasta"
        assert found.payload.items[0].quantity == 2

    def test_trailing_multiplier(self, matcher):
        found = matcher.match("Garlic Bread x2")
        assert found.payload.items[0].quantity == 2

    @pytest.mark.parametrize("text,quantity", [
        ("add 12 garlic breads", 12),
        ("add 100 caesar salads", 50),
        ("Lemonade x120", 50),
    ])
    def test_large_quantities_are_read_and_capped(self, matcher, text, quantity):
        found = matcher.match(text)
        assert found.payload.items[0].quantity == quantity

    def test_several_items_article_is_one(self, matcher):
        found = matcher.match("add 2 caesar salads and a lemonade")
        names = [(it.name, it.quantity) for it in found.payload.items]
        assert names == [("Caesar Salad", 2), ("Lemonade", 1)]

    def test_unavailable_item_is_not_matched(self, matcher):
        found = matcher.match("add lobster bisque")
        assert found.payload.kind == ActionKind.REQUEST_CLARIFICATION


class TestVerbs:
    """Action verbs choose the kind"""

    def test_remove(self, matcher):
        found = matcher.match("remove the garlic bread")
        assert found.payload.kind == ActionKind.REMOVE_FROM_ORDER
        assert found.payload.items[0].menu_item_id == "s1"

    def test_cancel_without_items(self, matcher):
        assert matcher.match("cancel my order").payload.kind == ActionKind.CANCEL_ORDER

    def test_change_quantity(self, matcher):
        found = matcher.match("change the truffle pasta to 3")
        assert found.payload.kind == ActionKind.MODIFY_ORDER_ITEM
        assert found.payload.menu_item_id == "m2"
        assert found.payload.new_quantity == 3

    def test_change_uses_history_for_item(self, matcher):
        history = [ConversationTurn(role="assistant", content="Add 1x Tiramisu ($8.00 each) to your order?")]
        found = matcher.match("actually make it 2", history)
        assert found.payload.kind == ActionKind.MODIFY_ORDER_ITEM
        assert found.payload.name == "Tiramisu"
        assert found.payload.new_quantity == 2

    def test_order_reference(self, matcher):
        found = matcher.match("please cancel order #ab12cd")
        assert found.payload.kind == ActionKind.SPECIFIC_ORDER_EDIT
        assert found.payload.operation == "cancel"
        assert found.payload.short_code == "AB12CD"

    def test_recommendation(self, matcher):
        assert matcher.match("what do you recommend?").payload.kind == ActionKind.REQUEST_RECOMMENDATION

    def test_confirm_with_items(self, matcher):
        found = matcher.match("that's all, 1 tiramisu")
        assert found.payload.kind == ActionKind.CONFIRM_ORDER


class TestDegradation:
    """Never raises; falls back to clarification or nothing"""

    def test_misspelt_item_gets_clarification_with_options(self, matcher):
        found = matcher.match("I want the trufle pasta")
        assert found.payload.kind == ActionKind.REQUEST_CLARIFICATION
        assert "Truffle Pasta" in found.payload.options
        assert found.confidence == pytest.approx(0.45)

    @pytest.mark.parametrize("text", [None, "", "   ", "??!!", "hello there", 42])
    def test_no_match_is_silent(self, matcher, text):
        assert matcher.match(text) is None

    @pytest.mark.parametrize("text", [
        "give me 2 caesar salads", "remove the garlic bread", "cancel my order",
        "what do you recommend?", "I want the lasagna", "Garlic Bread x2",
    ])
    def test_confidence_stays_in_band(self, matcher, text):
        found = matcher.match(text)
        assert 0.45 <= found.confidence <= 0.65


class TestReplies:
    @pytest.mark.parametrize("text", ["yes", "Yes please", "ok", "sure, go for it", "go ahead"])
    def test_positive(self, text):
        assert is_positive_reply(text)

    @pytest.mark.parametrize("text", ["no", "nope", "no thanks", "never mind"])
    def test_negative(self, text):
        assert is_negative_reply(text)

    def test_order_text_is_neither(self):
        assert not is_positive_reply("2 caesar salads")
        assert not is_negative_reply("2 caesar salads")
