# Generative + hybrid detection against a scripted backend

import json

import pytest
import requests

from models import ConversationTurn
from utils.actions import ActionKind, Provenance
from utils import config, llm
from utils.config import DetectorSettings
from utils.detection import GenerativeDetector, HybridDetector
from utils.errors import ContextError, ErrorKind, LLMError
from utils.functions import FUNCTIONS_BY_NAME
from utils.llm import LLMReply


class ScriptedLLM:
    """Returns a fixed reply (or raises) and records what it was asked."""

    def __init__(self, reply=None, error=None):
        self.reply = reply
        self.error = error
        self.calls = []

    def __call__(self, messages, tools, timeout=None):
        self.calls.append({"messages": messages, "tools": tools, "timeout": timeout})
        if self.error is not None:
            raise self.error
        return self.reply


def fn(name, /, text="", **arguments):
    return LLMReply(text=text, function_name=name, arguments=json.dumps(arguments))


def hybrid(call, **overrides):
    settings = DetectorSettings(generative_enabled=True, **overrides)
    return HybridDetector(GenerativeDetector(call, settings), settings)


class TestGenerativePath:
    def test_function_call_with_ids(self, ctx):
        call = ScriptedLLM(fn("add_to_order", items=[{"name": "Caesar Salad", "menu_item_id": "c1", "quantity": 2}]))
        result = hybrid(call).detect("two caesar salads please", ctx)

        assert result.used_fallback is False
        assert result.provenance == Provenance.GENERATIVE
        assert result.action.kind == ActionKind.ADD_TO_ORDER
        assert result.action.payload.items[0].quantity == 2
        assert result.confidence == pytest.approx(0.85)

    def test_name_only_resolves_by_containment(self, ctx):
        call = ScriptedLLM(fn("add_to_order", items=[{"name": "margherita"}]))
        result = hybrid(call).detect("a margherita", ctx)

        assert result.action.payload.items[0].menu_item_id == "m1"
        assert result.confidence == pytest.approx(0.75)

    def test_hedging_lowers_confidence(self, ctx):
        call = ScriptedLLM(fn("add_to_order", text="I think you want the pasta",
                              items=[{"name": "Truffle Pasta", "menu_item_id": "m2"}]))
        result = hybrid(call).detect("pasta", ctx)
        assert result.confidence == pytest.approx(0.70)

    def test_confirm_with_items_gets_bonus(self, ctx):
        call = ScriptedLLM(fn("confirm_order", items=[{"name": "Tiramisu", "menu_item_id": "t1"}]))
        result = hybrid(call).detect("that's it, one tiramisu", ctx)
        assert result.confidence == pytest.approx(1.0)

    def test_timeout_is_passed_to_backend(self, ctx):
        call = ScriptedLLM(fn("no_action_needed", reason="chat"))
        hybrid(call, llm_timeout=3.5).detect("hi", ctx)
        assert call.calls[0]["timeout"] == 3.5
        assert {t["function"]["name"] for t in call.calls[0]["tools"]} >= {"add_to_order", "specific_order_edit"}

    def test_plain_text_reply_is_no_action(self, ctx):
        call = ScriptedLLM(LLMReply(text="Thanks, enjoy your meal!"))
        result = hybrid(call).detect("thank you", ctx)

        assert result.action is None
        assert result.confidence == pytest.approx(0.9)
        assert result.used_fallback is False
        assert result.response_text == "Thanks, enjoy your meal!"

    def test_informational_reply(self, ctx):
        call = ScriptedLLM(LLMReply(text="The pasta has black truffle shavings."))
        result = hybrid(call).detect("what's in the pasta?", ctx)
        assert result.action is None
        assert result.confidence == pytest.approx(0.8)

    def test_recommendation_is_filled_from_menu(self, ctx):
        call = ScriptedLLM(fn("request_recommendation", preferences="vegan"))
        result = hybrid(call).detect("anything vegan?", ctx)

        names = [r.name for r in result.action.payload.recommendations]
        assert names[:2] == ["Lemonade", "Quinoa Power Bowl"]

    @pytest.mark.parametrize("name,arguments", [
        ("add_to_order", {"items": [{"name": "Caesar Salad", "menu_item_id": "c1"}]}),
        ("remove_from_order", {"items": [{"name": "Garlic Bread"}]}),
        ("modify_order_item", {"name": "Lemonade", "new_quantity": 3}),
        ("confirm_order", {"items": [{"name": "Tiramisu"}]}),
        ("cancel_order", {}),
        ("request_recommendation", {"preferences": "spicy"}),
        ("request_clarification", {"question": "Which pasta?"}),
        ("specific_order_edit", {"order_ref": "#ab12cd"}),
        ("no_action_needed", {"reason": "small talk"}),
    ])
    def test_every_function_maps_to_its_action_kind(self, ctx, name, arguments):
        outcome = GenerativeDetector(ScriptedLLM(fn(name, **arguments))).detect("hi", ctx)
        assert outcome.ok is True
        assert outcome.payload.kind == FUNCTIONS_BY_NAME[name].kind

    def test_low_confidence_non_mutating_is_kept(self, ctx):
        call = ScriptedLLM(fn("request_clarification", question="Which pasta?", options=["Truffle Pasta"]))
        result = hybrid(call, fallback_floor=0.9).detect("the pasta thing", ctx)

        assert result.used_fallback is False
        assert result.action.kind == ActionKind.REQUEST_CLARIFICATION


class TestFallback:
    def test_backend_failure_falls_back_to_pattern(self, ctx):
        call = ScriptedLLM(error=LLMError("connection refused"))
        result = hybrid(call).detect("give me 2 caesar salads", ctx)

        assert result.used_fallback is True
        assert result.provenance == Provenance.PATTERN
        assert result.confidence < 0.8
        assert result.action.payload.items[0].quantity == 2

    def test_transport_error_is_not_raised(self, ctx):
        call = ScriptedLLM(error=requests.Timeout("slow"))
        result = hybrid(call).detect("hello", ctx)

        assert result.action is None
        assert result.used_fallback is True
        assert result.confidence == pytest.approx(0.6)

    @pytest.mark.parametrize("reply", [
        LLMReply(function_name="add_to_order", arguments="{not json"),
        LLMReply(function_name="add_to_order", arguments="[1, 2]"),
        fn("add_to_order", items=[{"name": "Caesar Salad", "quantity": 0}]),
        fn("add_to_order", items=[{"name": "Lobster Bisque"}]),
        fn("order_pizza", items=[]),
    ])
    def test_bad_function_reply_falls_back(self, ctx, reply):
        result = hybrid(ScriptedLLM(reply)).detect("give me 2 caesar salads", ctx)
        assert result.used_fallback is True
        assert result.provenance == Provenance.PATTERN

    @pytest.mark.parametrize("body", [
        {"message": {"content": "ok", "tool_calls": {"0x": 1}}},
        {"message": {"content": ["not", "a", "string"]}},
        {"message": {"content": "ok", "tool_calls": ["add_to_order"]}},
        {"message": "add two caesar salads"},
    ])
    def test_misshapen_backend_body_falls_back(self, ctx, monkeypatch, body):
        class Reply:
            def raise_for_status(self):
                pass

            def json(self):
                return body

        monkeypatch.setattr(config, "LLM_BACKEND", "ollama")
        monkeypatch.setattr(llm.requests, "post", lambda *args, **kwargs: Reply())
        settings = DetectorSettings(generative_enabled=True)
        result = HybridDetector(GenerativeDetector(llm.chat_with_tools, settings), settings).detect(
            "give me 2 caesar salads", ctx)

        assert result.used_fallback is True
        assert result.provenance == Provenance.PATTERN
        assert result.action.payload.items[0].quantity == 2

    def test_generative_outcome_reports_failure_kind(self, ctx):
        detector = GenerativeDetector(ScriptedLLM(LLMReply(function_name="nope", arguments="{}")))
        outcome = detector.detect("hi", ctx)
        assert outcome.ok is False
        assert outcome.failure == ErrorKind.ARGUMENT_VALIDATION

        outcome = GenerativeDetector(ScriptedLLM(error=LLMError("down"))).detect("hi", ctx)
        assert outcome.failure == ErrorKind.DETECTION_DEGRADED

    def test_mutating_below_floor_prefers_pattern(self, ctx):
        call = ScriptedLLM(fn("add_to_order", items=[{"name": "Lemonade", "menu_item_id": "d1"}]))
        result = hybrid(call, fallback_floor=0.9).detect("give me 2 caesar salads", ctx)

        assert result.used_fallback is True
        assert result.action.payload.items[0].name == "Caesar Salad"

    def test_mutating_below_floor_kept_when_pattern_finds_nothing(self, ctx):
        call = ScriptedLLM(fn("add_to_order", items=[{"name": "Lemonade", "menu_item_id": "d1"}]))
        result = hybrid(call, fallback_floor=0.9).detect("something cold", ctx)

        assert result.used_fallback is True
        assert result.provenance == Provenance.GENERATIVE
        assert result.action.payload.items[0].name == "Lemonade"

    def test_disabled_backend_is_not_called(self, ctx):
        call = ScriptedLLM(error=AssertionError("should not be called"))
        settings = DetectorSettings(generative_enabled=False)
        result = HybridDetector(GenerativeDetector(call, settings), settings).detect("remove the garlic bread", ctx)

        assert call.calls == []
        assert result.action.kind == ActionKind.REMOVE_FROM_ORDER

    def test_history_is_used_by_pattern(self, ctx):
        ctx.history = [ConversationTurn(role="assistant", content="Add 1x Lemonade ($4.50 each) to your order?")]
        result = hybrid(ScriptedLLM(error=LLMError("down"))).detect("make it 3", ctx)
        assert result.action.kind == ActionKind.MODIFY_ORDER_ITEM
        assert result.action.payload.new_quantity == 3


class TestContextErrors:
    def test_missing_restaurant(self, ctx):
        ctx.restaurant_id = "  "
        with pytest.raises(ContextError):
            hybrid(ScriptedLLM(LLMReply())).detect("hi", ctx)

    def test_non_string_message(self, ctx):
        with pytest.raises(ContextError):
            hybrid(ScriptedLLM(LLMReply())).detect(None, ctx)
