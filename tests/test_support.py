# Prompt context, recommender, menu seeding, logging setup

import json
import logging
from decimal import Decimal

from models import ConversationTurn, OrderItem
from scripts.load_menu import load_menu_file, seed
from utils.context import build_messages, format_context_menu
from utils.logger import setup_logging
from utils.recommend import MenuRecommender

from conftest import RESTAURANT


class TestContext:
    def test_menu_lists_available_items_with_ids(self, menu):
        text = format_context_menu(menu)
        assert "[c1] Caesar Salad - $12.99" in text
        assert "Lobster Bisque" not in text

    def test_history_window(self, menu):
        history = [ConversationTurn(role="user", content=f"turn {i}") for i in range(8)]
        msgs = build_messages("now", menu, history, [], "Trattoria", "7", history_window=3)

        assert msgs[0]["role"] == "system"
        assert "Trattoria" in msgs[0]["content"] and "table 7" in msgs[0]["content"]
        assert [m["content"] for m in msgs[1:]] == ["turn 5", "turn 6", "turn 7", "now"]


class TestRecommender:
    def test_drink_and_side_follow_a_main(self, menu):
        current = [OrderItem(menu_item_id="m4", name="Grilled Chicken", quantity=1, price_at_time=Decimal("17.25"))]
        picks = MenuRecommender(menu).recommend(current, [], "")
        assert [p.name for p in picks][:1] == ["Lemonade"]
        assert all(p.menu_item_id != "m4" for p in picks)

    def test_dessert_for_big_orders(self, menu):
        current = [OrderItem(menu_item_id="m2", name="Truffle Pasta", quantity=2, price_at_time=Decimal("18.00"))]
        names = [p.name for p in MenuRecommender(menu, limit=5).recommend(current, [], "")]
        assert "Tiramisu" in names

    def test_dietary_request_from_history(self, menu):
        history = [ConversationTurn(role="user", content="I'm vegan")]
        picks = MenuRecommender(menu).recommend([], history, "what's good?")
        assert {p.name for p in picks[:2]} == {"Lemonade", "Quinoa Power Bowl"}


class TestSeeding:
    def test_seed_from_wrapped_file(self, tmp_path, store):
        path = tmp_path / "menu.json"
        path.write_text(json.dumps({"items": [
            {"id": "n1", "name": "Nachos", "price": "7.50", "category": "Starters"},
        ]}), encoding="utf-8")

        assert seed(store, "r2", str(path)) == 1
        assert store.load_menu("r2")[0].price == Decimal("7.50")
        assert len(store.load_menu(RESTAURANT)) == 9

    def test_bare_list(self, tmp_path):
        path = tmp_path / "menu.json"
        path.write_text(json.dumps([{"id": "a", "name": "Espresso", "price": 3}]), encoding="utf-8")
        assert load_menu_file(str(path))[0].category == "Other"


def test_rotating_log_file(tmp_path):
    log_file = tmp_path / "logs" / "waiter.log"
    setup_logging(level="DEBUG", file_path=str(log_file))
    logging.getLogger("waiter.test").info("hello from test")
    for handler in logging.getLogger().handlers:
        handler.flush()
    assert "hello from test" in log_file.read_text(encoding="utf-8")
    setup_logging(level="INFO", file_path="")
