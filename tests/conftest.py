# Test fixtures: in-memory Redis, a small menu, services with the LLM switched off

import os

os.environ.setdefault("WAITER_LLM_BACKEND", "disabled")
os.environ.setdefault("LANGSMITH_TRACING", "false")
os.environ.setdefault("LANGCHAIN_TRACING_V2", "false")

from decimal import Decimal

import fakeredis
import pytest

from managers.services import Services
from models import MenuItem
from utils.config import DetectorSettings
from utils.db import Store
from utils.detection import DetectionContext

RESTAURANT = "r1"
TABLE = "7"


def make_menu():
    return [
        MenuItem(id="c1", name="Caesar Salad", price=Decimal("12.99"), category="Starters",
                 dietary_tags=["vegetarian"]),
        MenuItem(id="m1", name="Margherita Pizza", price=Decimal("15.50"), category="Mains",
                 dietary_tags=["vegetarian", "popular"]),
        MenuItem(id="m2", name="Truffle Pasta", price=Decimal("18.00"), category="Mains",
                 dietary_tags=["vegetarian"]),
        MenuItem(id="m3", name="Quinoa Power Bowl", price=Decimal("14.00"), category="Mains",
                 dietary_tags=["vegan", "gluten-free", "healthy"]),
        MenuItem(id="m4", name="Grilled Chicken", price=Decimal("17.25"), category="Mains"),
        MenuItem(id="s1", name="Garlic Bread", price=Decimal("6.00"), category="Sides",
                 dietary_tags=["vegetarian"]),
        MenuItem(id="d1", name="Lemonade", price=Decimal("4.50"), category="Drinks", dietary_tags=["vegan"]),
        MenuItem(id="t1", name="Tiramisu", price=Decimal("8.00"), category="Desserts"),
        MenuItem(id="x1", name="Lobster Bisque", price=Decimal("22.00"), category="Starters", available=False),
    ]


@pytest.fixture
def menu():
    return make_menu()


@pytest.fixture
def store(menu):
    s = Store(fakeredis.FakeRedis(decode_responses=True))
    s.save_menu(RESTAURANT, menu)
    return s


@pytest.fixture
def settings():
    return DetectorSettings(generative_enabled=False)


@pytest.fixture
def services(store, settings):
    return Services(store=store, settings=settings)


@pytest.fixture
def ctx(menu):
    return DetectionContext(restaurant_id=RESTAURANT, table_number=TABLE, menu_items=menu)
