# scripts/load_menu.py
import json, logging, os, sys
from typing import List

from models import MenuItem
from utils.config import MENU_JSON_PATH
from utils.db import Store
from utils.logger import setup_logging

logger = logging.getLogger(__name__)


def load_menu_file(path: str) -> List[MenuItem]:
    with open(path, "r", encoding="utf-8") as f:
        raw = json.load(f)
    # accept either a bare list or {"items": [...]}
    items = raw.get("items", []) if isinstance(raw, dict) else raw
    return [MenuItem.model_validate(it) for it in items]


def seed(store: Store, restaurant_id: str, path: str) -> int:
    items = load_menu_file(path)
    store.save_menu(restaurant_id, items)
    return len(items)


if __name__ == "__main__":
    setup_logging()
    restaurant_id = sys.argv[1] if len(sys.argv) > 1 else os.getenv("RESTAURANT_ID", "demo")
    menu_path = sys.argv[2] if len(sys.argv) > 2 else MENU_JSON_PATH
    logger.info("Loading %s into menu:%s", menu_path, restaurant_id)
    count = seed(Store(), restaurant_id, menu_path)
    logger.info("Done, %d items.", count)
