# utils/db.py
import json, logging
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar, cast

import redis
from pydantic import BaseModel, TypeAdapter

from models import CustomerSession, MenuItem, Order
from state import ChatStateModel, ChatStateTD, from_graph_state
from utils.config import REDIS_URL

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)
_menu_adapter = TypeAdapter(List[MenuItem])


# ---------- keys ----------
def chat_key(session_id: str) -> str:
    return f"chat:{session_id}"

def order_key(order_id: str) -> str:
    return f"order:{order_id}"

def session_key(session_id: str) -> str:
    return f"session:{session_id}"

def session_orders_key(session_id: str) -> str:
    return f"session:{session_id}:orders"

def table_key(restaurant_id: str, table_number: str) -> str:
    return f"table:{restaurant_id}:{table_number}:active"

def action_key(action_id: str) -> str:
    return f"action:{action_id}"

def menu_key(restaurant_id: str) -> str:
    return f"menu:{restaurant_id}"


class Store:
    """Thin JSON-over-Redis store. Read-modify-write goes through `update` (WATCH/MULTI)."""

    def __init__(self, client: Optional[redis.Redis] = None):
        self.r: redis.Redis = client if client is not None else redis.Redis.from_url(REDIS_URL, decode_responses=True)

    # ---------- generic model I/O ----------
    def get_model(self, key: str, model: Type[M]) -> Optional[M]:
        raw = self.r.get(key)
        if raw is None:
            return None
        return model.model_validate_json(raw)

    def put_model(self, key: str, obj: BaseModel, ttl: Optional[int] = None) -> None:
        self.r.set(key, obj.model_dump_json(), ex=ttl)

    def update(self, key: str, model: Type[M], fn: Callable[[M], Optional[M]],
               keep_ttl: bool = False) -> Optional[M]:
        """
        Optimistic compare-and-set: fn sees the current record and returns the
        replacement, or None to leave it untouched. Retries if the key changed
        under us. Returns what was written (or the unchanged record).
        """
        result: Dict[str, Optional[M]] = {}

        def _tx(pipe: "redis.client.Pipeline") -> None:
            raw = pipe.get(key)
            current = model.model_validate_json(raw) if raw is not None else None
            if current is None:
                result["value"] = None
                return
            new = fn(current)
            if new is None:
                result["value"] = current
                return
            ttl = pipe.ttl(key) if keep_ttl else -1
            pipe.multi()
            if ttl and ttl > 0:
                pipe.set(key, new.model_dump_json(), ex=ttl)
            else:
                pipe.set(key, new.model_dump_json())
            result["value"] = new

        self.r.transaction(_tx, key)
        return result.get("value")

    # ---------- orders / sessions ----------
    def get_order(self, order_id: str) -> Optional[Order]:
        return self.get_model(order_key(order_id), Order)

    def save_order(self, order: Order) -> None:
        self.put_model(order_key(order.id), order)

    def add_order_to_session(self, session_id: str, order_id: str) -> None:
        self.r.rpush(session_orders_key(session_id), order_id)

    def session_orders(self, session_id: str) -> List[Order]:
        ids = self.r.lrange(session_orders_key(session_id), 0, -1)
        orders = [self.get_order(i) for i in ids]
        return [o for o in orders if o is not None]

    def get_session(self, session_id: str) -> Optional[CustomerSession]:
        return self.get_model(session_key(session_id), CustomerSession)

    def save_session(self, session: CustomerSession) -> None:
        self.put_model(session_key(session.id), session)

    def active_session_id(self, restaurant_id: str, table_number: str) -> Optional[str]:
        return self.r.get(table_key(restaurant_id, table_number))

    def claim_table(self, restaurant_id: str, table_number: str, session_id: str) -> bool:
        # SET NX: exactly one claimant wins the table pointer
        return bool(self.r.set(table_key(restaurant_id, table_number), session_id, nx=True))

    def release_table(self, restaurant_id: str, table_number: str, session_id: str) -> None:
        key = table_key(restaurant_id, table_number)

        def _tx(pipe: "redis.client.Pipeline") -> None:
            if pipe.get(key) == session_id:
                pipe.multi()
                pipe.delete(key)

        self.r.transaction(_tx, key)

    # ---------- menu ----------
    def load_menu(self, restaurant_id: str) -> List[MenuItem]:
        raw = self.r.get(menu_key(restaurant_id))
        if raw is None:
            return []
        return _menu_adapter.validate_json(raw)

    def save_menu(self, restaurant_id: str, items: List[MenuItem]) -> None:
        self.r.set(menu_key(restaurant_id), _menu_adapter.dump_json(items).decode("utf-8"))

    # ---------- chat state ----------
    def save_state(self, session_id: str, state_dict: Dict[str, Any]) -> None:
        self.r.set(chat_key(session_id), json.dumps(state_dict, default=str))

    def load_state(self, session_id: str) -> Optional[ChatStateModel]:
        raw = self.r.get(chat_key(session_id))
        if raw is None:
            return None
        try:
            return from_graph_state(cast(ChatStateTD, json.loads(raw)))
        except ValueError as e:
            logger.error("load_state failed for %s: %s", session_id, e)
            return None

    def ping(self) -> bool:
        try:
            return bool(self.r.ping())
        except redis.RedisError:
            return False
