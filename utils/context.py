# utils/context.py
from typing import Dict, List, Optional, Sequence

from models import ConversationTurn, MenuItem, Order
from utils.config import SYSTEM_PROMPT


def format_context_menu(items: Sequence[MenuItem]) -> str:
    available = [it for it in items if it.available]
    if not available:
        return "CONTEXT_MENU: (no items currently available)"
    lines = []
    for it in sorted(available, key=lambda m: (m.category, m.name)):
        tags = f" ({', '.join(it.dietary_tags)})" if it.dietary_tags else ""
        lines.append(f"- [{it.id}] {it.name} - ${it.price} - {it.category}{tags}")
    return "CONTEXT_MENU:\n" + "\n".join(lines)


def format_current_orders(orders: Sequence[Order]) -> str:
    if not orders:
        return "CURRENT_ORDERS: (none yet)"
    return "CURRENT_ORDERS:\n" + "\n".join(f"- {o.summary()}" for o in orders)


def build_messages(
    message: str,
    menu: Sequence[MenuItem],
    history: Sequence[ConversationTurn],
    orders: Sequence[Order],
    restaurant_name: Optional[str],
    table_number: Optional[str],
    history_window: int,
) -> List[Dict[str, str]]:
    system = SYSTEM_PROMPT.format(restaurant_name=restaurant_name or "our restaurant",
                                  table_number=table_number or "?")
    system = f"{system}\n{format_context_menu(menu)}\n\n{format_current_orders(orders)}"
    msgs: List[Dict[str, str]] = [{"role": "system", "content": system}]
    recent = list(history)[-history_window:] if history_window else []
    msgs += [{"role": t.role, "content": t.content} for t in recent if t.content]
    msgs.append({"role": "user", "content": message})
    return msgs
