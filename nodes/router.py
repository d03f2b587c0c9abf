# router.py
from typing import List, Dict, Any
from pydantic import BaseModel, Field

from utils.nlu import is_negative_reply, is_positive_reply
from utils.validation import validate_node


class RouterInput(BaseModel):
    session_id: str
    restaurant_id: str = Field(min_length=1)
    messages: List[Dict[str, str]] = Field(default_factory=list)

class RouterOutput(BaseModel):
    session_id: str
    restaurant_id: str
    messages: List[Dict[str, str]]


def last_user_text(state: Dict[str, Any]) -> str:
    msgs = state.get("messages", [])
    return next((m.get("content", "") for m in reversed(msgs) if m.get("role") == "user"), "")


@validate_node(name="Turn_Router", tags=["router"], input_model=RouterInput, output_model=RouterOutput)
def router_node(state: Dict[str, Any]) -> Dict[str, Any]:
    md: Dict[str, Any] = state.setdefault("metadata", {})
    lu = last_user_text(state).strip()

    # ---------- yes/no to an outstanding proposal ----------
    if md.get("pending_action_id"):
        if is_positive_reply(lu):
            md["route"] = "confirm"
            return state
        if is_negative_reply(lu):
            md["route"] = "decline"
            return state

    # ---------- anything else is a fresh detection ----------
    md["route"] = "detect"
    return state


def route_after_router(state: Dict[str, Any]) -> str:
    if state.get("_error"):
        return "error"
    return (state.get("metadata") or {}).get("route") or "detect"
