# graph.py
from langgraph.graph import StateGraph, END

from managers.services import Services
from nodes.ordering import make_confirm_node, make_decline_node, make_detect_node
from nodes.router import route_after_router, router_node
from state import ChatStateTD


def error_node(state):
    msgs = state.get("messages", [])
    md = state.setdefault("metadata", {})
    msgs.append({"role": "assistant", "content": "Sorry, I hit an error. Let's start over."})
    md.pop("pending_action_id", None)
    state["messages"] = msgs
    return state


# ---------- build top-level graph ----------
def build_graph(services: Services):
    g = StateGraph(state_schema=ChatStateTD)

    g.add_node("router", router_node)
    g.add_node("detect", make_detect_node(services))
    g.add_node("confirm", make_confirm_node(services))
    g.add_node("decline", make_decline_node(services))
    g.add_node("error", error_node)

    g.set_entry_point("router")

    g.add_conditional_edges(
        "router",
        route_after_router,
        {
            "detect": "detect",
            "confirm": "confirm",
            "decline": "decline",
            "error": "error",
        },
    )

    for n in ["detect", "confirm", "decline", "error"]:
        g.add_edge(n, END)

    return g.compile()
