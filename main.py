# main.py (REST adapter over the turn graph and the order/action managers)
from dotenv import load_dotenv
load_dotenv(override=True)  # <- make .env win over shell env

import logging, os
from functools import lru_cache
from typing import Any, Dict, List, Optional, cast

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from langsmith import traceable

from graph import build_graph
from managers.action_manager import ActionOutcome
from managers.order_manager import OrderLine, TransitionError, UnknownMenuItemError
from managers.services import Services
from models import OrderStatus
from state import ChatStateModel, ChatStateTD, MessageModel, from_graph_state, to_graph_state
from utils import llm
from utils.errors import OrderNotFoundError, SessionNotFoundError
from utils.logger import setup_logging

setup_logging()
logger = logging.getLogger(__name__)
logger.info("WAITER_LLM_BACKEND = %s", os.getenv("WAITER_LLM_BACKEND", "ollama"))


# ---- app / graph -------------------------------------------
class Runtime:
    def __init__(self, services: Services):
        self.services = services
        self.graph = build_graph(services)


@lru_cache(maxsize=1)
def get_runtime() -> Runtime:
    return Runtime(Services())


app = FastAPI(title="AI Waiter")

origins = os.getenv("CORS_ALLOW_ORIGINS", "").split(",") if os.getenv("CORS_ALLOW_ORIGINS") else ["http://localhost:8501"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---- request bodies ----------------------------------------
class ChatRequest(BaseModel):
    session_id: str
    restaurant_id: str = Field(min_length=1)
    table_number: Optional[str] = None
    user_message: str

class CreateOrderRequest(BaseModel):
    restaurant_id: str = Field(min_length=1)
    table_number: str = Field(min_length=1)
    items: List[OrderLine] = Field(min_length=1)
    notes: Optional[str] = None

class StatusRequest(BaseModel):
    status: OrderStatus


# ---- chat --------------------------------------------------
@traceable(name="turn", tags=["chat"])
def _handle_turn(rt: Runtime, model: ChatStateModel, user_text: str) -> ChatStateModel:
    user_text = (user_text or "").strip()
    if not user_text:
        return model
    model.messages.append(MessageModel(role="user", content=user_text))
    out_dict = rt.graph.invoke(to_graph_state(model))
    return from_graph_state(cast(ChatStateTD, out_dict))


def _pack_state(rt: Runtime, session_id: str) -> Dict[str, Any]:
    model = rt.services.store.load_state(session_id)
    if not model:
        return {"pending_action": None, "last_detection": None, "orders": []}
    md = model.metadata or {}
    pending = model.pending_action_id
    action = rt.services.actions.get(pending) if pending else None
    orders = []
    if model.table_number:
        session = rt.services.sessions.find_active_session(model.restaurant_id, model.table_number)
        if session:
            orders = [o.model_dump(mode="json") for o in rt.services.orders.recent_orders(session.id)]
    return {
        "pending_action": action.model_dump(mode="json") if action else None,
        "last_detection": md.get("last_detection"),
        "orders": orders,
    }


@app.post("/chat")
def chat_endpoint(req: ChatRequest, rt: Runtime = Depends(get_runtime)):
    store = rt.services.store
    model = store.load_state(req.session_id) or ChatStateModel(session_id=req.session_id)
    model.restaurant_id = req.restaurant_id
    model.table_number = req.table_number
    model = _handle_turn(rt, model, req.user_message)
    store.save_state(req.session_id, model.model_dump(mode="json"))

    md = model.metadata or {}
    return {
        "response": model.last_reply("Hi! I'm your waiter. What can I get for you?"),
        "pending_action_id": model.pending_action_id,
        "detection": md.get("last_detection"),
        "suggested_actions": md.get("suggested_actions", []),
    }


# ---- actions -----------------------------------------------
_OUTCOME_HTTP = {"not_found": 404, "expired": 410, "conflict": 409, "invalid_state": 409}


def _outcome_response(outcome: ActionOutcome, extra: Optional[Dict[str, Any]] = None) -> JSONResponse:
    body = outcome.model_dump(mode="json")
    body.update(extra or {})
    return JSONResponse(body, status_code=_OUTCOME_HTTP.get(outcome.status, 200))


@app.post("/actions/{action_id}/confirm")
def confirm_action(action_id: str, rt: Runtime = Depends(get_runtime)):
    return _outcome_response(rt.services.actions.confirm(action_id))


@app.post("/actions/{action_id}/decline")
def decline_action(action_id: str, rt: Runtime = Depends(get_runtime)):
    outcome = rt.services.actions.decline(action_id)
    if outcome.status != "declined" or outcome.action is None:
        return _outcome_response(outcome)
    advice = rt.services.advisor(outcome.action.restaurant_id).advise(outcome.action)
    return _outcome_response(outcome, {"advice": advice.model_dump(mode="json")})


# ---- orders / sessions -------------------------------------
@app.post("/orders")
def create_order(req: CreateOrderRequest, rt: Runtime = Depends(get_runtime)):
    try:
        order = rt.services.orders.create_order(req.restaurant_id, req.table_number, req.items, req.notes)
    except UnknownMenuItemError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return order.model_dump(mode="json")


@app.patch("/orders/{order_id}/status")
def update_status(order_id: str, req: StatusRequest, rt: Runtime = Depends(get_runtime)):
    try:
        result = rt.services.orders.update_order_status(order_id, req.status)
    except OrderNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    if isinstance(result, TransitionError):
        return JSONResponse({**result.model_dump(mode="json"), "message": result.message}, status_code=409)
    return result.model_dump(mode="json")


@app.get("/sessions/{restaurant_id}/{table_number}")
def get_session(restaurant_id: str, table_number: str, rt: Runtime = Depends(get_runtime)):
    session = rt.services.sessions.find_active_session(restaurant_id, table_number)
    if session is None:
        raise HTTPException(status_code=404, detail="no active session for this table")
    orders = rt.services.store.session_orders(session.id)
    return {"session": session.model_dump(mode="json"), "orders": [o.model_dump(mode="json") for o in orders]}


@app.post("/sessions/{session_id}/close")
def close_session(session_id: str, rt: Runtime = Depends(get_runtime)):
    try:
        return rt.services.sessions.close_session(session_id).model_dump(mode="json")
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


# ---- health ------------------------------------------------
@app.get("/healthz")
def healthz(rt: Runtime = Depends(get_runtime)):
    # liveness: process is up and we can talk to Redis
    ok_redis = rt.services.store.ping()
    return JSONResponse({"ok": ok_redis}, status_code=200 if ok_redis else 503)


@app.get("/readyz")
def readyz(rt: Runtime = Depends(get_runtime)):
    # readiness: Redis plus the LLM backend when it is Ollama
    ok_redis = rt.services.store.ping()
    ok_llm = llm.ping()
    ready = ok_redis and ok_llm
    return JSONResponse({"redis": ok_redis, "llm": ok_llm, "ready": ready}, status_code=200 if ready else 503)


@app.get("/state")
def get_state(session_id: str = Query(...), rt: Runtime = Depends(get_runtime)):
    return _pack_state(rt, session_id)


if __name__ == "__main__":
    uvicorn.run("main:app", host="127.0.0.1", port=8000, reload=True)
