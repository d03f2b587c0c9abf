# utils/validation.py
from __future__ import annotations
from typing import Any, Callable, Dict, List, Optional
import logging

from pydantic import BaseModel, ValidationError
from langsmith import traceable

logger = logging.getLogger(__name__)

NodeFn = Callable[..., Dict[str, Any]]


def _view(state: Dict[str, Any], model: type[BaseModel]) -> Dict[str, Any]:
    """Only the turn fields the model declares; None and missing fall back to the model default."""
    return {k: state[k] for k in model.model_fields if state.get(k) is not None}


def _record(state: Dict[str, Any], node: str, where: str, ve: ValidationError) -> None:
    errors = [{"loc": list(e.get("loc", ())), "msg": e.get("msg", ""), "type": e.get("type", "")}
              for e in ve.errors()]
    logger.warning("%s failed %s for session %s: %s", node, where, state.get("session_id"), errors)
    state["_error"] = {"node": node, "where": where, "errors": errors}


def validate_node(
    name: str,
    tags: Optional[List[str]] = None,
    input_model: Optional[type[BaseModel]] = None,
    output_model: Optional[type[BaseModel]] = None,
) -> Callable[[NodeFn], NodeFn]:
    """
    Wraps a graph node: LangSmith trace, then the turn state is checked
    against `input_model` before the node runs and `output_model` after.
    A bad input skips the node; either failure lands in state["_error"] so
    the router can send the turn to the error node.
    """
    tags = tags or []

    def decorator(fn: NodeFn) -> NodeFn:
        @traceable(name=name, tags=tags)
        def wrapper(state: Dict[str, Any], *args, **kwargs) -> Dict[str, Any]:
            if input_model is not None:
                try:
                    input_model.model_validate(_view(state, input_model))
                except ValidationError as ve:
                    _record(state, name, "input_validation", ve)
                    return state

            out = fn(state, *args, **kwargs)

            if output_model is not None:
                try:
                    output_model.model_validate(_view(out, output_model))
                except ValidationError as ve:
                    _record(out, name, "output_validation", ve)
            return out

        return wrapper
    return decorator
