# utils/llm.py
from __future__ import annotations
from typing import Dict, Any, List, Optional
import json, logging, re
import requests
from pydantic import BaseModel

from utils import config
from utils.errors import LLMError

logger = logging.getLogger(__name__)


class LLMReply(BaseModel):
    text: str = ""
    function_name: Optional[str] = None
    arguments: Optional[str] = None  # raw JSON string, validated by the caller


def _scrub(text: Any) -> str:
    if text is None:
        return ""
    if not isinstance(text, str):
        raise LLMError(f"reply content should be text, got {type(text).__name__}")
    # scrub common end tokens
    return re.sub(r"(?:</s>|<\|eot\|>|<eos>)+", "", text, flags=re.I).strip()


def _as_message(message: Any) -> Dict[str, Any]:
    if message is None:
        return {}
    if not isinstance(message, dict):
        raise LLMError(f"reply message should be an object, got {type(message).__name__}")
    return message


def _first_tool_call(message: Dict[str, Any]) -> tuple[Optional[str], Optional[str]]:
    calls = message.get("tool_calls") or []
    if not calls:
        return None, None
    if not isinstance(calls, list) or not isinstance(calls[0], dict):
        raise LLMError("tool_calls should be a list of objects")
    fn = calls[0].get("function") or {}
    if not isinstance(fn, dict):
        raise LLMError("tool call has no function object")
    name, args = fn.get("name"), fn.get("arguments")
    if name is not None and not isinstance(name, str):
        raise LLMError("tool call name should be text")
    # Ollama hands back a dict, OpenAI a JSON string
    if isinstance(args, (dict, list)):
        args = json.dumps(args)
    return name, args


def _ollama_chat(messages: List[Dict[str, str]], tools: List[Dict[str, Any]], timeout: float) -> LLMReply:
    payload: Dict[str, Any] = {
        "model": config.OLLAMA_MODEL,
        "messages": messages,
        "tools": tools,
        "stream": False,
        "options": {"temperature": config.LLM_TEMP},
    }
    resp = requests.post(f"{config.OLLAMA_URL.rstrip('/')}/api/chat", json=payload, timeout=timeout)
    resp.raise_for_status()
    message = _as_message(resp.json().get("message"))
    name, args = _first_tool_call(message)
    return LLMReply(text=_scrub(message.get("content") or ""), function_name=name, arguments=args)


def _openai_chat(messages: List[Dict[str, str]], tools: List[Dict[str, Any]], timeout: float) -> LLMReply:
    payload: Dict[str, Any] = {
        "model": config.OPENAI_MODEL,
        "messages": messages,
        "tools": tools,
        "tool_choice": "auto",
        "temperature": config.LLM_TEMP,
    }
    headers = {"Authorization": f"Bearer {config.OPENAI_API_KEY}"}
    resp = requests.post(f"{config.OPENAI_BASE_URL.rstrip('/')}/chat/completions",
                         json=payload, headers=headers, timeout=timeout)
    resp.raise_for_status()
    choices = resp.json().get("choices") or []
    if not choices:
        raise LLMError("openai reply had no choices")
    if not isinstance(choices, list) or not isinstance(choices[0], dict):
        raise LLMError("openai choices should be a list of objects")
    message = _as_message(choices[0].get("message"))
    name, args = _first_tool_call(message)
    return LLMReply(text=_scrub(message.get("content") or ""), function_name=name, arguments=args)


def chat_with_tools(messages: List[Dict[str, str]], tools: List[Dict[str, Any]],
                    timeout: float = config.LLM_TIMEOUT) -> LLMReply:
    """
    One function-calling round trip against the configured backend.
    Every transport or protocol problem comes back as LLMError.
    """
    backend = config.LLM_BACKEND
    try:
        if backend == "ollama":
            return _ollama_chat(messages, tools, timeout)
        if backend == "openai":
            return _openai_chat(messages, tools, timeout)
    except requests.Timeout as e:
        raise LLMError(f"{backend} timed out after {timeout}s") from e
    except requests.RequestException as e:
        raise LLMError(f"{backend} request failed: {e}") from e
    except (ValueError, AttributeError, KeyError, TypeError, IndexError) as e:
        # bad JSON body or unexpected shape
        raise LLMError(f"{backend} returned an unreadable reply: {e}") from e
    raise LLMError(f"LLM backend '{backend}' is disabled or unknown")


def ping(timeout: float = 0.8) -> bool:
    if config.LLM_BACKEND != "ollama":
        return True
    try:
        return requests.get(f"{config.OLLAMA_URL.rstrip('/')}/api/tags", timeout=timeout).ok
    except requests.RequestException:
        return False
