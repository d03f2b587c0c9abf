# utils/config.py
import os
from pydantic import BaseModel, Field

# System prompt handed to the generative detector with the declared functions
SYSTEM_PROMPT = (
    "You are an **AI waiter** for {restaurant_name}, serving table {table_number}. "
    "You chat with guests, answer menu questions and turn clear ordering requests into function calls.\n\n"
    "=== ROLE & BEHAVIOR ===\n"
    "- Speak in short, friendly turns (<120 words).\n"
    "- Never break character as a waiter.\n"
    "- Ordinary conversation needs no function call: just reply in text.\n\n"
    "=== HARD RULES ===\n"
    "1) DO NOT invent menu items, drinks, specials, or prices.\n"
    "2) Only reference items in `CONTEXT_MENU`, and pass their [ID] in function arguments.\n"
    "3) Call exactly one function when the guest clearly wants to add, remove, change, confirm or cancel.\n"
    "4) If the request is ambiguous, call request_clarification with a short list of options.\n"
    "5) If the guest asks what to get, call request_recommendation.\n"
    "6) Orders that are already PREPARING, READY or SERVED cannot be edited; say so instead of calling a function.\n"
    "7) Never claim an order was placed: the guest still has to confirm.\n"
)

# ---------- LLM backend ----------
LLM_BACKEND = os.getenv("WAITER_LLM_BACKEND", "ollama").lower()   # ollama | openai | disabled
OLLAMA_URL = os.getenv("OLLAMA_URL", "http://localhost:11434")
OLLAMA_MODEL = os.getenv("OLLAMA_MODEL", "llama3.1:8b")
OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
LLM_TEMP = float(os.getenv("WAITER_TEMP", "0.3"))
LLM_TIMEOUT = float(os.getenv("WAITER_LLM_TIMEOUT", "8"))

# ---------- Detection thresholds ----------
FALLBACK_FLOOR = float(os.getenv("DETECT_FALLBACK_FLOOR", "0.5"))       # fall back below this for mutating actions
SAFE_AUTO_THRESHOLD = float(os.getenv("DETECT_SAFE_AUTO", "0.8"))       # auto-run non-mutating actions at/above
DEGRADED_CONFIDENCE = float(os.getenv("DETECT_DEGRADED_CONFIDENCE", "0.6"))

# ---------- Action lifecycle / windows ----------
ACTION_TTL_SECONDS = int(os.getenv("ACTION_TTL_SECONDS", "300"))
RECENT_ORDERS_WINDOW = int(os.getenv("RECENT_ORDERS_WINDOW", "5"))
HISTORY_WINDOW = int(os.getenv("HISTORY_WINDOW", "5"))

# ---------- Infra ----------
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
MENU_JSON_PATH = os.getenv("MENU_JSON_PATH", "./menu.json")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", "")


class DetectorSettings(BaseModel):
    """Tunable thresholds. Defaults come from the environment."""

    generative_enabled: bool = LLM_BACKEND != "disabled"
    llm_timeout: float = Field(default=LLM_TIMEOUT, gt=0)
    fallback_floor: float = Field(default=FALLBACK_FLOOR, ge=0, le=1)
    safe_auto_threshold: float = Field(default=SAFE_AUTO_THRESHOLD, ge=0, le=1)
    degraded_confidence: float = Field(default=DEGRADED_CONFIDENCE, ge=0, lt=0.8)
    pattern_min: float = 0.45
    pattern_max: float = 0.65
    hedge_penalty: float = 0.15
    action_ttl_seconds: int = Field(default=ACTION_TTL_SECONDS, gt=0)
    recent_orders_window: int = Field(default=RECENT_ORDERS_WINDOW, ge=1)
    history_window: int = Field(default=HISTORY_WINDOW, ge=0)
