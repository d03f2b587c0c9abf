import logging
from typing import Optional

from langsmith import traceable

logger = logging.getLogger("waiter.decisions")


@traceable(name="Detection.log", tags=["detection", "log"])
def detection_logger(text: str, kind: Optional[str], confidence: float, provenance: str, used_fallback: bool):
    logger.info("detect kind=%s conf=%.2f via=%s fallback=%s text=%r",
                kind or "none", confidence, provenance, used_fallback, text[:120])
    return {"kind": kind, "confidence": confidence, "provenance": provenance,
            "used_fallback": used_fallback, "text": text}


@traceable(name="Action.log", tags=["actions", "log"])
def action_logger(action_id: str, kind: str, outcome: str, detail: str = ""):
    logger.info("action %s kind=%s outcome=%s %s", action_id, kind, outcome, detail)
    return {"action_id": action_id, "kind": kind, "outcome": outcome, "detail": detail}
