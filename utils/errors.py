# utils/errors.py
from enum import Enum


class ErrorKind(str, Enum):
    DETECTION_DEGRADED = "detection_degraded"
    INVALID_TRANSITION = "invalid_transition"
    ACTION_EXPIRED = "action_expired"
    ACTION_NOT_FOUND = "action_not_found"
    ARGUMENT_VALIDATION = "argument_validation"
    CONCURRENT_MODIFICATION = "concurrent_modification"


# Hard failures: these are caller bugs, not conversation outcomes.
class ContextError(ValueError):
    pass


class OrderNotFoundError(LookupError):
    def __init__(self, order_id: str):
        super().__init__(f"order {order_id} not found")
        self.order_id = order_id


class SessionNotFoundError(LookupError):
    def __init__(self, session_id: str):
        super().__init__(f"session {session_id} not found")
        self.session_id = session_id


class LLMError(RuntimeError):
    """Transport or protocol failure talking to the generative backend."""


class TableClaimError(RuntimeError):
    """The table pointer kept changing hands; no session could be settled."""

    def __init__(self, restaurant_id: str, table_number: str, attempts: int):
        super().__init__(f"could not settle a session for {restaurant_id}/{table_number} after {attempts} attempts")
        self.restaurant_id = restaurant_id
        self.table_number = table_number
