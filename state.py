# state.py
from typing_extensions import Any, Dict, List, Literal, Optional, TypedDict, cast
from pydantic import BaseModel, Field
from pydantic.type_adapter import TypeAdapter

Role = Literal["system", "user", "assistant"]


class MessageModel(BaseModel):
    role: Role
    content: str = Field(min_length=1)


class ChatStateModel(BaseModel):
    """One conversation as persisted under chat:{session_id}."""

    session_id: str
    restaurant_id: str = ""
    table_number: Optional[str] = None
    messages: List[MessageModel] = Field(default_factory=list)
    # pending_action_id, last_detection, last_outcome, suggested_actions, helpful_tips
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def pending_action_id(self) -> Optional[str]:
        return self.metadata.get("pending_action_id")

    def last_reply(self, default: str = "") -> str:
        return next((m.content for m in reversed(self.messages) if m.role == "assistant"), default)


class MessageTD(TypedDict):
    role: Role
    content: str


class ChatStateTD(TypedDict, total=False):
    session_id: str
    restaurant_id: str
    table_number: Optional[str]
    messages: List[MessageTD]
    metadata: Dict[str, Any]
    _error: Dict[str, Any]


state_adapter = TypeAdapter(ChatStateModel)


def to_graph_state(model: ChatStateModel) -> ChatStateTD:
    # json mode: Decimals and datetimes in metadata must survive the Redis round trip
    return cast(ChatStateTD, model.model_dump(mode="json"))


def from_graph_state(state: ChatStateTD) -> ChatStateModel:
    return state_adapter.validate_python(state)
