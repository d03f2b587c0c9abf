# utils/functions.py
# Functions the generative backend may call, one per action kind.
from typing_extensions import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from utils.actions import ActionKind

MAX_ITEM_QUANTITY = 50


class ItemArg(BaseModel):
    name: str = Field(min_length=1, description="Menu item name exactly as on the menu")
    menu_item_id: Optional[str] = Field(default=None, description="Menu item [ID] from CONTEXT_MENU")
    quantity: int = Field(default=1, ge=1, le=MAX_ITEM_QUANTITY)
    notes: Optional[str] = None


class AddToOrderArgs(BaseModel):
    items: List[ItemArg] = Field(min_length=1)
    order_id: Optional[str] = None


class RemoveFromOrderArgs(BaseModel):
    items: List[ItemArg] = Field(min_length=1)
    order_id: Optional[str] = None


class ModifyOrderItemArgs(BaseModel):
    name: str = Field(min_length=1)
    menu_item_id: Optional[str] = None
    new_quantity: int = Field(ge=1, le=MAX_ITEM_QUANTITY)
    old_quantity: Optional[int] = Field(default=None, ge=1)
    order_id: Optional[str] = None
    notes: Optional[str] = None


class ConfirmOrderArgs(BaseModel):
    items: List[ItemArg] = Field(min_length=1)
    notes: Optional[str] = None


class CancelOrderArgs(BaseModel):
    order_id: Optional[str] = None
    reason: str = "customer request"


class RequestRecommendationArgs(BaseModel):
    preferences: str = ""


class RequestClarificationArgs(BaseModel):
    question: str = Field(min_length=1)
    options: List[str] = Field(default_factory=list)


class SpecificOrderEditArgs(BaseModel):
    order_ref: str = Field(min_length=1, description="Order short code, e.g. #A1B2C3")
    operation: Literal["view", "add", "remove", "modify", "cancel"] = "view"
    items: List[ItemArg] = Field(default_factory=list)


class NoActionArgs(BaseModel):
    reason: str = ""


class FunctionSpec(BaseModel):
    name: str
    kind: ActionKind
    description: str
    args_model: type[BaseModel]

    def to_tool(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.args_model.model_json_schema(),
            },
        }


FUNCTIONS: List[FunctionSpec] = [
    FunctionSpec(name="add_to_order", kind=ActionKind.ADD_TO_ORDER, args_model=AddToOrderArgs,
                 description="Add menu items to the guest's current (or a given) order."),
    FunctionSpec(name="remove_from_order", kind=ActionKind.REMOVE_FROM_ORDER, args_model=RemoveFromOrderArgs,
                 description="Remove items from the guest's current (or a given) order."),
    FunctionSpec(name="modify_order_item", kind=ActionKind.MODIFY_ORDER_ITEM, args_model=ModifyOrderItemArgs,
                 description="Change the quantity or notes of one item already in an order."),
    FunctionSpec(name="confirm_order", kind=ActionKind.CONFIRM_ORDER, args_model=ConfirmOrderArgs,
                 description="Place a new order with the listed items once the guest is ready."),
    FunctionSpec(name="cancel_order", kind=ActionKind.CANCEL_ORDER, args_model=CancelOrderArgs,
                 description="Cancel the guest's current (or a given) order."),
    FunctionSpec(name="request_recommendation", kind=ActionKind.REQUEST_RECOMMENDATION,
                 args_model=RequestRecommendationArgs,
                 description="The guest wants suggestions; pass any stated preferences."),
    FunctionSpec(name="request_clarification", kind=ActionKind.REQUEST_CLARIFICATION,
                 args_model=RequestClarificationArgs,
                 description="The request is ambiguous; ask one question with a few options."),
    FunctionSpec(name="specific_order_edit", kind=ActionKind.SPECIFIC_ORDER_EDIT, args_model=SpecificOrderEditArgs,
                 description="The guest refers to a specific order by its #code."),
    FunctionSpec(name="no_action_needed", kind=ActionKind.NO_ACTION, args_model=NoActionArgs,
                 description="Small talk or a question that needs no order change."),
]

FUNCTIONS_BY_NAME: Dict[str, FunctionSpec] = {f.name: f for f in FUNCTIONS}


def tool_declarations() -> List[Dict[str, Any]]:
    return [f.to_tool() for f in FUNCTIONS]
