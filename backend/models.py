# Mind map request/response models.
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, List, Optional

from pydantic import (
    AfterValidator,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    ValidationInfo,
    field_validator,
)
from pydantic.alias_generators import to_camel


class NodeType(str, Enum):
    IDEA = "IDEA"
    NOTE = "NOTE"
    TASK = "TASK"
    QUESTION = "QUESTION"
    DECISION = "DECISION"
    REFERENCE = "REFERENCE"


def normalize_node_type(value: Any) -> Any:
    """Accept "idea", "Idea" and "IDEA" alike; anything else is left for pydantic to reject."""
    if isinstance(value, str):
        return value.strip().upper()
    return value


def require_title(value: str) -> str:
    if not value.strip():
        raise ValueError("Title cannot be blank")
    return value


NodeTypeField = Annotated[NodeType, BeforeValidator(normalize_node_type)]
Title = Annotated[str, AfterValidator(require_title)]


class CamelModel(BaseModel):
    """Serialises to camelCase on the wire; accepts camelCase or snake_case on input."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MindNode(CamelModel):
    id: int
    title: str
    x: float
    y: float
    type: NodeType

    description: Optional[str] = None
    color: Optional[str] = None

    # Assigned by the database
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    # Derived: ids of every node sharing a CONNECTED_TO edge, either direction
    connection_ids: List[int] = []


class MindNodeCreate(CamelModel):
    """Body for POST and PUT: every mutable field, required ones enforced."""
    title: Title
    x: float
    y: float
    type: NodeTypeField
    description: Optional[str] = None
    color: Optional[str] = Field(default=None, description="Hex color code, e.g. #FF5733")


class MindNodePatch(CamelModel):
    """
    Partial update. A field that is absent or null keeps its stored value,
    so callers must dump this with exclude_none=True.
    """
    title: Optional[Title] = None
    x: Optional[float] = None
    y: Optional[float] = None
    type: Optional[NodeTypeField] = None
    description: Optional[str] = None
    color: Optional[str] = None


class ConnectNodesRequest(CamelModel):
    source_id: str
    target_id: str

    @field_validator("source_id", "target_id", mode="before")
    @classmethod
    def stringify_numeric_ids(cls, v):
        # JSON clients often send numeric ids
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("source_id", "target_id")
    @classmethod
    def not_blank(cls, v: str, info: ValidationInfo):
        if not v.strip():
            label = "Source" if info.field_name == "source_id" else "Target"
            raise ValueError(f"{label} ID cannot be blank")
        return v


class ConnectOutcome(str, Enum):
    CONNECTED = "connected"
    ALREADY_CONNECTED = "already_connected"
    NODE_NOT_FOUND = "node_not_found"


class ConnectResult(CamelModel):
    applied: bool
    reason: ConnectOutcome
    source_id: int
    target_id: int


def field_errors(errors) -> dict:
    """Flatten pydantic error dicts to {field: message}."""
    fields = {}
    for err in errors:
        # Drop the "body"/"query"/"path" prefix FastAPI adds
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        msg = str(err.get("msg", "Invalid value"))
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, "):]
        fields[".".join(loc) or "body"] = msg
    return fields
