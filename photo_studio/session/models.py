"""Value types shared by the edit history, suggestion cache and session."""
import base64
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from ..errors import StudioError


@dataclass(frozen=True)
class ImageState:
    """An immutable image payload. Edits produce new states, never mutate one."""

    data: bytes
    mime_type: str = "image/png"

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("utf-8")

    def to_data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.to_base64()}"

    @classmethod
    def from_base64(cls, encoded: str, mime_type: str = "image/png") -> "ImageState":
        return cls(data=base64.b64decode(encoded), mime_type=mime_type)


class Flow(str, Enum):
    """Independent operation flows; each keeps its own last error."""

    ANALYSIS = "analysis"
    SUGGESTIONS = "suggestions"
    TOP_UP = "top_up"
    TYPING = "typing"
    EDIT = "edit"
    GENERATE = "generate"
    RANDOM_PROMPT = "random_prompt"
    HISTORY = "history"
    PROMPT = "prompt"


class Outcome(str, Enum):
    APPLIED = "applied"
    STALE = "stale"
    REJECTED = "rejected"
    FAILED = "failed"
    SKIPPED = "skipped"


class SessionState(str, Enum):
    EMPTY = "empty"
    LOADED = "loaded"
    EDITING = "editing"


class OperationResult(BaseModel):
    """Explicit result value returned by every public session operation."""

    success: bool
    flow: Flow
    outcome: Outcome
    message: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None

    @classmethod
    def applied(cls, flow: Flow, message: Optional[str] = None) -> "OperationResult":
        return cls(success=True, flow=flow, outcome=Outcome.APPLIED, message=message)

    @classmethod
    def stale(cls, flow: Flow) -> "OperationResult":
        # Superseded responses are normal racing, so they are not failures.
        return cls(success=True, flow=flow, outcome=Outcome.STALE, message="superseded")

    @classmethod
    def skipped(cls, flow: Flow, message: Optional[str] = None) -> "OperationResult":
        return cls(success=True, flow=flow, outcome=Outcome.SKIPPED, message=message)

    @classmethod
    def from_error(cls, flow: Flow, error: StudioError) -> "OperationResult":
        outcome = Outcome.REJECTED if error.kind == "invalid_request" else Outcome.FAILED
        return cls(success=False, flow=flow, outcome=outcome, error=str(error), error_kind=error.kind)


class SessionSnapshot(BaseModel):
    """Read-only view of a session handed to the caller after each operation."""

    state: SessionState
    prompt: str = ""
    analysis: Optional[str] = None
    has_image: bool = False
    mime_type: Optional[str] = None
    history_length: int = 0
    history_position: int = -1
    can_undo: bool = False
    can_redo: bool = False
    busy: bool = False
    live_suggestions: List[str] = Field(default_factory=list)
    visible_suggestions: List[str] = Field(default_factory=list)
    dismissed_suggestions: List[str] = Field(default_factory=list)
    errors: Dict[str, str] = Field(default_factory=dict)
