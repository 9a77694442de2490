# /flowcore/models/api.py

from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from flowcore.models.chat import ChatMessage

# Request and response models for the public entry points.


class Reason(str, Enum):
    """Outcome reasons surfaced to callers instead of exception types."""
    OK = "OK"
    VALIDATION = "VALIDATION"
    BAD_MODEL = "BAD_MODEL"
    INTERNAL = "INTERNAL"
    LIMIT = "LIMIT"
    NOKNOWLEDGE = "NOKNOWLEDGE"


class FlowResult(BaseModel):
    ok: bool
    response: Optional[Any] = None
    error: Optional[str] = None
    reason: Reason = Reason.OK


class AnswerRequest(BaseModel):
    query: str = Field(..., min_length=1)
    id: str = Field(..., min_length=1, description="Identity of the calling user")
    org: str = Field(..., min_length=1)
    aiappid: str = Field(..., min_length=1)
    request: Dict[str, Any] = Field(default_factory=dict)
    flow: str = "llm_flow"


class ChatRequest(BaseModel):
    id: str = Field(..., min_length=1)
    org: str = Field(..., min_length=1)
    session: List[ChatMessage] = Field(default_factory=list)
    session_id: Optional[str] = None
    model: Optional[str] = None
    maintain_session: bool = True
    auto_chat_summary_enabled: bool = False
    raw_question: Optional[str] = None
    aiappid: Optional[str] = None


class ChatResponse(BaseModel):
    ok: bool
    response: Optional[Any] = None
    reason: Reason = Reason.OK
    session_id: Optional[str] = None
    error: Optional[str] = None
