# /flowcore/models/chat.py

from typing import List, Optional
from pydantic import BaseModel, Field


class ChatMessage(BaseModel):
    role: str
    content: str


class ChatSession(BaseModel):
    """Conversation history for one (user, session) pair. Only ever appended to."""
    session_id: str
    messages: List[ChatMessage] = Field(default_factory=list)
    last_update: Optional[float] = None
