
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

Role = Literal["user", "assistant", "system"]

MAX_MESSAGE_CHARS = 1000


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# --------------------------------------------------------------------------- #
# domain
# --------------------------------------------------------------------------- #
class ConversationSession(BaseModel):
    session_id: str
    created_at: datetime = Field(default_factory=utcnow)
    last_activity: datetime = Field(default_factory=utcnow)


class ConversationMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    session_id: str
    role: Role
    content: str
    metadata: Optional[Dict[str, Any]] = None
    created_at: datetime = Field(default_factory=utcnow)


class RetrievedPassage(BaseModel):
    """One scored hit from the vector index; lives for a single request."""

    id: str
    score: float = Field(ge=0.0, le=1.0)
    text: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class InquiryDetails(BaseModel):
    email: Optional[str] = None
    name: Optional[str] = None
    inquiry_type: str = "general"
    message: str = ""
    conversation_excerpt: str = ""
    matched_rules: List[str] = Field(default_factory=list)


class InquirySubmission(BaseModel):
    visitor_email: str
    visitor_name: Optional[str] = None
    inquiry_type: Optional[str] = None
    message: str
    conversation_context: Optional[str] = None
    session_id: Optional[str] = None


class NotificationRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    visitor_email: str
    visitor_name: Optional[str] = None
    inquiry_type: str = "general"
    message: str
    conversation_excerpt: Optional[str] = None
    session_id: Optional[str] = None
    sent_at: datetime = Field(default_factory=utcnow)
    provider_message_id: Optional[str] = None


# --------------------------------------------------------------------------- #
# HTTP payloads
# --------------------------------------------------------------------------- #
class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str = Field(..., min_length=1, max_length=MAX_MESSAGE_CHARS)
    session_id: Optional[str] = Field(None, alias="sessionId", description="Client session id")

    @field_validator("message")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Message is required")
        return v


class SessionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: Optional[str] = Field(None, alias="sessionId")


class SessionResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(..., alias="sessionId")
    created_at: datetime = Field(..., alias="createdAt")


class HistoryMessage(BaseModel):
    id: str
    content: str
    role: Role
    timestamp: datetime
    metadata: Optional[Dict[str, Any]] = None


class HistoryResponse(BaseModel):
    messages: List[HistoryMessage]


class NotifyRequest(BaseModel):
    visitor_email: EmailStr
    visitor_name: Optional[str] = None
    inquiry_type: Optional[str] = None
    message: str = Field(..., min_length=1)
    conversation_context: Optional[str] = None
    session_id: Optional[str] = None


class NotifyResponse(BaseModel):
    success: bool
    email_id: Optional[str] = None
    message: str = "Notification sent successfully"


class SearchResult(BaseModel):
    id: str
    score: float
    content: str


class SearchResponse(BaseModel):
    results: List[SearchResult]
