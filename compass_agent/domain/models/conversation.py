from typing import Dict, Any, List, Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel
from datetime import datetime, timedelta, timezone
from enum import Enum


CUSTOMER_PERSONA_KEY = "selected_customer_persona"
ADVISOR_PERSONA_KEY = "selected_advisor_persona"

# Keys that bind a session to its owner; metadata refreshes never touch them
IDENTITY_METADATA_KEYS = frozenset({
    CUSTOMER_PERSONA_KEY,
    ADVISOR_PERSONA_KEY,
    "customer_id",
    "customer_number",
    "advisor_id",
    "advisor_number",
    "user_type",
})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MessageRole(str, Enum):
    """Author of a persisted message"""
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class Session(BaseModel):
    """A conversation owned by exactly one identity"""
    id: str = Field(description="Session UUID")
    user_id: Optional[str] = Field(None, description="Persona number or opaque identity of the owner")
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime = Field(default_factory=lambda: utcnow() + timedelta(hours=24))

    @model_validator(mode="after")
    def _single_persona(self) -> "Session":
        if self.metadata.get(CUSTOMER_PERSONA_KEY) and self.metadata.get(ADVISOR_PERSONA_KEY):
            raise ValueError("a session cannot belong to both a customer and an advisor persona")
        return self

    @property
    def customer_persona(self) -> Optional[str]:
        value = self.metadata.get(CUSTOMER_PERSONA_KEY)
        return value.upper() if value else None

    @property
    def advisor_persona(self) -> Optional[str]:
        value = self.metadata.get(ADVISOR_PERSONA_KEY)
        return value.upper() if value else None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.expires_at <= (now or utcnow())


class Message(BaseModel):
    """A single append-only conversation message"""
    id: str
    session_id: str
    role: MessageRole
    content: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


class ClearResult(BaseModel):
    """Outcome of deleting a session and its messages"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    messages_deleted: int = 0
    sessions_deleted: int = 0


class QueryIntent(BaseModel):
    """Topic flags detected in a user query"""
    is_policy_query: bool = False
    is_claim_query: bool = False
    is_document_query: bool = False
    is_task_query: bool = False
    is_profile_query: bool = False
    is_interaction_query: bool = False
    is_calculation_query: bool = False
    is_advisor_query: bool = False

    def active_flags(self) -> List[str]:
        return [name for name, value in self.model_dump().items() if value]
