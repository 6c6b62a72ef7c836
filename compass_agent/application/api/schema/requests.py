from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from compass_agent.domain.models.persona import PersonaSelection, PersonaType, normalize_persona_number
from compass_agent.domain.orchestration.core.main_agent import ChatTurnRequest


class CamelRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ChatRequestMetadata(CamelRequest):
    """Client metadata; unknown keys are kept and stored with the message"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    session_id: Optional[str] = None
    selected_customer_persona: Optional[str] = None
    selected_advisor_persona: Optional[str] = None
    user_type: Optional[PersonaType] = None

    @field_validator("user_type", mode="before")
    @classmethod
    def _blank_user_type(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip().lower()
            return value or None
        return value


class ChatRequestBody(CamelRequest):
    """Body of POST /api/chat and /api/chat/stream"""
    message: str = Field(description="The user's message")
    user_id: Optional[str] = None
    metadata: ChatRequestMetadata = Field(default_factory=ChatRequestMetadata)

    @field_validator("message")
    @classmethod
    def _message_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("message must not be empty")
        return value

    def to_turn_request(self) -> ChatTurnRequest:
        meta = self.metadata
        extra = dict(meta.model_extra or {})
        return ChatTurnRequest(
            message=self.message,
            user_id=self.user_id,
            session_id=meta.session_id or None,
            persona=PersonaSelection(
                customer_number=normalize_persona_number(meta.selected_customer_persona),
                advisor_number=normalize_persona_number(meta.selected_advisor_persona),
                user_type=meta.user_type,
            ),
            metadata=extra,
        )


class ClearRequestBody(CamelRequest):
    session_id: str
    user_id: Optional[str] = None


class CancelRequestBody(CamelRequest):
    session_id: str
    user_id: Optional[str] = None


class ClearResponse(CamelRequest):
    success: bool = True
    messages_deleted: int = 0
    sessions_deleted: int = 0


class CancelResponse(CamelRequest):
    success: bool = True
    cancelled: bool = False
