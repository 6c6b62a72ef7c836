from typing import List, Literal, Union
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from enum import Enum

from compass_agent.domain.models.tooling import ChunkResult, ToolCall


DONE_SENTINEL = "[DONE]"


class FrameType(str, Enum):
    """Stream frame types sent to the chat client"""
    SESSION = "session"
    METADATA = "metadata"
    CONTENT = "content"
    STATE = "state"
    DONE = "done"


class StateType(str, Enum):
    """Progress and terminal states reported during a turn"""
    THINKING = "thinking"
    SEARCHING = "searching"
    GENERATING = "generating"
    CANCELLED = "cancelled"
    ERROR = "error"


class BaseFrame(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SessionFrame(BaseFrame):
    """First frame of every turn: the session the turn was appended to"""
    type: Literal[FrameType.SESSION] = FrameType.SESSION
    session_id: str


class MetadataFrame(BaseFrame):
    """Provenance sent before any content"""
    type: Literal[FrameType.METADATA] = FrameType.METADATA
    session_id: str
    sources: List[ChunkResult] = Field(default_factory=list)
    tools_used: List[ToolCall] = Field(default_factory=list)


class ContentFrame(BaseFrame):
    type: Literal[FrameType.CONTENT] = FrameType.CONTENT
    content: str


class StateFrame(BaseFrame):
    type: Literal[FrameType.STATE] = FrameType.STATE
    state_type: StateType
    message: str


class DoneFrame(BaseFrame):
    """Terminal frame; encoded as the bare ``[DONE]`` sentinel"""
    type: Literal[FrameType.DONE] = FrameType.DONE


StreamFrame = Union[SessionFrame, MetadataFrame, ContentFrame, StateFrame, DoneFrame]
