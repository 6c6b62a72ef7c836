from typing import Any, AsyncIterator, Dict, List, Optional
import json
import structlog
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from compass_agent.domain.models.tooling import ChunkResult, ToolCall
from compass_agent.domain.streaming.events import (
    DONE_SENTINEL,
    ContentFrame,
    DoneFrame,
    MetadataFrame,
    SessionFrame,
    StateFrame,
    StateType,
    StreamFrame,
)

logger = structlog.get_logger(__name__)


# Workflow node -> progress frame emitted once that node finishes
NODE_PROGRESS: Dict[str, StateFrame] = {
    "detect_intent": StateFrame(state_type=StateType.THINKING, message="Understanding your question..."),
    "run_tools": StateFrame(state_type=StateType.SEARCHING, message="Searching your records and the knowledge base..."),
    "build_messages": StateFrame(state_type=StateType.GENERATING, message="Generating response..."),
}


class CollectedTurn(BaseModel):
    """A whole turn gathered from its frames, for the non-streaming endpoint"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    message: str = ""
    session_id: Optional[str] = None
    sources: List[ChunkResult] = Field(default_factory=list)
    tools_used: List[ToolCall] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None


class StreamingHandler:
    """Translates workflow updates and turn frames into client output"""

    def handle_update(self, update: Dict[str, Any]) -> List[StateFrame]:
        """Progress frames for a ``astream(stream_mode="updates")`` chunk"""

        frames = []
        for node_id in update:
            frame = NODE_PROGRESS.get(node_id)
            if frame is not None:
                logger.debug("Processing node update", node_id=node_id)
                frames.append(frame)
        return frames

    @staticmethod
    def encode(frame: StreamFrame) -> str:
        """Server-sent event line for a frame"""

        if isinstance(frame, DoneFrame):
            return f"data: {DONE_SENTINEL}\n\n"
        payload = frame.model_dump(mode="json", by_alias=True, exclude_none=True)
        return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"

    async def encode_stream(self, frames: AsyncIterator[StreamFrame]) -> AsyncIterator[str]:
        async for frame in frames:
            yield self.encode(frame)

    async def collect(self, frames: AsyncIterator[StreamFrame]) -> CollectedTurn:
        """Drain a turn's frames into a single response"""

        turn = CollectedTurn()
        parts: List[str] = []
        async for frame in frames:
            if isinstance(frame, SessionFrame):
                turn.session_id = frame.session_id
            elif isinstance(frame, MetadataFrame):
                turn.sources = frame.sources
                turn.tools_used = frame.tools_used
            elif isinstance(frame, ContentFrame):
                parts.append(frame.content)
            elif isinstance(frame, StateFrame) and frame.state_type in (StateType.ERROR, StateType.CANCELLED):
                turn.error = frame.message
        turn.message = "".join(parts)
        turn.metadata = {
            "source_count": len(turn.sources),
            "tool_count": len(turn.tools_used),
        }
        return turn
