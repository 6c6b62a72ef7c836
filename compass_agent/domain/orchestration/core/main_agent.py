from typing import TypedDict, Annotated, List, Dict, Any, Optional, AsyncIterator
from dataclasses import dataclass, field
from enum import Enum
import asyncio
import operator

from langgraph.graph import StateGraph, END
from langchain_core.messages import BaseMessage, HumanMessage, AIMessage, SystemMessage
from pydantic import BaseModel, Field
import structlog

from compass_agent.domain.context.context_manager import ContextAssembler
from compass_agent.domain.context.context_retriever import ContextRetriever
from compass_agent.domain.context.intent_detector import IntentDetector
from compass_agent.domain.errors import SessionOwnershipMismatch, SessionStoreUnavailable
from compass_agent.domain.interfaces import CompletionProvider, CrmStore, SessionStore
from compass_agent.domain.models.conversation import ClearResult, Message, MessageRole, QueryIntent, Session, utcnow
from compass_agent.domain.models.persona import PersonaNumber, PersonaSelection, PersonaType, ResolvedPersona, parse_identity
from compass_agent.domain.models.tooling import ToolResultBag
from compass_agent.domain.orchestration.core.tool_orchestrator import ToolOrchestrator
from compass_agent.domain.orchestration.prompts import system_prompt_for
from compass_agent.domain.streaming.events import (
    ContentFrame,
    DoneFrame,
    MetadataFrame,
    SessionFrame,
    StateFrame,
    StateType,
    StreamFrame,
)
from compass_agent.domain.streaming.streaming_handler import StreamingHandler
from compass_agent.infrastructure.observability.logging import agent_logger, metrics
from compass_agent.infrastructure.security.access_validator import AccessValidator

logger = structlog.get_logger(__name__)


COMPLETION_FAILED_MESSAGE = "Failed to generate response. Please try again."
CANCELLED_MESSAGE = "Response generation was stopped."


class TurnState(str, Enum):
    """Stages of a single conversation turn"""
    VALIDATING_SESSION = "validating_session"
    DETECTING_INTENT = "detecting_intent"
    RUNNING_TOOLS = "running_tools"
    ASSEMBLING_CONTEXT = "assembling_context"
    STREAMING_COMPLETION = "streaming_completion"
    PERSISTING_TURN = "persisting_turn"
    DONE = "done"
    CANCELLED = "cancelled"
    FAILED = "failed"


# Turn stage entered once each workflow node finishes
NODE_TRANSITIONS = {
    "validate_session": (TurnState.VALIDATING_SESSION, TurnState.DETECTING_INTENT),
    "detect_intent": (TurnState.DETECTING_INTENT, TurnState.RUNNING_TOOLS),
    "run_tools": (TurnState.RUNNING_TOOLS, TurnState.ASSEMBLING_CONTEXT),
}


class ChatTurnRequest(BaseModel):
    """One user message plus the caller's declared identity"""
    message: str = Field(min_length=1)
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    persona: PersonaSelection = Field(default_factory=PersonaSelection)
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Extra client metadata stored with the message")


class WorkflowState(TypedDict, total=False):
    """State for the turn preparation graph"""
    request: ChatTurnRequest
    session: Session
    persona: Optional[ResolvedPersona]
    user_message: Message
    history: List[Message]
    intent: QueryIntent
    crm_summary: str
    tool_bag: ToolResultBag
    context_text: str
    messages: List[BaseMessage]
    trace: Annotated[List[str], operator.add]


@dataclass
class PreparedTurn:
    """Everything needed to stream the completion for a validated turn"""
    session: Session
    persona: Optional[ResolvedPersona]
    intent: QueryIntent
    tool_bag: ToolResultBag
    context_text: str
    messages: List[BaseMessage]
    progress: List[StateFrame] = field(default_factory=list)


@dataclass
class ActiveTurn:
    """An in-flight turn and the persona that started it"""
    cancel_event: asyncio.Event
    owner_id: Optional[str] = None


class TurnCancelled(Exception):
    pass


async def _anext(iterator: AsyncIterator[str]) -> str:
    return await iterator.__anext__()


def to_langchain_message(message: Message) -> BaseMessage:
    if message.role == MessageRole.USER:
        return HumanMessage(content=message.content)
    if message.role == MessageRole.ASSISTANT:
        return AIMessage(content=message.content)
    return SystemMessage(content=message.content)


class ConversationDriver:
    """Runs a conversation turn end to end.

    Preparation (validation, intent, tools, context) runs as a LangGraph
    workflow; any identity error aborts it before anything is streamed. The
    completion is then streamed as typed frames and the assistant message is
    persisted only once the stream has finished.
    """

    def __init__(
        self,
        access_validator: AccessValidator,
        session_store: SessionStore,
        crm_store: CrmStore,
        orchestrator: ToolOrchestrator,
        assembler: ContextAssembler,
        context_retriever: ContextRetriever,
        completion: CompletionProvider,
        intent_detector: Optional[IntentDetector] = None,
        history_limit: int = 10
    ):
        self.access_validator = access_validator
        self.session_store = session_store
        self.crm_store = crm_store
        self.orchestrator = orchestrator
        self.assembler = assembler
        self.context_retriever = context_retriever
        self.completion = completion
        self.intent_detector = intent_detector or IntentDetector()
        self.history_limit = history_limit
        self.streaming_handler = StreamingHandler()
        self.active_turns: Dict[str, ActiveTurn] = {}
        self.workflow = self._create_workflow()

    def _create_workflow(self):
        """Create the turn preparation graph"""

        workflow = StateGraph(WorkflowState)

        workflow.add_node("validate_session", self.validate_session_node)
        workflow.add_node("persist_user_message", self.persist_user_message_node)
        workflow.add_node("detect_intent", self.detect_intent_node)
        workflow.add_node("run_tools", self.run_tools_node)
        workflow.add_node("assemble_context", self.assemble_context_node)
        workflow.add_node("build_messages", self.build_messages_node)

        workflow.set_entry_point("validate_session")
        workflow.add_edge("validate_session", "persist_user_message")
        workflow.add_edge("persist_user_message", "detect_intent")
        workflow.add_edge("detect_intent", "run_tools")
        workflow.add_edge("run_tools", "assemble_context")
        workflow.add_edge("assemble_context", "build_messages")
        workflow.add_edge("build_messages", END)

        return workflow.compile()

    async def validate_session_node(self, state: WorkflowState) -> Dict[str, Any]:
        request = state["request"]
        validated = await self.access_validator.resolve_session(
            raw_identity=request.user_id,
            selection=request.persona,
            session_id=request.session_id,
            metadata={"last_message_at": utcnow().isoformat()}
        )
        return {"session": validated.session, "persona": validated.persona, "trace": ["validate_session"]}

    async def persist_user_message_node(self, state: WorkflowState) -> Dict[str, Any]:
        """Persist the user message before any tool runs, then load prior history"""

        request = state["request"]
        session = state["session"]
        persona = state.get("persona")

        message_metadata = dict(request.metadata)
        if persona is not None:
            message_metadata["persona"] = persona.number
        try:
            user_message = await self.session_store.add_message(
                session.id, MessageRole.USER, request.message, message_metadata
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("user_message_not_persisted", session_id=session.id, error=str(e))
            raise SessionStoreUnavailable(str(e)) from e

        await self._record_interaction(session, persona, request.message)
        history = await self._load_history(session.id, exclude_id=user_message.id)

        return {"user_message": user_message, "history": history, "trace": ["persist_user_message"]}

    async def detect_intent_node(self, state: WorkflowState) -> Dict[str, Any]:
        intent = self.intent_detector.detect(state["request"].message)
        logger.debug("intent_detected", session_id=state["session"].id, flags=intent.active_flags())
        return {"intent": intent, "trace": ["detect_intent"]}

    async def run_tools_node(self, state: WorkflowState) -> Dict[str, Any]:
        """Run tools and build the CRM summary concurrently; both degrade to empty"""

        session = state["session"]
        persona = state.get("persona")
        bag, summary = await asyncio.gather(
            self._run_tools(state["request"].message, state["intent"], persona, session.id),
            self.context_retriever.build_summary(persona),
        )
        return {"tool_bag": bag, "crm_summary": summary, "trace": ["run_tools"]}

    async def assemble_context_node(self, state: WorkflowState) -> Dict[str, Any]:
        persona = state.get("persona")
        context_text = self.assembler.assemble(
            state["tool_bag"],
            crm_summary=state.get("crm_summary"),
            persona_type=persona.persona_type if persona else None
        )
        agent_logger.log_context_update(
            state["session"].id,
            context_type="grounding",
            action="assembled",
            details={"length": len(context_text), "sources": len(state["tool_bag"].sources)}
        )
        return {"context_text": context_text, "trace": ["assemble_context"]}

    async def build_messages_node(self, state: WorkflowState) -> Dict[str, Any]:
        """System prompt, CRM summary, grounding, history, then the new message"""

        persona = state.get("persona")
        persona_type = persona.persona_type if persona else state["request"].persona.user_type

        messages: List[BaseMessage] = [SystemMessage(content=system_prompt_for(persona_type))]
        if state.get("crm_summary"):
            messages.append(SystemMessage(content=state["crm_summary"]))
        messages.append(SystemMessage(content=f"Relevant context:\n{state['context_text']}"))
        messages.extend(to_langchain_message(message) for message in state.get("history", []))
        messages.append(HumanMessage(content=state["request"].message))

        return {"messages": messages, "trace": ["build_messages"]}

    async def _run_tools(self, query, intent, persona, session_id) -> ToolResultBag:
        try:
            return await self.orchestrator.run(query, intent, persona, session_id=session_id)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("tool_stage_failed", session_id=session_id)
            return ToolResultBag()

    async def _record_interaction(self, session: Session, persona: Optional[ResolvedPersona], content: str) -> None:
        customer_id = persona.internal_id if persona and persona.persona_type == PersonaType.CUSTOMER else None
        advisor_id = persona.internal_id if persona and persona.persona_type == PersonaType.ADVISOR else None
        try:
            await self.crm_store.record_chat_interaction(session.id, content, customer_id, advisor_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("interaction_not_recorded", session_id=session.id, error=str(e))

    async def _load_history(self, session_id: str, exclude_id: str) -> List[Message]:
        try:
            recent = await self.session_store.get_session_messages(session_id, self.history_limit + 1)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("history_unavailable", session_id=session_id, error=str(e))
            return []
        prior = [message for message in recent if message.id != exclude_id]
        return prior[-self.history_limit:] if self.history_limit > 0 else []

    async def prepare_turn(self, request: ChatTurnRequest) -> PreparedTurn:
        """Validate the caller and gather everything the completion needs.

        Raises the typed identity errors before anything is streamed.
        """

        initial_state: WorkflowState = {"request": request, "trace": []}
        final: Dict[str, Any] = {}
        progress: List[StateFrame] = []

        async for chunk in self.workflow.astream(initial_state, stream_mode="updates"):
            for node_id, update in chunk.items():
                final.update(update or {})
                transition = NODE_TRANSITIONS.get(node_id)
                if transition:
                    session = final.get("session")
                    agent_logger.log_turn_transition(
                        session.id if session else None, transition[0].value, transition[1].value
                    )
            progress.extend(self.streaming_handler.handle_update(chunk))

        return PreparedTurn(
            session=final["session"],
            persona=final.get("persona"),
            intent=final["intent"],
            tool_bag=final["tool_bag"],
            context_text=final["context_text"],
            messages=final["messages"],
            progress=progress,
        )

    async def stream_turn(
        self,
        prepared: PreparedTurn,
        cancel_event: Optional[asyncio.Event] = None
    ) -> AsyncIterator[StreamFrame]:
        """Stream the completion as frames and persist the finished answer.

        Closing the iterator, task cancellation or setting ``cancel_event``
        stops the stream; no assistant message is persisted in those cases.
        """

        session_id = prepared.session.id
        cancel_event = cancel_event or asyncio.Event()
        active = ActiveTurn(cancel_event=cancel_event, owner_id=prepared.session.user_id)
        self.active_turns[session_id] = active
        bag = prepared.tool_bag

        try:
            yield SessionFrame(session_id=session_id)
            for frame in prepared.progress:
                yield frame
            yield MetadataFrame(session_id=session_id, sources=bag.sources, tools_used=bag.tool_calls)

            agent_logger.log_turn_transition(
                session_id, TurnState.ASSEMBLING_CONTEXT.value, TurnState.STREAMING_COMPLETION.value
            )
            buffer: List[str] = []
            stream = self.completion.stream_chat(prepared.messages)
            iterator = stream.__aiter__()
            try:
                while True:
                    delta = await self._next_delta(iterator, cancel_event)
                    if delta is None:
                        break
                    if not delta:
                        continue
                    buffer.append(delta)
                    yield ContentFrame(content=delta)

            except TurnCancelled:
                agent_logger.log_turn_transition(
                    session_id, TurnState.STREAMING_COMPLETION.value, TurnState.CANCELLED.value
                )
                metrics.increment_counter("turn.cancelled")
                yield StateFrame(state_type=StateType.CANCELLED, message=CANCELLED_MESSAGE)
                yield DoneFrame()
                return

            except (asyncio.CancelledError, GeneratorExit):
                logger.info("turn_aborted", session_id=session_id)
                raise

            except Exception:
                logger.exception("completion_failed", session_id=session_id)
                agent_logger.log_turn_transition(
                    session_id, TurnState.STREAMING_COMPLETION.value, TurnState.FAILED.value
                )
                metrics.increment_counter("turn.completion_failed")
                yield StateFrame(state_type=StateType.ERROR, message=COMPLETION_FAILED_MESSAGE)
                yield DoneFrame()
                return

            finally:
                aclose = getattr(stream, "aclose", None)
                if aclose is not None:
                    await aclose()

            agent_logger.log_turn_transition(
                session_id, TurnState.STREAMING_COMPLETION.value, TurnState.PERSISTING_TURN.value
            )
            await self._persist_assistant_message(prepared, "".join(buffer))
            agent_logger.log_turn_transition(session_id, TurnState.PERSISTING_TURN.value, TurnState.DONE.value)
            metrics.increment_counter("turn.completed")
            yield DoneFrame()

        finally:
            if self.active_turns.get(session_id) is active:
                del self.active_turns[session_id]

    @staticmethod
    async def _next_delta(iterator: AsyncIterator[str], cancel_event: asyncio.Event) -> Optional[str]:
        """Next completion delta, None at the end, TurnCancelled if cancelled first"""

        if cancel_event.is_set():
            raise TurnCancelled()

        next_delta = asyncio.ensure_future(_anext(iterator))
        cancelled = asyncio.ensure_future(cancel_event.wait())
        try:
            await asyncio.wait({next_delta, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            pending = [task for task in (next_delta, cancelled) if not task.done()]
            for task in pending:
                task.cancel()
            # The stream must not be mid-step when it is closed afterwards
            if pending:
                await asyncio.wait(pending)

        if cancel_event.is_set():
            if next_delta.done() and not next_delta.cancelled():
                next_delta.exception()
            raise TurnCancelled()

        try:
            return next_delta.result()
        except StopAsyncIteration:
            return None

    async def _persist_assistant_message(self, prepared: PreparedTurn, content: str) -> None:
        bag = prepared.tool_bag
        metadata = {
            "tools_used": [call.model_dump() for call in bag.tool_calls],
            "sources": [
                {
                    "chunk_id": chunk.chunk_id,
                    "document_title": chunk.document_title,
                    "document_source": chunk.document_source,
                    "score": chunk.score,
                }
                for chunk in bag.sources
            ],
            "persona": prepared.persona.number if prepared.persona else None,
        }
        try:
            await self.session_store.add_message(prepared.session.id, MessageRole.ASSISTANT, content, metadata)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("assistant_message_not_persisted", session_id=prepared.session.id, error=str(e))

    async def run_turn(self, request: ChatTurnRequest, cancel_event: Optional[asyncio.Event] = None) -> AsyncIterator[StreamFrame]:
        prepared = await self.prepare_turn(request)
        async for frame in self.stream_turn(prepared, cancel_event):
            yield frame

    @staticmethod
    def _check_requester(session_id: str, owner_id: Optional[str], user_id: Optional[str], action: str) -> None:
        """A persona number may only act on its own session; opaque ids are not compared"""

        identity = parse_identity(user_id)
        if isinstance(identity, PersonaNumber) and owner_id and identity.value != owner_id.upper():
            raise SessionOwnershipMismatch(f"{action} requested by a different persona", {"session_id": session_id})

    def cancel_turn(self, session_id: str, user_id: Optional[str] = None) -> bool:
        """Signal an in-flight turn to stop; returns False when none is running"""

        active = self.active_turns.get(session_id)
        if active is None:
            return False
        self._check_requester(session_id, active.owner_id, user_id, "cancel")
        active.cancel_event.set()
        logger.info("turn_cancel_requested", session_id=session_id)
        return True

    async def clear_history(self, session_id: str, user_id: Optional[str] = None) -> ClearResult:
        """Delete a session and its messages; clearing a missing session is a no-op"""

        session = await self.session_store.get_session(session_id, include_expired=True)
        if session is None:
            return ClearResult()

        self._check_requester(session_id, session.user_id, user_id, "clear")

        self.cancel_turn(session_id)
        result = await self.session_store.delete_session(session_id)
        logger.info(
            "history_cleared",
            session_id=session_id,
            messages_deleted=result.messages_deleted,
            sessions_deleted=result.sessions_deleted
        )
        return result
