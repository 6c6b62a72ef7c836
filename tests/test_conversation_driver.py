"""Tests for the turn lifecycle: frames, persistence, cancellation and clearing."""

import asyncio
from unittest.mock import AsyncMock

import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from compass_agent.application.container import build_driver
from compass_agent.domain.errors import PersonaNotFound, SessionOwnershipMismatch, SessionStoreUnavailable
from compass_agent.domain.models.conversation import MessageRole
from compass_agent.domain.models.persona import PersonaSelection
from compass_agent.domain.orchestration.core.main_agent import (
    CANCELLED_MESSAGE,
    COMPLETION_FAILED_MESSAGE,
    ChatTurnRequest,
)
from compass_agent.domain.streaming.events import (
    ContentFrame,
    DoneFrame,
    MetadataFrame,
    SessionFrame,
    StateFrame,
    StateType,
)
from tests.fakes.fake_providers import FailingSessionStore, FakeCompletionProvider


def maria_request(message: str, session_id=None) -> ChatTurnRequest:
    return ChatTurnRequest(
        message=message,
        session_id=session_id,
        persona=PersonaSelection(customer_number="CUST-001"),
    )


async def run_to_end(driver, request):
    prepared = await driver.prepare_turn(request)
    return prepared, [frame async for frame in driver.stream_turn(prepared)]


class TestTurnFrames:
    @pytest.mark.asyncio
    async def test_frame_order(self, driver):
        prepared, frames = await run_to_end(driver, maria_request("What are my policies?"))

        assert isinstance(frames[0], SessionFrame)
        assert frames[0].session_id == prepared.session.id
        assert isinstance(frames[-1], DoneFrame)

        kinds = [type(frame) for frame in frames]
        metadata_at = kinds.index(MetadataFrame)
        first_content_at = kinds.index(ContentFrame)
        assert metadata_at < first_content_at
        assert "".join(f.content for f in frames if isinstance(f, ContentFrame)) == "Hello there!"

    @pytest.mark.asyncio
    async def test_progress_states_precede_metadata(self, driver):
        _, frames = await run_to_end(driver, maria_request("What are my policies?"))

        states = [frame.state_type for frame in frames if isinstance(frame, StateFrame)]
        assert states == [StateType.THINKING, StateType.SEARCHING, StateType.GENERATING]

    @pytest.mark.asyncio
    async def test_policy_question_grounds_in_policies(self, driver, completion):
        """Both of Maria's policies reach the completion"""

        prepared, frames = await run_to_end(driver, maria_request("What are my policies?"))

        assert prepared.intent.is_policy_query
        assert len(prepared.tool_bag.tool_results["policies"]) == 2
        assert "Your Policies:" in prepared.context_text

        metadata = next(frame for frame in frames if isinstance(frame, MetadataFrame))
        assert "get_customer_policies" in [call.tool_name for call in metadata.tools_used]

        grounding = completion.calls[0][2]
        assert isinstance(grounding, SystemMessage)
        assert "POL-10001" in grounding.content and "POL-10002" in grounding.content

    @pytest.mark.asyncio
    async def test_unknown_persona_fails_before_streaming(self, driver, sessions):
        """An unknown customer leaves no session behind"""

        with pytest.raises(PersonaNotFound):
            await driver.prepare_turn(
                ChatTurnRequest(message="hi", persona=PersonaSelection(customer_number="CUST-999"))
            )

        assert sessions.sessions == {}
        assert not any(sessions.messages.values())


class TestHistory:
    @pytest.mark.asyncio
    async def test_history_is_append_only(self, driver, sessions):
        """Each turn appends a user then an assistant message"""

        first, _ = await run_to_end(driver, maria_request("What are my policies?"))
        second, _ = await run_to_end(driver, maria_request("And my claims?", session_id=first.session.id))

        assert second.session.id == first.session.id
        messages = await sessions.get_session_messages(first.session.id, 50)
        assert [m.role for m in messages] == [
            MessageRole.USER, MessageRole.ASSISTANT, MessageRole.USER, MessageRole.ASSISTANT,
        ]
        assert [m.content for m in messages] == [
            "What are my policies?", "Hello there!", "And my claims?", "Hello there!",
        ]
        assert all(a.created_at <= b.created_at for a, b in zip(messages, messages[1:]))

    @pytest.mark.asyncio
    async def test_prior_turns_are_sent_before_the_new_message(self, driver, completion):
        first, _ = await run_to_end(driver, maria_request("What are my policies?"))
        await run_to_end(driver, maria_request("And my claims?", session_id=first.session.id))

        messages = completion.calls[1]
        assert isinstance(messages[0], SystemMessage)
        assert messages[-3:] == [
            HumanMessage(content="What are my policies?"),
            AIMessage(content="Hello there!"),
            HumanMessage(content="And my claims?"),
        ]

    @pytest.mark.asyncio
    async def test_history_is_limited(self, settings, sessions, crm, knowledge, graph, completion):
        settings.HISTORY_LIMIT = 2
        driver = build_driver(settings, sessions, crm, knowledge, graph, completion)

        first, _ = await run_to_end(driver, maria_request("one"))
        for text in ("two", "three"):
            await run_to_end(driver, maria_request(text, session_id=first.session.id))

        history = [m for m in completion.calls[-1] if not isinstance(m, SystemMessage)]
        assert history == [
            HumanMessage(content="two"),
            AIMessage(content="Hello there!"),
            HumanMessage(content="three"),
        ]

    @pytest.mark.asyncio
    async def test_user_message_persist_failure_is_terminal(self, settings, crm, knowledge, graph, completion):
        sessions = FailingSessionStore(fail_add_roles=[MessageRole.USER])
        driver = build_driver(settings, sessions, crm, knowledge, graph, completion)

        with pytest.raises(SessionStoreUnavailable):
            await driver.prepare_turn(maria_request("What are my policies?"))

        assert completion.calls == []

    @pytest.mark.asyncio
    async def test_assistant_persist_failure_still_finishes(self, settings, crm, knowledge, graph, completion):
        sessions = FailingSessionStore(fail_add_roles=[MessageRole.ASSISTANT])
        driver = build_driver(settings, sessions, crm, knowledge, graph, completion)

        prepared, frames = await run_to_end(driver, maria_request("What are my policies?"))

        assert isinstance(frames[-1], DoneFrame)
        messages = await sessions.get_session_messages(prepared.session.id, 10)
        assert [m.role for m in messages] == [MessageRole.USER]


class TestStoppingTurns:
    @pytest.mark.asyncio
    async def test_cancel_request_stops_stream(self, settings, sessions, crm, knowledge, graph):
        """A cancelled turn keeps the user message only"""

        completion = FakeCompletionProvider(block_after=1)
        driver = build_driver(settings, sessions, crm, knowledge, graph, completion)
        prepared = await driver.prepare_turn(maria_request("What are my policies?"))

        frames = []
        async for frame in driver.stream_turn(prepared):
            frames.append(frame)
            if isinstance(frame, ContentFrame):
                assert driver.cancel_turn(prepared.session.id)

        assert frames[-2] == StateFrame(state_type=StateType.CANCELLED, message=CANCELLED_MESSAGE)
        assert isinstance(frames[-1], DoneFrame)
        assert [f.content for f in frames if isinstance(f, ContentFrame)] == ["Hello"]
        assert completion.closed
        assert prepared.session.id not in driver.active_turns

        messages = await sessions.get_session_messages(prepared.session.id, 10)
        assert [m.role for m in messages] == [MessageRole.USER]

    @pytest.mark.asyncio
    async def test_cancel_while_waiting_for_a_delta(self, settings, sessions, crm, knowledge, graph):
        completion = FakeCompletionProvider(block_after=1)
        driver = build_driver(settings, sessions, crm, knowledge, graph, completion)
        prepared = await driver.prepare_turn(maria_request("What are my policies?"))

        async def consume():
            return [frame async for frame in driver.stream_turn(prepared)]

        task = asyncio.create_task(consume())
        await asyncio.wait_for(completion.blocked.wait(), timeout=2)
        assert driver.cancel_turn(prepared.session.id)
        frames = await asyncio.wait_for(task, timeout=2)

        assert frames[-2].state_type == StateType.CANCELLED
        messages = await sessions.get_session_messages(prepared.session.id, 10)
        assert [m.role for m in messages] == [MessageRole.USER]

    @pytest.mark.asyncio
    async def test_closing_the_stream_persists_nothing(self, driver, sessions, completion):
        """A client disconnect closes the completion without an assistant message"""

        prepared = await driver.prepare_turn(maria_request("What are my policies?"))
        frames = driver.stream_turn(prepared)

        async for frame in frames:
            if isinstance(frame, ContentFrame):
                break
        await frames.aclose()

        assert completion.closed
        assert prepared.session.id not in driver.active_turns
        messages = await sessions.get_session_messages(prepared.session.id, 10)
        assert [m.role for m in messages] == [MessageRole.USER]

    @pytest.mark.asyncio
    async def test_only_the_owner_may_cancel(self, settings, sessions, crm, knowledge, graph):
        completion = FakeCompletionProvider(block_after=1)
        driver = build_driver(settings, sessions, crm, knowledge, graph, completion)
        prepared = await driver.prepare_turn(maria_request("What are my policies?"))

        async def consume():
            return [frame async for frame in driver.stream_turn(prepared)]

        task = asyncio.create_task(consume())
        await asyncio.wait_for(completion.blocked.wait(), timeout=2)

        with pytest.raises(SessionOwnershipMismatch):
            driver.cancel_turn(prepared.session.id, "CUST-002")
        assert not driver.active_turns[prepared.session.id].cancel_event.is_set()

        assert driver.cancel_turn(prepared.session.id, "cust-001")
        frames = await asyncio.wait_for(task, timeout=2)

        assert frames[-2].state_type == StateType.CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_without_running_turn(self, driver):
        assert driver.cancel_turn("0b0c3e52-95b4-4c43-9d2a-2d9f8e4f6a10") is False

    @pytest.mark.asyncio
    async def test_completion_failure_reports_error(self, settings, sessions, crm, knowledge, graph):
        completion = FakeCompletionProvider(fail_after=1)
        driver = build_driver(settings, sessions, crm, knowledge, graph, completion)

        prepared, frames = await run_to_end(driver, maria_request("What are my policies?"))

        assert frames[-2] == StateFrame(state_type=StateType.ERROR, message=COMPLETION_FAILED_MESSAGE)
        assert isinstance(frames[-1], DoneFrame)
        messages = await sessions.get_session_messages(prepared.session.id, 10)
        assert [m.role for m in messages] == [MessageRole.USER]


class TestClearHistory:
    @pytest.mark.asyncio
    async def test_clear_removes_session_and_messages(self, driver, sessions):
        """Six messages cleared in one go"""

        first, _ = await run_to_end(driver, maria_request("one"))
        for text in ("two", "three"):
            await run_to_end(driver, maria_request(text, session_id=first.session.id))
        session_id = first.session.id
        assert len(await sessions.get_session_messages(session_id, 50)) == 6

        result = await driver.clear_history(session_id, "CUST-001")

        assert result.messages_deleted == 6
        assert result.sessions_deleted == 1
        assert await sessions.get_session_messages(session_id, 50) == []
        assert await sessions.get_session(session_id) is None

    @pytest.mark.asyncio
    async def test_clearing_twice_is_a_no_op(self, driver):
        first, _ = await run_to_end(driver, maria_request("one"))
        await driver.clear_history(first.session.id)

        again = await driver.clear_history(first.session.id)

        assert again.messages_deleted == 0
        assert again.sessions_deleted == 0

    @pytest.mark.asyncio
    async def test_other_persona_cannot_clear(self, driver, sessions):
        first, _ = await run_to_end(driver, maria_request("one"))

        with pytest.raises(SessionOwnershipMismatch):
            await driver.clear_history(first.session.id, "CUST-002")

        assert len(await sessions.get_session_messages(first.session.id, 10)) == 2


class TestInteractionRecording:
    @pytest.mark.asyncio
    async def test_chat_is_recorded_against_the_customer(self, driver, crm, maria):
        crm.record_chat_interaction = AsyncMock(return_value=None)

        prepared, _ = await run_to_end(driver, maria_request("What are my policies?"))

        crm.record_chat_interaction.assert_awaited_once_with(
            prepared.session.id, "What are my policies?", maria.internal_id, None
        )

    @pytest.mark.asyncio
    async def test_recording_failure_does_not_fail_the_turn(self, driver, crm):
        crm.record_chat_interaction = AsyncMock(side_effect=ConnectionError("crm down"))

        _, frames = await run_to_end(driver, maria_request("What are my policies?"))

        assert isinstance(frames[-1], DoneFrame)
        assert not any(isinstance(f, StateFrame) and f.state_type == StateType.ERROR for f in frames)


class TestRunTurn:
    @pytest.mark.asyncio
    async def test_run_turn_collects_a_whole_answer(self, driver):
        frames = driver.run_turn(maria_request("What are my policies?"))

        turn = await driver.streaming_handler.collect(frames)

        assert turn.message == "Hello there!"
        assert turn.session_id
        assert turn.error is None
        assert turn.metadata["tool_count"] == len(turn.tools_used)
