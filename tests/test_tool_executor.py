"""Tests for isolated tool execution."""

import asyncio

import pytest

from compass_agent.domain.tool.tool_executor import IsolatedToolExecutor
from compass_agent.domain.tool.tool_registry import ToolRegistry, ToolScope, ToolSpec, build_default_registry
from compass_agent.domain.tool.tool_validator import GraphSearchInput


def make_registry(handler, timeout=None, timeout_fallback=None) -> ToolRegistry:
    registry = ToolRegistry()
    registry.register_tool(ToolSpec(
        id="probe",
        name="Probe",
        description="Test tool",
        category="test",
        scope=ToolScope.ANY,
        input_model=GraphSearchInput,
        handler=handler,
        timeout=timeout,
        timeout_fallback=timeout_fallback,
    ))
    return registry


class TestIsolatedToolExecutor:
    @pytest.mark.asyncio
    async def test_success(self):
        async def handler(params):
            return [params.query]

        result = await IsolatedToolExecutor(make_registry(handler)).execute_tool("probe", {"query": "funeral"})

        assert result.success
        assert result.data == ["funeral"]
        assert result.duration_ms >= 0

    @pytest.mark.asyncio
    async def test_exception_becomes_failed_result(self):
        async def handler(params):
            raise RuntimeError("backend down")

        result = await IsolatedToolExecutor(make_registry(handler)).execute_tool("probe", {"query": "x"})

        assert not result.success
        assert result.error == "backend down"

    @pytest.mark.asyncio
    async def test_invalid_parameters_skip_the_handler(self):
        calls = []

        async def handler(params):
            calls.append(params)
            return []

        result = await IsolatedToolExecutor(make_registry(handler)).execute_tool("probe", {"query": ""})

        assert not result.success
        assert "query" in result.error
        assert calls == []

    @pytest.mark.asyncio
    async def test_unknown_tool(self):
        result = await IsolatedToolExecutor(ToolRegistry()).execute_tool("missing", {})

        assert not result.success
        assert result.error == "Unknown tool"

    @pytest.mark.asyncio
    async def test_timeout_without_fallback_fails(self):
        async def handler(params):
            await asyncio.sleep(5)

        result = await IsolatedToolExecutor(make_registry(handler, timeout=0.01)).execute_tool("probe", {"query": "x"})

        assert not result.success
        assert result.timed_out
        assert result.error == "Tool execution timeout"

    @pytest.mark.asyncio
    async def test_timeout_with_fallback_succeeds_empty(self):
        async def handler(params):
            await asyncio.sleep(5)

        executor = IsolatedToolExecutor(make_registry(handler, timeout=0.01, timeout_fallback=list))
        result = await executor.execute_tool("probe", {"query": "x"})

        assert result.success
        assert result.timed_out
        assert result.data == []

    @pytest.mark.asyncio
    async def test_default_timeout_applies(self):
        async def handler(params):
            await asyncio.sleep(5)

        executor = IsolatedToolExecutor(make_registry(handler), default_timeout=0.01)
        result = await executor.execute_tool("probe", {"query": "x"})

        assert result.timed_out

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self):
        started = asyncio.Event()

        async def handler(params):
            started.set()
            await asyncio.sleep(5)

        executor = IsolatedToolExecutor(make_registry(handler))
        task = asyncio.create_task(executor.execute_tool("probe", {"query": "x"}))
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task


class TestDefaultRegistry:
    def test_scopes(self, crm, knowledge, graph):
        registry = build_default_registry(crm, knowledge, graph)

        customer_tools = {tool.id for tool in registry.get_available_tools(ToolScope.CUSTOMER)}
        advisor_tools = {tool.id for tool in registry.get_available_tools(ToolScope.ADVISOR)}

        assert "get_customer_policies" in customer_tools
        assert "get_customer_policies" not in advisor_tools
        assert "get_advisor_tasks" in advisor_tools
        assert {"hybrid_search", "graph_search", "calculator"} <= customer_tools & advisor_tools

    def test_graph_search_has_empty_fallback(self, crm, knowledge, graph):
        registry = build_default_registry(crm, knowledge, graph, graph_timeout=3.0)
        tool = registry.get_tool("graph_search")

        assert tool.timeout == 3.0
        assert tool.timeout_fallback() == []

    def test_categories(self, crm, knowledge, graph):
        registry = build_default_registry(crm, knowledge, graph)

        search_tools = {tool.id for tool in registry.get_tools_by_category("search")}

        assert {"hybrid_search", "graph_search"} <= search_tools
