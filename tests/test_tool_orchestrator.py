"""Tests for persona-gated tool planning and fault-isolated execution."""

import pytest

from compass_agent.domain.context.intent_detector import detect_query_intent
from compass_agent.domain.models.tooling import GraphFact
from compass_agent.domain.orchestration.core.tool_orchestrator import ToolOrchestrator, pick_specialization
from compass_agent.domain.tool.tool_executor import IsolatedToolExecutor
from compass_agent.domain.tool.tool_registry import build_default_registry
from compass_agent.infrastructure.persistence.demo_data import (
    CLAIMS,
    CUSTOMERS,
    ADVISORS,
    INTERACTIONS,
    POLICIES,
    TASKS,
)
from tests.fakes.fake_providers import ExplodingCrmStore, FakeGraphSearch


def make_orchestrator(crm, knowledge, graph, graph_timeout=0.2, **kwargs):
    registry = build_default_registry(crm, knowledge, graph, graph_timeout=graph_timeout, tool_timeout=2.0)
    return ToolOrchestrator(IsolatedToolExecutor(registry), **kwargs)


def tool_names(bag):
    return [call.tool_name for call in bag.tool_calls]


class TestPlanning:
    def test_customer_tools_need_a_customer_persona(self, crm, knowledge, graph, thandi):
        orchestrator = make_orchestrator(crm, knowledge, graph)
        query = "show my policies and claims"
        intent = detect_query_intent(query)

        anonymous = [call.tool_id for call in orchestrator.plan(query, intent, None)]
        as_advisor = [call.tool_id for call in orchestrator.plan(query, intent, thandi)]

        assert "get_customer_policies" not in anonymous
        assert "get_customer_claims" not in anonymous
        assert "get_customer_policies" not in as_advisor

    def test_advisor_tools_need_an_advisor_persona(self, crm, knowledge, graph, maria, thandi):
        orchestrator = make_orchestrator(crm, knowledge, graph)
        query = "what tasks are on my profile"
        intent = detect_query_intent(query)

        as_customer = [call.tool_id for call in orchestrator.plan(query, intent, maria)]
        as_advisor = [call.tool_id for call in orchestrator.plan(query, intent, thandi)]

        assert "get_advisor_tasks" not in as_customer
        assert "get_customer_profile" in as_customer
        assert "get_advisor_tasks" in as_advisor
        assert "get_advisor_profile" in as_advisor

    def test_search_switches(self, crm, knowledge, graph):
        orchestrator = make_orchestrator(crm, knowledge, graph, use_vector_search=False, use_graph_search=False)

        plan = orchestrator.plan("hello", detect_query_intent("hello"), None)

        assert plan == []

    def test_calculator_skipped_without_an_expression(self, crm, knowledge, graph):
        orchestrator = make_orchestrator(crm, knowledge, graph)
        query = "how much cover do I need"

        plan = [call.tool_id for call in orchestrator.plan(query, detect_query_intent(query), None)]

        assert "calculator" not in plan

    @pytest.mark.parametrize("query,expected", [
        ("I need life cover", "Life Insurance"),
        ("planning for retirement", "Investment & Retirement"),
        ("help with financial planning", "Wealth Management"),
        ("cover for my business", "Business Solutions"),
        ("find me an advisor", None),
    ])
    def test_specialization_hints(self, query, expected):
        assert pick_specialization(query) == expected


class TestRun:
    @pytest.mark.asyncio
    async def test_customer_policy_and_claim_lookup(self, crm, knowledge, graph, maria):
        orchestrator = make_orchestrator(crm, knowledge, graph)
        query = "show my policies and claims"

        bag = await orchestrator.run(query, detect_query_intent(query), maria)

        assert [p["policy_number"] for p in bag.tool_results["policies"]] == ["POL-10001", "POL-10002"]
        assert [c["claim_number"] for c in bag.tool_results["claims"]] == ["CLM-20001"]
        assert tool_names(bag)[:2] == ["get_customer_policies", "get_customer_claims"]
        assert {"hybrid_search", "graph_search"} <= set(tool_names(bag))

    @pytest.mark.asyncio
    async def test_calculation_scenario(self, crm, knowledge, graph):
        """Calculate 15% of 2000"""

        orchestrator = make_orchestrator(crm, knowledge, graph)
        query = "Calculate 15% of 2000"

        bag = await orchestrator.run(query, detect_query_intent(query), None)

        calculation = bag.tool_results["calculation"]
        assert calculation["result"] == 300
        assert calculation["formula"] == "2000 * 0.15"
        assert "calculator" in tool_names(bag)

    @pytest.mark.asyncio
    async def test_failing_tool_is_isolated(self, knowledge, graph, maria):
        """One tool raising does not affect the others"""

        crm = ExplodingCrmStore(
            customers=CUSTOMERS, advisors=ADVISORS, policies=POLICIES,
            claims=CLAIMS, interactions=INTERACTIONS, tasks=TASKS,
        )
        orchestrator = make_orchestrator(crm, knowledge, graph)
        query = "show my policies and claims"

        bag = await orchestrator.run(query, detect_query_intent(query), maria)

        assert "policies" not in bag.tool_results
        assert "get_customer_policies" in bag.errors
        assert "get_customer_policies" not in tool_names(bag)
        assert bag.tool_results["claims"][0]["claim_number"] == "CLM-20001"

    @pytest.mark.asyncio
    async def test_empty_result_is_logged_but_omitted(self, crm, knowledge, graph):
        from compass_agent.domain.models.persona import Customer, ResolvedPersona

        petrus = ResolvedPersona.from_customer(Customer.model_validate(CUSTOMERS[1]))
        orchestrator = make_orchestrator(crm, knowledge, graph)
        query = "any claims?"

        bag = await orchestrator.run(query, detect_query_intent(query), petrus)

        assert "claims" not in bag.tool_results
        assert "get_customer_claims" in tool_names(bag)

    @pytest.mark.asyncio
    async def test_graph_timeout_falls_back_to_empty(self, crm, knowledge, maria):
        """A slow graph store does not hold up the turn"""

        slow_graph = FakeGraphSearch(
            facts=[GraphFact(fact="Maria owns POL-10001", uuid="fact-1")],
            delay=5.0,
        )
        orchestrator = make_orchestrator(crm, knowledge, slow_graph, graph_timeout=0.05)
        query = "show my policies"

        bag = await orchestrator.run(query, detect_query_intent(query), maria)

        assert "graph_search" in tool_names(bag)
        assert "graph_search" not in bag.errors
        assert all(chunk.document_source != "neo4j" for chunk in bag.sources)
        assert bag.tool_results["policies"]

    @pytest.mark.asyncio
    async def test_graph_facts_become_sources_after_knowledge_base(self, crm, knowledge):
        graph = FakeGraphSearch(facts=[GraphFact(fact="Funeral claims pay out in five days", uuid="fact-9")])
        orchestrator = make_orchestrator(crm, knowledge, graph)
        query = "funeral claims process"

        bag = await orchestrator.run(query, detect_query_intent(query), None)

        assert bag.sources[0].document_title == "Claims Process"
        graph_chunk = bag.sources[-1]
        assert graph_chunk.chunk_id == "fact-9"
        assert graph_chunk.score == 0.8
        assert graph_chunk.document_title == "Knowledge Graph"
        assert graph_chunk.document_source == "neo4j"

    @pytest.mark.asyncio
    async def test_graph_failure_is_isolated(self, crm, knowledge, maria):
        graph = FakeGraphSearch(error=RuntimeError("bolt connection refused"))
        orchestrator = make_orchestrator(crm, knowledge, graph)
        query = "my policies"

        bag = await orchestrator.run(query, detect_query_intent(query), maria)

        assert "graph_search" in bag.errors
        assert bag.tool_results["policies"]

    @pytest.mark.asyncio
    async def test_advisor_recommendation_uses_specialization(self, crm, knowledge, graph, maria):
        orchestrator = make_orchestrator(crm, knowledge, graph)
        query = "recommend an advisor for life insurance"

        bag = await orchestrator.run(query, detect_query_intent(query), maria)

        advisors = bag.tool_results["recommended_advisors"]
        assert [a["advisor_number"] for a in advisors] == ["ADV-001"]
