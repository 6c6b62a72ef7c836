import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import structlog

from compass_agent.domain.models.conversation import QueryIntent
from compass_agent.domain.models.persona import PersonaType, ResolvedPersona
from compass_agent.domain.models.tooling import ChunkResult, ToolCall, ToolResultBag
from compass_agent.domain.tool.calculator import extract_calculation
from compass_agent.domain.tool.tool_executor import IsolatedToolExecutor


logger = structlog.get_logger(__name__)

SPECIALIZATION_HINTS: Tuple[Tuple[Tuple[str, ...], str], ...] = (
    (("life insurance", "life cover"), "Life Insurance"),
    (("investment", "retirement"), "Investment & Retirement"),
    (("wealth", "financial planning"), "Wealth Management"),
    (("business",), "Business Solutions"),
)

SEARCH_TOOLS = {"hybrid_search", "graph_search"}


def pick_specialization(query: str) -> Optional[str]:
    """Advisor specialization hinted at by the query, if any"""

    text = query.lower()
    for keywords, specialization in SPECIALIZATION_HINTS:
        if any(keyword in text for keyword in keywords):
            return specialization
    return None


@dataclass
class PlannedCall:
    result_key: str
    tool_id: str
    args: Dict[str, Any] = field(default_factory=dict)


def _has_content(data: Any) -> bool:
    if data is None:
        return False
    if isinstance(data, (list, dict, str)):
        return len(data) > 0
    return True


class ToolOrchestrator:
    """Plans persona-gated tool calls for a turn and runs them concurrently"""

    def __init__(
        self,
        executor: IsolatedToolExecutor,
        use_vector_search: bool = True,
        use_graph_search: bool = True,
        search_limit: int = 5,
        interactions_limit: int = 10,
        recommendation_limit: int = 5
    ):
        self.executor = executor
        self.use_vector_search = use_vector_search
        self.use_graph_search = use_graph_search
        self.search_limit = search_limit
        self.interactions_limit = interactions_limit
        self.recommendation_limit = recommendation_limit

    def plan(self, query: str, intent: QueryIntent, persona: Optional[ResolvedPersona]) -> List[PlannedCall]:
        """Decide which tools run for this query; order is the rendering order"""

        calls: List[PlannedCall] = []
        persona_type = persona.persona_type if persona else None

        if persona_type == PersonaType.CUSTOMER:
            number = {"customer_number": persona.number}
            if intent.is_policy_query:
                calls.append(PlannedCall("policies", "get_customer_policies", dict(number)))
            if intent.is_claim_query:
                calls.append(PlannedCall("claims", "get_customer_claims", dict(number)))
            if intent.is_interaction_query:
                calls.append(PlannedCall(
                    "interactions",
                    "get_customer_interactions",
                    {**number, "limit": self.interactions_limit}
                ))
            if intent.is_profile_query:
                calls.append(PlannedCall("profile", "get_customer_profile", dict(number)))
            if intent.is_advisor_query:
                calls.append(PlannedCall(
                    "recommended_advisors",
                    "recommend_advisors",
                    {"specialization": pick_specialization(query), "limit": self.recommendation_limit}
                ))

        if persona_type == PersonaType.ADVISOR:
            number = {"advisor_number": persona.number}
            if intent.is_task_query:
                calls.append(PlannedCall("tasks", "get_advisor_tasks", dict(number)))
            if intent.is_profile_query:
                calls.append(PlannedCall("profile", "get_advisor_profile", dict(number)))

        if intent.is_document_query:
            calls.append(PlannedCall("documents", "search_documents", {"query": query}))

        if intent.is_calculation_query:
            request = extract_calculation(query)
            if request is not None:
                calls.append(PlannedCall("calculation", "calculator", request.to_arguments()))

        if self.use_vector_search:
            calls.append(PlannedCall("sources", "hybrid_search", {"query": query, "limit": self.search_limit}))
        if self.use_graph_search:
            calls.append(PlannedCall("sources", "graph_search", {"query": query}))

        return calls

    async def run(
        self,
        query: str,
        intent: QueryIntent,
        persona: Optional[ResolvedPersona],
        session_id: Optional[str] = None
    ) -> ToolResultBag:
        """Execute the plan; failed tools are logged and left out of the bag"""

        planned = self.plan(query, intent, persona)
        results = await asyncio.gather(*(
            self.executor.execute_tool(call.tool_id, call.args, session_id=session_id)
            for call in planned
        ))

        bag = ToolResultBag()
        for call, result in zip(planned, results):
            if not result.success:
                bag.errors[call.tool_id] = result.error or "failed"
                continue

            bag.tool_calls.append(ToolCall(tool_name=call.tool_id, args=call.args))

            if call.tool_id in SEARCH_TOOLS:
                bag.sources.extend(
                    chunk if isinstance(chunk, ChunkResult) else ChunkResult.model_validate(chunk)
                    for chunk in (result.data or [])
                )
            elif _has_content(result.data):
                bag.tool_results[call.result_key] = result.data

        logger.info(
            "tools_completed",
            session_id=session_id,
            planned=[call.tool_id for call in planned],
            results=sorted(bag.tool_results),
            source_count=len(bag.sources),
            failed=sorted(bag.errors),
        )
        return bag
