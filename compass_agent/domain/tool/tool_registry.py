from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type

from pydantic import BaseModel

from compass_agent.domain.interfaces import CrmStore, GraphSearch, KnowledgeSearch
from compass_agent.domain.tool.crm_tools import CrmTools
from compass_agent.domain.tool.knowledge_tools import KnowledgeTools
from compass_agent.domain.tool.tool_validator import (
    AdvisorTasksInput,
    AdvisorToolInput,
    CalculatorInput,
    CustomerInteractionsInput,
    CustomerToolInput,
    GraphSearchInput,
    HybridSearchInput,
    RecommendAdvisorsInput,
    SearchDocumentsInput,
)


class ToolScope(str, Enum):
    """Which persona a tool may run for"""
    CUSTOMER = "customer"
    ADVISOR = "advisor"
    ANY = "any"


@dataclass
class ToolSpec:
    id: str
    name: str
    description: str
    category: str
    scope: ToolScope
    input_model: Type[BaseModel]
    handler: Callable[[Any], Awaitable[Any]]
    timeout: Optional[float] = None
    # Called to produce the result when ``timeout`` elapses; None makes a timeout a failure
    timeout_fallback: Optional[Callable[[], Any]] = None

    def describe(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "scope": self.scope.value,
            "parameters": self.input_model.model_json_schema(),
        }


class ToolRegistry:
    """Registry for managing available tools"""

    def __init__(self):
        self.tools: Dict[str, ToolSpec] = {}
        self.tool_categories: Dict[str, List[str]] = {}

    def register_tool(self, tool: ToolSpec):
        """Register a new tool"""

        self.tools[tool.id] = tool

        if tool.category not in self.tool_categories:
            self.tool_categories[tool.category] = []
        if tool.id not in self.tool_categories[tool.category]:
            self.tool_categories[tool.category].append(tool.id)

    def get_tool(self, tool_id: str) -> Optional[ToolSpec]:
        return self.tools.get(tool_id)

    def get_available_tools(self, scope: Optional[ToolScope] = None) -> List[ToolSpec]:
        """Tools usable under ``scope``; persona-neutral tools are always included"""

        if scope is None:
            return list(self.tools.values())
        return [tool for tool in self.tools.values() if tool.scope in (scope, ToolScope.ANY)]

    def get_tools_by_category(self, category: str) -> List[ToolSpec]:
        return [self.tools[tool_id] for tool_id in self.tool_categories.get(category, [])]


def build_default_registry(
    crm: CrmStore,
    knowledge: KnowledgeSearch,
    graph: GraphSearch,
    graph_timeout: float = 3.0,
    tool_timeout: Optional[float] = None
) -> ToolRegistry:
    """Register every tool the orchestrator can plan"""

    crm_tools = CrmTools(crm)
    knowledge_tools = KnowledgeTools(knowledge, graph)
    registry = ToolRegistry()

    tools = [
        ToolSpec(
            id="get_customer_policies",
            name="Customer Policies",
            description="List the policies held by a customer",
            category="crm",
            scope=ToolScope.CUSTOMER,
            input_model=CustomerToolInput,
            handler=crm_tools.get_customer_policies,
            timeout=tool_timeout,
        ),
        ToolSpec(
            id="get_customer_claims",
            name="Customer Claims",
            description="List the claims filed by a customer",
            category="crm",
            scope=ToolScope.CUSTOMER,
            input_model=CustomerToolInput,
            handler=crm_tools.get_customer_claims,
            timeout=tool_timeout,
        ),
        ToolSpec(
            id="get_customer_interactions",
            name="Customer Interactions",
            description="Recent interactions between a customer and the company",
            category="crm",
            scope=ToolScope.CUSTOMER,
            input_model=CustomerInteractionsInput,
            handler=crm_tools.get_customer_interactions,
            timeout=tool_timeout,
        ),
        ToolSpec(
            id="get_customer_profile",
            name="Customer Profile",
            description="Customer record with policies, claims and recent interactions",
            category="crm",
            scope=ToolScope.CUSTOMER,
            input_model=CustomerToolInput,
            handler=crm_tools.get_customer_profile,
            timeout=tool_timeout,
        ),
        ToolSpec(
            id="recommend_advisors",
            name="Recommend Advisors",
            description="Suggest advisors, optionally filtered by specialization",
            category="crm",
            scope=ToolScope.CUSTOMER,
            input_model=RecommendAdvisorsInput,
            handler=crm_tools.recommend_advisors,
            timeout=tool_timeout,
        ),
        ToolSpec(
            id="get_advisor_tasks",
            name="Advisor Tasks",
            description="Tasks assigned to an advisor",
            category="crm",
            scope=ToolScope.ADVISOR,
            input_model=AdvisorTasksInput,
            handler=crm_tools.get_advisor_tasks,
            timeout=tool_timeout,
        ),
        ToolSpec(
            id="get_advisor_profile",
            name="Advisor Profile",
            description="Advisor record with client and task summary",
            category="crm",
            scope=ToolScope.ADVISOR,
            input_model=AdvisorToolInput,
            handler=crm_tools.get_advisor_profile,
            timeout=tool_timeout,
        ),
        ToolSpec(
            id="search_documents",
            name="Document Search",
            description="Find forms, guides and other downloadable documents",
            category="search",
            scope=ToolScope.ANY,
            input_model=SearchDocumentsInput,
            handler=knowledge_tools.search_documents,
            timeout=tool_timeout,
        ),
        ToolSpec(
            id="calculator",
            name="Calculator",
            description="Evaluate arithmetic and simple financial formulas",
            category="math",
            scope=ToolScope.ANY,
            input_model=CalculatorInput,
            handler=knowledge_tools.calculate,
        ),
        ToolSpec(
            id="hybrid_search",
            name="Knowledge Base Search",
            description="Vector and full-text search over the document knowledge base",
            category="search",
            scope=ToolScope.ANY,
            input_model=HybridSearchInput,
            handler=knowledge_tools.hybrid_search,
            timeout=tool_timeout,
        ),
        ToolSpec(
            id="graph_search",
            name="Knowledge Graph Search",
            description="Temporal facts from the knowledge graph",
            category="search",
            scope=ToolScope.ANY,
            input_model=GraphSearchInput,
            handler=knowledge_tools.graph_search,
            timeout=graph_timeout,
            timeout_fallback=list,
        ),
    ]

    for tool in tools:
        registry.register_tool(tool)

    return registry
