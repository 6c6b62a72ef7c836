from typing import Any, Dict, List

from compass_agent.domain.interfaces import GraphSearch, KnowledgeSearch
from compass_agent.domain.models.tooling import ChunkResult
from compass_agent.domain.tool.calculator import calculate
from compass_agent.domain.tool.tool_validator import (
    CalculatorInput,
    GraphSearchInput,
    HybridSearchInput,
    SearchDocumentsInput,
)


class KnowledgeTools:
    """Document, vector, graph and calculator tools"""

    def __init__(self, knowledge: KnowledgeSearch, graph: GraphSearch):
        self.knowledge = knowledge
        self.graph = graph

    async def hybrid_search(self, params: HybridSearchInput) -> List[ChunkResult]:
        return await self.knowledge.hybrid_search(params.query, params.limit)

    async def graph_search(self, params: GraphSearchInput) -> List[ChunkResult]:
        facts = await self.graph.search(params.query)
        return [fact.to_chunk() for fact in facts]

    async def search_documents(self, params: SearchDocumentsInput) -> List[Dict[str, Any]]:
        return await self.knowledge.search_documents(params.query, params.category)

    async def calculate(self, params: CalculatorInput) -> Dict[str, Any]:
        return calculate(params.expression, params.calculation_type, params.variables)
