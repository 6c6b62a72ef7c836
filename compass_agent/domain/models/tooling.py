from typing import Dict, Any, List, Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Model serialized with camelCase keys on the wire"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ToolCall(CamelModel):
    """Provenance record of a tool that ran during a turn"""
    tool_name: str
    args: Dict[str, Any] = Field(default_factory=dict)


class ChunkResult(CamelModel):
    """A ranked snippet from the knowledge base or the graph store"""
    chunk_id: str
    document_id: Optional[str] = None
    content: str
    score: float = 0.0
    metadata: Dict[str, Any] = Field(default_factory=dict)
    document_title: Optional[str] = None
    document_source: Optional[str] = None


GRAPH_FACT_SCORE = 0.8
GRAPH_DOCUMENT_TITLE = "Knowledge Graph"
GRAPH_DOCUMENT_SOURCE = "neo4j"


class GraphFact(BaseModel):
    """A temporal fact returned by the graph store"""
    fact: str
    uuid: str
    valid_at: Optional[str] = None
    invalid_at: Optional[str] = None
    source_node_uuid: Optional[str] = None

    def to_chunk(self) -> ChunkResult:
        return ChunkResult(
            chunk_id=self.uuid,
            document_id=self.source_node_uuid,
            content=self.fact,
            score=GRAPH_FACT_SCORE,
            metadata={"valid_at": self.valid_at, "invalid_at": self.invalid_at},
            document_title=GRAPH_DOCUMENT_TITLE,
            document_source=GRAPH_DOCUMENT_SOURCE,
        )


class ToolResult(BaseModel):
    """Outcome of one isolated tool execution"""
    tool_name: str
    success: bool
    data: Any = None
    error: Optional[str] = None
    duration_ms: float = 0.0
    timed_out: bool = False


class ToolResultBag(BaseModel):
    """Everything the tool stage produced for one turn"""
    tool_results: Dict[str, Any] = Field(default_factory=dict, description="Non-empty results by result key")
    tool_calls: List[ToolCall] = Field(default_factory=list, description="Tools that completed, in plan order")
    sources: List[ChunkResult] = Field(default_factory=list, description="Search snippets, knowledge base first")
    errors: Dict[str, str] = Field(default_factory=dict)
