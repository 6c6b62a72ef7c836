"""
Application wiring.

``build_container`` picks PostgreSQL, Neo4j and OpenAI-compatible adapters
when they are configured and in-memory demo adapters otherwise.
"""

from dataclasses import dataclass
from typing import Optional

import structlog

from compass_agent.domain.context.context_manager import ContextAssembler
from compass_agent.domain.context.context_retriever import ContextRetriever
from compass_agent.domain.interfaces import CompletionProvider, CrmStore, GraphSearch, KnowledgeSearch, SessionStore
from compass_agent.domain.orchestration.core.main_agent import ConversationDriver
from compass_agent.domain.orchestration.core.tool_orchestrator import ToolOrchestrator
from compass_agent.domain.tool.tool_executor import IsolatedToolExecutor
from compass_agent.domain.tool.tool_registry import build_default_registry
from compass_agent.infrastructure.config.settings import Settings
from compass_agent.infrastructure.graph.neo4j_client import Neo4jGraphSearch, NullGraphSearch
from compass_agent.infrastructure.llm.providers import OpenAIEmbeddingProvider, build_completion_provider
from compass_agent.infrastructure.persistence.crm_store import PostgresCrmStore
from compass_agent.infrastructure.persistence.database import Database
from compass_agent.infrastructure.persistence.demo_data import build_demo_crm, build_demo_knowledge
from compass_agent.infrastructure.persistence.memory_store import InMemorySessionStore
from compass_agent.infrastructure.persistence.retry import RetryPolicy
from compass_agent.infrastructure.persistence.session_store import PostgresSessionStore
from compass_agent.infrastructure.search.knowledge_search import PostgresKnowledgeSearch
from compass_agent.infrastructure.security.access_validator import AccessValidator

logger = structlog.get_logger(__name__)


@dataclass
class AgentContainer:
    """Long-lived collaborators shared by every request"""
    settings: Settings
    driver: ConversationDriver
    session_store: SessionStore
    crm_store: CrmStore
    knowledge: KnowledgeSearch
    graph: GraphSearch
    completion: CompletionProvider
    database: Optional[Database] = None

    async def aclose(self) -> None:
        await self.graph.close()
        if self.database is not None:
            await self.database.close()


def build_driver(
    settings: Settings,
    session_store: SessionStore,
    crm_store: CrmStore,
    knowledge: KnowledgeSearch,
    graph: GraphSearch,
    completion: CompletionProvider
) -> ConversationDriver:
    registry = build_default_registry(
        crm_store,
        knowledge,
        graph,
        graph_timeout=settings.GRAPH_SEARCH_TIMEOUT_SECONDS,
        tool_timeout=settings.TOOL_TIMEOUT_SECONDS,
    )
    orchestrator = ToolOrchestrator(
        IsolatedToolExecutor(registry, default_timeout=settings.TOOL_TIMEOUT_SECONDS),
        use_vector_search=settings.USE_VECTOR_SEARCH,
        use_graph_search=settings.USE_GRAPH_SEARCH,
        search_limit=settings.HYBRID_SEARCH_LIMIT,
        interactions_limit=settings.INTERACTIONS_LIMIT,
        recommendation_limit=settings.ADVISOR_RECOMMENDATION_LIMIT,
    )
    assembler = ContextAssembler(
        max_section_chars=settings.MAX_SECTION_CHARS,
        max_snippet_chars=settings.MAX_SNIPPET_CHARS,
        max_context_chars=settings.MAX_CONTEXT_CHARS,
    )
    return ConversationDriver(
        access_validator=AccessValidator(crm_store, session_store),
        session_store=session_store,
        crm_store=crm_store,
        orchestrator=orchestrator,
        assembler=assembler,
        context_retriever=ContextRetriever(crm_store),
        completion=completion,
        history_limit=settings.HISTORY_LIMIT,
    )


async def build_container(settings: Settings) -> AgentContainer:
    """Connect configured backends and assemble the driver"""

    database: Optional[Database] = None
    if settings.database_configured:
        database = Database(settings.DATABASE_URL, settings.DB_POOL_SIZE, settings.DB_MAX_OVERFLOW)
        await database.connect()
        retry_policy = RetryPolicy(
            max_attempts=settings.DB_RETRY_ATTEMPTS,
            initial_backoff=settings.DB_RETRY_INITIAL_BACKOFF,
            max_backoff=settings.DB_RETRY_MAX_BACKOFF,
        )
        embedding_key = settings.EMBEDDING_API_KEY or settings.LLM_API_KEY
        embeddings = None
        if embedding_key and settings.USE_VECTOR_SEARCH:
            embeddings = OpenAIEmbeddingProvider(
                embedding_key, settings.EMBEDDING_MODEL, settings.EMBEDDING_BASE_URL
            )
        session_store: SessionStore = PostgresSessionStore(database, retry_policy, settings.SESSION_TTL_HOURS)
        crm_store: CrmStore = PostgresCrmStore(database, retry_policy)
        knowledge: KnowledgeSearch = PostgresKnowledgeSearch(
            database, embeddings, settings.HYBRID_TEXT_WEIGHT, retry_policy
        )
    else:
        logger.warning("DATABASE_URL not set, using in-memory demo stores")
        session_store = InMemorySessionStore(settings.SESSION_TTL_HOURS)
        crm_store = build_demo_crm()
        knowledge = build_demo_knowledge()

    if settings.graph_configured:
        graph: GraphSearch = Neo4jGraphSearch(
            settings.NEO4J_URI, settings.NEO4J_USERNAME, settings.NEO4J_PASSWORD, settings.GRAPH_SEARCH_LIMIT
        )
    else:
        graph = NullGraphSearch()

    completion = build_completion_provider(
        settings.LLM_API_KEY,
        settings.LLM_MODEL,
        settings.LLM_BASE_URL,
        settings.LLM_TEMPERATURE,
        settings.LLM_MAX_TOKENS,
    )

    driver = build_driver(settings, session_store, crm_store, knowledge, graph, completion)
    logger.info(
        "Agent container ready",
        database=database is not None,
        graph=settings.graph_configured,
        llm=bool(settings.LLM_API_KEY),
    )
    return AgentContainer(
        settings=settings,
        driver=driver,
        session_store=session_store,
        crm_store=crm_store,
        knowledge=knowledge,
        graph=graph,
        completion=completion,
        database=database,
    )
