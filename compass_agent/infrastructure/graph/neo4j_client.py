"""
Neo4j Graph Client

Temporal fact search over the knowledge graph. Graph search is best-effort:
connection, authentication and query failures are logged and yield no facts
so the chat turn carries on without graph context.
"""

from typing import Any, Dict, List, Optional

import structlog
from neo4j import AsyncDriver, AsyncGraphDatabase
from neo4j.exceptions import DriverError, Neo4jError

from compass_agent.domain.interfaces import GraphSearch
from compass_agent.domain.models.tooling import GraphFact

logger = structlog.get_logger(__name__)


FACT_SEARCH_CYPHER = """
MATCH (n)
WHERE n.name CONTAINS $query OR n.description CONTAINS $query
RETURN n.fact AS fact,
       n.uuid AS uuid,
       n.valid_at AS valid_at,
       n.invalid_at AS invalid_at
LIMIT $limit
"""


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    # neo4j temporal types render as ISO-8601 through str()
    return str(value)


class Neo4jGraphSearch(GraphSearch):
    """Graph store client built on the official async driver"""

    def __init__(self, uri: str, username: str, password: str, limit: int = 10):
        self.uri = uri
        self.username = username
        self.password = password
        self.limit = limit
        self._driver: Optional[AsyncDriver] = None

    async def connect(self) -> None:
        """Create the driver; the first query opens the actual connection."""
        self._driver = AsyncGraphDatabase.driver(self.uri, auth=(self.username, self.password))
        logger.info("Neo4j driver created", uri=self.uri)

    async def close(self) -> None:
        if self._driver is not None:
            await self._driver.close()
            self._driver = None
            logger.info("Neo4j driver closed")

    async def query(self, cypher: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        if self._driver is None:
            await self.connect()
        async with self._driver.session() as session:
            result = await session.run(cypher, params or {})
            return await result.data()

    async def search(self, query: str) -> List[GraphFact]:
        try:
            rows = await self.query(FACT_SEARCH_CYPHER, {"query": query, "limit": self.limit})
        except (Neo4jError, DriverError, OSError) as e:
            logger.warning("graph_search_failed", error=str(e))
            return []

        facts = []
        for row in rows:
            if not row.get("fact") or not row.get("uuid"):
                continue
            facts.append(GraphFact(
                fact=str(row["fact"]),
                uuid=str(row["uuid"]),
                valid_at=_as_text(row.get("valid_at")),
                invalid_at=_as_text(row.get("invalid_at")),
                source_node_uuid=str(row["uuid"]),
            ))
        logger.debug("graph_search_completed", fact_count=len(facts))
        return facts


class NullGraphSearch(GraphSearch):
    """Used when no graph store is configured"""

    async def search(self, query: str) -> List[GraphFact]:
        return []
