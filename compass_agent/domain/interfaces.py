"""
Collaborator contracts consumed by the agent core.

Concrete adapters live under ``compass_agent.infrastructure``: PostgreSQL,
Neo4j and OpenAI-compatible implementations for production, in-memory ones
for demo mode and tests.
"""

from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from langchain_core.messages import BaseMessage

from compass_agent.domain.models.conversation import ClearResult, Message, MessageRole, Session
from compass_agent.domain.models.lookup import LookupResult
from compass_agent.domain.models.persona import Advisor, Customer
from compass_agent.domain.models.tooling import ChunkResult, GraphFact


class SessionStore(ABC):
    """Persists sessions and their append-only messages"""

    @abstractmethod
    async def get_session(self, session_id: str, include_expired: bool = False) -> Optional[Session]:
        """Load a session; expired sessions are hidden unless asked for"""
        pass

    @abstractmethod
    async def find_session_by_persona(
        self,
        customer_number: Optional[str],
        advisor_number: Optional[str]
    ) -> Optional[Session]:
        """Newest unexpired session whose persona metadata matches exactly"""
        pass

    @abstractmethod
    async def create_session(self, user_id: Optional[str], metadata: Dict[str, Any]) -> Session:
        pass

    @abstractmethod
    async def update_session_metadata(self, session_id: str, metadata: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    async def add_message(
        self,
        session_id: str,
        role: MessageRole,
        content: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Message:
        pass

    @abstractmethod
    async def get_session_messages(self, session_id: str, limit: int) -> List[Message]:
        """Most recent ``limit`` messages in chronological order"""
        pass

    @abstractmethod
    async def delete_session(self, session_id: str) -> ClearResult:
        """Delete the session and its messages; deleting nothing is not an error"""
        pass


class CrmStore(ABC):
    """Read access to the CRM plus chat interaction logging"""

    @abstractmethod
    async def get_customer_by_number(self, customer_number: str) -> LookupResult[Customer]:
        pass

    @abstractmethod
    async def get_advisor_by_number(self, advisor_number: str) -> LookupResult[Advisor]:
        pass

    @abstractmethod
    async def get_advisor_by_id(self, advisor_id: str) -> LookupResult[Advisor]:
        pass

    @abstractmethod
    async def get_customer_policies(self, customer_id: str) -> LookupResult[List[Dict[str, Any]]]:
        pass

    @abstractmethod
    async def get_customer_claims(self, customer_id: str) -> LookupResult[List[Dict[str, Any]]]:
        pass

    @abstractmethod
    async def get_customer_interactions(self, customer_id: str, limit: int = 10) -> LookupResult[List[Dict[str, Any]]]:
        pass

    @abstractmethod
    async def get_advisor_clients(self, advisor_id: str, limit: int = 50) -> LookupResult[List[Dict[str, Any]]]:
        pass

    @abstractmethod
    async def get_advisor_tasks(
        self,
        advisor_id: str,
        status: Optional[str] = None,
        priority: Optional[str] = None
    ) -> LookupResult[List[Dict[str, Any]]]:
        pass

    @abstractmethod
    async def list_advisors(self, specialization: Optional[str] = None, limit: int = 5) -> LookupResult[List[Dict[str, Any]]]:
        pass

    @abstractmethod
    async def record_chat_interaction(
        self,
        session_id: str,
        content: str,
        customer_id: Optional[str] = None,
        advisor_id: Optional[str] = None
    ) -> None:
        """Record an inbound chat message as a CRM interaction"""
        pass


class KnowledgeSearch(ABC):
    """Document knowledge base"""

    @abstractmethod
    async def hybrid_search(self, query: str, limit: int = 5) -> List[ChunkResult]:
        """Vector similarity blended with full-text rank"""
        pass

    @abstractmethod
    async def search_documents(self, query: str, category: Optional[str] = None) -> List[Dict[str, Any]]:
        """Document metadata (forms, guides) matching the query"""
        pass


class GraphSearch(ABC):
    """Temporal knowledge graph"""

    @abstractmethod
    async def search(self, query: str) -> List[GraphFact]:
        pass

    async def close(self) -> None:
        return None


class CompletionProvider(ABC):
    """Streaming chat completion"""

    @abstractmethod
    def stream_chat(self, messages: Sequence[BaseMessage]) -> AsyncIterator[str]:
        """Yield text deltas for the given message list"""
        pass


class EmbeddingProvider(ABC):

    @abstractmethod
    async def embed(self, text: str) -> List[float]:
        pass
