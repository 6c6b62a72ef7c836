"""
In-memory stores used in demo mode (no ``DATABASE_URL``) and in tests.

They honour the same contracts as the PostgreSQL stores: expired sessions are
invisible, messages are append-only and returned oldest first, and CRM
lookups return ``Found``/``NotFound`` results.
"""

from typing import Any, Dict, List, Optional
from collections import defaultdict
from datetime import timedelta
import asyncio
import copy
import uuid

from compass_agent.domain.context.context_ranker import ContextRanker
from compass_agent.domain.interfaces import CrmStore, KnowledgeSearch, SessionStore
from compass_agent.domain.models.conversation import ClearResult, Message, MessageRole, Session, utcnow
from compass_agent.domain.models.lookup import Found, LookupResult, NotFound
from compass_agent.domain.models.persona import Advisor, Customer
from compass_agent.domain.models.tooling import ChunkResult
from compass_agent.infrastructure.search.knowledge_search import document_summary


class InMemorySessionStore(SessionStore):
    """Sessions with TTL and their messages, held in process memory"""

    def __init__(self, ttl_hours: int = 24):
        self.ttl = timedelta(hours=ttl_hours)
        self.sessions: Dict[str, Session] = {}
        self.messages: Dict[str, List[Message]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def get_session(self, session_id: str, include_expired: bool = False) -> Optional[Session]:
        async with self._lock:
            session = self.sessions.get(session_id)
            if session is None:
                return None
            if not include_expired and session.is_expired():
                return None
            return session.model_copy(deep=True)

    async def find_session_by_persona(
        self,
        customer_number: Optional[str],
        advisor_number: Optional[str]
    ) -> Optional[Session]:
        if not (customer_number or advisor_number):
            return None
        wanted = (
            customer_number.upper() if customer_number else None,
            advisor_number.upper() if advisor_number else None,
        )

        async with self._lock:
            now = utcnow()
            matches = [
                session for session in self.sessions.values()
                if not session.is_expired(now)
                and (session.customer_persona, session.advisor_persona) == wanted
            ]
            if not matches:
                return None
            newest = max(matches, key=lambda session: session.updated_at)
            return newest.model_copy(deep=True)

    async def create_session(self, user_id: Optional[str], metadata: Dict[str, Any]) -> Session:
        now = utcnow()
        session = Session(
            id=str(uuid.uuid4()),
            user_id=user_id,
            metadata=copy.deepcopy(metadata),
            created_at=now,
            updated_at=now,
            expires_at=now + self.ttl,
        )
        async with self._lock:
            self._drop_expired(now)
            self.sessions[session.id] = session
        return session.model_copy(deep=True)

    async def update_session_metadata(self, session_id: str, metadata: Dict[str, Any]) -> None:
        async with self._lock:
            session = self.sessions.get(session_id)
            if session is None:
                return
            self.sessions[session_id] = session.model_copy(
                update={"metadata": copy.deepcopy(metadata), "updated_at": utcnow()}
            )

    async def add_message(
        self,
        session_id: str,
        role: MessageRole,
        content: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Message:
        message = Message(
            id=str(uuid.uuid4()),
            session_id=session_id,
            role=role,
            content=content,
            metadata=copy.deepcopy(metadata or {}),
        )
        async with self._lock:
            if session_id not in self.sessions:
                raise KeyError(f"unknown session {session_id}")
            self.messages[session_id].append(message)
        return message

    async def get_session_messages(self, session_id: str, limit: int) -> List[Message]:
        async with self._lock:
            messages = self.messages.get(session_id, [])
            recent = messages[-limit:] if limit > 0 else []
            return [message.model_copy(deep=True) for message in recent]

    async def delete_session(self, session_id: str) -> ClearResult:
        async with self._lock:
            messages = self.messages.pop(session_id, [])
            session = self.sessions.pop(session_id, None)
            return ClearResult(messages_deleted=len(messages), sessions_deleted=1 if session else 0)

    async def clear_expired(self) -> int:
        """Drop expired sessions and their messages; returns how many were removed"""

        async with self._lock:
            return self._drop_expired(utcnow())

    def _drop_expired(self, now) -> int:
        expired = [session_id for session_id, session in self.sessions.items() if session.is_expired(now)]
        for session_id in expired:
            self.sessions.pop(session_id, None)
            self.messages.pop(session_id, None)
        return len(expired)


class InMemoryCrmStore(CrmStore):
    """CRM records held in dictionaries keyed by internal id"""

    def __init__(
        self,
        customers: Optional[List[Dict[str, Any]]] = None,
        advisors: Optional[List[Dict[str, Any]]] = None,
        policies: Optional[List[Dict[str, Any]]] = None,
        claims: Optional[List[Dict[str, Any]]] = None,
        interactions: Optional[List[Dict[str, Any]]] = None,
        tasks: Optional[List[Dict[str, Any]]] = None
    ):
        self.customers = {row["id"]: dict(row) for row in customers or []}
        self.advisors = {row["id"]: dict(row) for row in advisors or []}
        self.policies = list(policies or [])
        self.claims = list(claims or [])
        self.interactions = list(interactions or [])
        self.tasks = list(tasks or [])

    @staticmethod
    def _copy(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return [copy.deepcopy(row) for row in rows]

    async def get_customer_by_number(self, customer_number: str) -> LookupResult[Customer]:
        for row in self.customers.values():
            if row["customer_number"].upper() == customer_number.upper():
                return Found(Customer.model_validate(row))
        return NotFound(customer_number)

    async def get_advisor_by_number(self, advisor_number: str) -> LookupResult[Advisor]:
        for row in self.advisors.values():
            if row["advisor_number"].upper() == advisor_number.upper():
                return Found(Advisor.model_validate(row))
        return NotFound(advisor_number)

    async def get_advisor_by_id(self, advisor_id: str) -> LookupResult[Advisor]:
        row = self.advisors.get(advisor_id)
        if row is None:
            return NotFound(advisor_id)
        return Found(Advisor.model_validate(row))

    async def get_customer_policies(self, customer_id: str) -> LookupResult[List[Dict[str, Any]]]:
        return Found(self._copy([p for p in self.policies if p.get("customer_id") == customer_id]))

    async def get_customer_claims(self, customer_id: str) -> LookupResult[List[Dict[str, Any]]]:
        return Found(self._copy([c for c in self.claims if c.get("customer_id") == customer_id]))

    async def get_customer_interactions(self, customer_id: str, limit: int = 10) -> LookupResult[List[Dict[str, Any]]]:
        rows = [i for i in self.interactions if i.get("customer_id") == customer_id]
        return Found(self._copy(list(reversed(rows))[:limit]))

    async def get_advisor_clients(self, advisor_id: str, limit: int = 50) -> LookupResult[List[Dict[str, Any]]]:
        rows = [c for c in self.customers.values() if c.get("primary_advisor_id") == advisor_id]
        rows.sort(key=lambda row: row.get("engagement_score") or 0, reverse=True)
        return Found(self._copy(rows[:limit]))

    async def get_advisor_tasks(
        self,
        advisor_id: str,
        status: Optional[str] = None,
        priority: Optional[str] = None
    ) -> LookupResult[List[Dict[str, Any]]]:
        rows = [t for t in self.tasks if t.get("advisor_id") == advisor_id]
        if status:
            rows = [t for t in rows if str(t.get("status", "")).lower().replace(" ", "_") == status.lower()]
        if priority:
            rows = [t for t in rows if str(t.get("priority", "")).lower() == priority.lower()]
        return Found(self._copy(rows))

    async def list_advisors(self, specialization: Optional[str] = None, limit: int = 5) -> LookupResult[List[Dict[str, Any]]]:
        rows = list(self.advisors.values())
        if specialization:
            rows = [a for a in rows if a.get("specialization") == specialization]
        rows.sort(key=lambda row: (-(row.get("satisfaction_score") or 0), row["advisor_number"]))
        return Found(self._copy(rows[:limit]))

    async def record_chat_interaction(
        self,
        session_id: str,
        content: str,
        customer_id: Optional[str] = None,
        advisor_id: Optional[str] = None
    ) -> None:
        if customer_id is None and advisor_id is None:
            return None
        self.interactions.append({
            "id": str(uuid.uuid4()),
            "customer_id": customer_id,
            "advisor_id": advisor_id,
            "interaction_type": "Chat",
            "channel": "Chat",
            "direction": "Inbound",
            "subject": f"Chat session {session_id}",
            "content": content,
            "created_at": utcnow().isoformat(),
        })


class InMemoryKnowledgeSearch(KnowledgeSearch):
    """Keyword-ranked chunks and substring-matched documents held in memory"""

    def __init__(
        self,
        chunks: Optional[List[ChunkResult]] = None,
        documents: Optional[List[Dict[str, Any]]] = None
    ):
        self.chunks = list(chunks or [])
        self.documents = list(documents or [])
        self.ranker = ContextRanker()

    async def hybrid_search(self, query: str, limit: int = 5) -> List[ChunkResult]:
        ranked = self.ranker.rank(
            query,
            ((chunk, f"{chunk.document_title or ''} {chunk.content}") for chunk in self.chunks),
            limit,
        )
        return [chunk.model_copy(update={"score": round(score, 4)}) for chunk, score in ranked]

    async def search_documents(self, query: str, category: Optional[str] = None) -> List[Dict[str, Any]]:
        needle = query.lower()
        matches = [
            document for document in self.documents
            if document.get("is_active", True)
            and (category is None or document.get("category") == category)
            and (needle in str(document.get("title", "")).lower()
                 or needle in str(document.get("description", "")).lower())
        ]
        matches.sort(key=lambda row: (row.get("category") or "", row.get("document_type") or "", row.get("title") or ""))
        return [document_summary(document) for document in matches]
