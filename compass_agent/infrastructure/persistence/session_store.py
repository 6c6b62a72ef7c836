import json
import uuid
from datetime import timedelta
from typing import Any, Dict, List, Mapping, Optional

import structlog
from sqlalchemy import text

from compass_agent.domain.interfaces import SessionStore
from compass_agent.domain.models.conversation import (
    ADVISOR_PERSONA_KEY,
    CUSTOMER_PERSONA_KEY,
    ClearResult,
    Message,
    MessageRole,
    Session,
    utcnow,
)
from compass_agent.infrastructure.persistence.database import Database
from compass_agent.infrastructure.persistence.retry import RetryPolicy, run_with_retry

logger = structlog.get_logger(__name__)


SESSION_COLUMNS = "id::text AS id, user_id, metadata, created_at, updated_at, expires_at"
MESSAGE_COLUMNS = "id::text AS id, session_id::text AS session_id, role, content, metadata, created_at"


def _json_value(value: Any) -> Dict[str, Any]:
    # asyncpg returns jsonb as text when no codec is registered
    if value is None:
        return {}
    if isinstance(value, str):
        return json.loads(value) if value else {}
    return dict(value)


def _session_from_row(row: Mapping[str, Any]) -> Session:
    return Session(
        id=row["id"],
        user_id=row["user_id"],
        metadata=_json_value(row["metadata"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        expires_at=row["expires_at"],
    )


def _message_from_row(row: Mapping[str, Any]) -> Message:
    return Message(
        id=row["id"],
        session_id=row["session_id"],
        role=MessageRole(row["role"]),
        content=row["content"],
        metadata=_json_value(row["metadata"]),
        created_at=row["created_at"],
    )


class PostgresSessionStore(SessionStore):
    """Sessions and messages in PostgreSQL; every call is retried on transient errors"""

    def __init__(self, database: Database, retry_policy: RetryPolicy = RetryPolicy(), ttl_hours: int = 24):
        self.database = database
        self.retry_policy = retry_policy
        self.ttl = timedelta(hours=ttl_hours)

    async def _fetch_one(self, operation: str, sql: str, params: Dict[str, Any]) -> Optional[Mapping[str, Any]]:
        async def run():
            async with self.database.transaction() as conn:
                result = await conn.execute(text(sql), params)
                return result.mappings().first()
        return await run_with_retry(run, self.retry_policy, operation)

    async def get_session(self, session_id: str, include_expired: bool = False) -> Optional[Session]:
        sql = f"SELECT {SESSION_COLUMNS} FROM sessions WHERE id = CAST(:id AS uuid)"
        if not include_expired:
            sql += " AND expires_at > NOW()"
        row = await self._fetch_one("get_session", sql, {"id": session_id})
        return _session_from_row(row) if row else None

    async def find_session_by_persona(
        self,
        customer_number: Optional[str],
        advisor_number: Optional[str]
    ) -> Optional[Session]:
        if customer_number:
            key, other, number = CUSTOMER_PERSONA_KEY, ADVISOR_PERSONA_KEY, customer_number
        elif advisor_number:
            key, other, number = ADVISOR_PERSONA_KEY, CUSTOMER_PERSONA_KEY, advisor_number
        else:
            return None

        sql = (
            f"SELECT {SESSION_COLUMNS} FROM sessions "
            "WHERE expires_at > NOW() "
            "AND UPPER(metadata->>CAST(:key AS text)) = :number "
            "AND COALESCE(metadata->>CAST(:other AS text), '') = '' "
            "ORDER BY updated_at DESC LIMIT 1"
        )
        row = await self._fetch_one(
            "find_session_by_persona", sql, {"key": key, "other": other, "number": number.upper()}
        )
        return _session_from_row(row) if row else None

    async def create_session(self, user_id: Optional[str], metadata: Dict[str, Any]) -> Session:
        sql = (
            "INSERT INTO sessions (id, user_id, metadata, expires_at) "
            "VALUES (CAST(:id AS uuid), :user_id, CAST(:metadata AS jsonb), :expires_at) "
            "ON CONFLICT (id) DO NOTHING "
            f"RETURNING {SESSION_COLUMNS}"
        )
        session_id = str(uuid.uuid4())
        params = {
            "id": session_id,
            "user_id": user_id,
            "metadata": json.dumps(metadata, default=str),
            "expires_at": utcnow() + self.ttl,
        }
        row = await self._fetch_one("create_session", sql, params)
        if row is None:
            # A retried insert that had already committed
            session = await self.get_session(session_id, include_expired=True)
            if session is None:
                raise RuntimeError(f"session {session_id} was not created")
            return session
        return _session_from_row(row)

    async def update_session_metadata(self, session_id: str, metadata: Dict[str, Any]) -> None:
        sql = (
            "UPDATE sessions SET metadata = CAST(:metadata AS jsonb), updated_at = NOW() "
            f"WHERE id = CAST(:id AS uuid) RETURNING id::text AS id"
        )
        await self._fetch_one(
            "update_session_metadata", sql, {"id": session_id, "metadata": json.dumps(metadata, default=str)}
        )

    async def add_message(
        self,
        session_id: str,
        role: MessageRole,
        content: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Message:
        message_id = str(uuid.uuid4())
        sql = (
            "INSERT INTO messages (id, session_id, role, content, metadata) "
            "VALUES (CAST(:id AS uuid), CAST(:session_id AS uuid), :role, :content, CAST(:metadata AS jsonb)) "
            "ON CONFLICT (id) DO NOTHING "
            f"RETURNING {MESSAGE_COLUMNS}"
        )
        params = {
            "id": message_id,
            "session_id": session_id,
            "role": role.value,
            "content": content,
            "metadata": json.dumps(metadata or {}, default=str),
        }
        row = await self._fetch_one("add_message", sql, params)
        if row is None:
            row = await self._fetch_one(
                "get_message", f"SELECT {MESSAGE_COLUMNS} FROM messages WHERE id = CAST(:id AS uuid)", {"id": message_id}
            )
            if row is None:
                raise RuntimeError(f"message {message_id} was not stored")
        return _message_from_row(row)

    async def get_session_messages(self, session_id: str, limit: int) -> List[Message]:
        sql = (
            f"SELECT * FROM (SELECT {MESSAGE_COLUMNS} FROM messages "
            "WHERE session_id = CAST(:session_id AS uuid) "
            "ORDER BY created_at DESC LIMIT :limit) recent "
            "ORDER BY created_at ASC"
        )

        async def run():
            async with self.database.transaction() as conn:
                result = await conn.execute(text(sql), {"session_id": session_id, "limit": limit})
                return result.mappings().all()

        rows = await run_with_retry(run, self.retry_policy, "get_session_messages")
        return [_message_from_row(row) for row in rows]

    async def delete_session(self, session_id: str) -> ClearResult:
        async def run():
            async with self.database.transaction() as conn:
                messages = await conn.execute(
                    text("DELETE FROM messages WHERE session_id = CAST(:id AS uuid)"), {"id": session_id}
                )
                sessions = await conn.execute(
                    text("DELETE FROM sessions WHERE id = CAST(:id AS uuid)"), {"id": session_id}
                )
                return ClearResult(messages_deleted=messages.rowcount or 0, sessions_deleted=sessions.rowcount or 0)

        return await run_with_retry(run, self.retry_policy, "delete_session")
