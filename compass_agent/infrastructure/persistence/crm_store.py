import uuid
from typing import Any, Callable, Dict, List, Mapping, Optional

import structlog
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from compass_agent.domain.interfaces import CrmStore
from compass_agent.domain.models.lookup import Found, LookupResult, NotFound, TransportFailure
from compass_agent.domain.models.persona import Advisor, Customer
from compass_agent.infrastructure.persistence.database import Database
from compass_agent.infrastructure.persistence.retry import RetryPolicy, run_with_retry

logger = structlog.get_logger(__name__)


CUSTOMER_COLUMNS = """
    id::text AS id, customer_number, first_name, last_name, email, phone_primary,
    phone_secondary, date_of_birth, address_city, address_region, occupation,
    monthly_income, marital_status, dependents_count, segment, preferred_language,
    preferred_contact_method, engagement_score, lifetime_value, churn_risk,
    primary_advisor_id::text AS primary_advisor_id
"""

ADVISOR_COLUMNS = """
    id::text AS id, advisor_number, first_name, last_name, email, phone, specialization,
    experience_years, region, branch, active_clients, satisfaction_score, performance_rating
"""

TASK_STATUS_VALUES = {
    "open": "Open",
    "in_progress": "In Progress",
    "completed": "Completed",
    "cancelled": "Cancelled",
}

# Transport-level failures become TransportFailure; anything else is a bug and propagates
STORE_ERRORS = (SQLAlchemyError, OSError)


class PostgresCrmStore(CrmStore):
    """CRM read model in PostgreSQL"""

    def __init__(self, database: Database, retry_policy: RetryPolicy = RetryPolicy()):
        self.database = database
        self.retry_policy = retry_policy

    async def _rows(self, operation: str, sql: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        async def run():
            async with self.database.transaction() as conn:
                result = await conn.execute(text(sql), params)
                return [dict(row) for row in result.mappings().all()]
        return await run_with_retry(run, self.retry_policy, operation)

    async def _one(
        self,
        operation: str,
        sql: str,
        params: Dict[str, Any],
        key: str,
        build: Callable[[Mapping[str, Any]], Any]
    ) -> LookupResult:
        try:
            rows = await self._rows(operation, sql, params)
        except STORE_ERRORS as e:
            logger.warning("crm_transport_failure", operation=operation, error=str(e))
            return TransportFailure(str(e))
        if not rows:
            return NotFound(key)
        return Found(build(rows[0]))

    async def _many(self, operation: str, sql: str, params: Dict[str, Any]) -> LookupResult:
        try:
            return Found(await self._rows(operation, sql, params))
        except STORE_ERRORS as e:
            logger.warning("crm_transport_failure", operation=operation, error=str(e))
            return TransportFailure(str(e))

    async def get_customer_by_number(self, customer_number: str) -> LookupResult[Customer]:
        sql = f"SELECT {CUSTOMER_COLUMNS} FROM customers WHERE UPPER(customer_number) = :number"
        return await self._one(
            "get_customer_by_number", sql, {"number": customer_number.upper()}, customer_number,
            lambda row: Customer.model_validate(row)
        )

    async def get_advisor_by_number(self, advisor_number: str) -> LookupResult[Advisor]:
        sql = f"SELECT {ADVISOR_COLUMNS} FROM advisors WHERE UPPER(advisor_number) = :number"
        return await self._one(
            "get_advisor_by_number", sql, {"number": advisor_number.upper()}, advisor_number,
            lambda row: Advisor.model_validate(row)
        )

    async def get_advisor_by_id(self, advisor_id: str) -> LookupResult[Advisor]:
        sql = f"SELECT {ADVISOR_COLUMNS} FROM advisors WHERE id = CAST(:id AS uuid)"
        return await self._one(
            "get_advisor_by_id", sql, {"id": advisor_id}, advisor_id,
            lambda row: Advisor.model_validate(row)
        )

    async def get_customer_policies(self, customer_id: str) -> LookupResult[List[Dict[str, Any]]]:
        sql = """
            SELECT id::text AS id, policy_number, product_type, product_subtype, status,
                   coverage_amount, premium_amount, start_date, end_date, renewal_date
            FROM policies
            WHERE customer_id = CAST(:customer_id AS uuid)
            ORDER BY created_at DESC
        """
        return await self._many("get_customer_policies", sql, {"customer_id": customer_id})

    async def get_customer_claims(self, customer_id: str) -> LookupResult[List[Dict[str, Any]]]:
        sql = """
            SELECT id::text AS id, claim_number, policy_id::text AS policy_id, claim_type, status,
                   incident_date, approved_amount, paid_amount, processing_time_days
            FROM claims
            WHERE customer_id = CAST(:customer_id AS uuid)
            ORDER BY created_at DESC
        """
        return await self._many("get_customer_claims", sql, {"customer_id": customer_id})

    async def get_customer_interactions(self, customer_id: str, limit: int = 10) -> LookupResult[List[Dict[str, Any]]]:
        sql = """
            SELECT id::text AS id, interaction_number, interaction_type, channel, direction,
                   subject, content, sentiment, intent, outcome, created_at
            FROM interactions
            WHERE customer_id = CAST(:customer_id AS uuid)
            ORDER BY created_at DESC
            LIMIT :limit
        """
        return await self._many("get_customer_interactions", sql, {"customer_id": customer_id, "limit": limit})

    async def get_advisor_clients(self, advisor_id: str, limit: int = 50) -> LookupResult[List[Dict[str, Any]]]:
        sql = """
            SELECT id::text AS id, customer_number, first_name, last_name, segment,
                   engagement_score, lifetime_value
            FROM customers
            WHERE primary_advisor_id = CAST(:advisor_id AS uuid)
            ORDER BY engagement_score DESC NULLS LAST
            LIMIT :limit
        """
        return await self._many("get_advisor_clients", sql, {"advisor_id": advisor_id, "limit": limit})

    async def get_advisor_tasks(
        self,
        advisor_id: str,
        status: Optional[str] = None,
        priority: Optional[str] = None
    ) -> LookupResult[List[Dict[str, Any]]]:
        conditions = ["t.advisor_id = CAST(:advisor_id AS uuid)"]
        params: Dict[str, Any] = {"advisor_id": advisor_id}
        if status:
            conditions.append("t.status = :status")
            params["status"] = TASK_STATUS_VALUES.get(status.lower(), status)
        if priority:
            conditions.append("LOWER(t.priority) = LOWER(:priority)")
            params["priority"] = priority

        sql = f"""
            SELECT t.id::text AS id, t.task_number, c.customer_number,
                   c.first_name || ' ' || c.last_name AS customer_name,
                   t.task_type, t.title, t.description, t.priority, t.status,
                   t.due_date, t.completed_date, t.created_at
            FROM tasks t
            LEFT JOIN customers c ON t.customer_id = c.id
            WHERE {' AND '.join(conditions)}
            ORDER BY t.due_date ASC NULLS LAST, t.priority DESC
        """
        return await self._many("get_advisor_tasks", sql, params)

    async def list_advisors(self, specialization: Optional[str] = None, limit: int = 5) -> LookupResult[List[Dict[str, Any]]]:
        sql = f"SELECT {ADVISOR_COLUMNS} FROM advisors"
        params: Dict[str, Any] = {"limit": limit}
        if specialization:
            sql += " WHERE specialization = :specialization"
            params["specialization"] = specialization
        sql += " ORDER BY satisfaction_score DESC NULLS LAST, advisor_number LIMIT :limit"
        return await self._many("list_advisors", sql, params)

    async def record_chat_interaction(
        self,
        session_id: str,
        content: str,
        customer_id: Optional[str] = None,
        advisor_id: Optional[str] = None
    ) -> None:
        if customer_id is None and advisor_id is None:
            return None

        sql = """
            INSERT INTO interactions (
                interaction_number, customer_id, advisor_id, interaction_type,
                channel, direction, subject, content
            )
            VALUES (
                :interaction_number, CAST(:customer_id AS uuid), CAST(:advisor_id AS uuid), 'Chat',
                'Chat', 'Inbound', :subject, :content
            )
        """
        params = {
            "interaction_number": f"INT-CHAT-{uuid.uuid4().hex[:10].upper()}",
            "customer_id": customer_id,
            "advisor_id": advisor_id,
            "subject": f"Chat session {session_id}",
            "content": content,
        }
        await self._rows_no_result("record_chat_interaction", sql, params)

    async def _rows_no_result(self, operation: str, sql: str, params: Dict[str, Any]) -> None:
        async def run():
            async with self.database.transaction() as conn:
                await conn.execute(text(sql), params)
        await run_with_retry(run, self.retry_policy, operation)
