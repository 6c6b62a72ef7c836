import asyncio
from typing import Any, Dict, List, Optional

import structlog

from compass_agent.domain.errors import ToolExecutionError
from compass_agent.domain.interfaces import CrmStore
from compass_agent.domain.models.lookup import Found, LookupResult, NotFound
from compass_agent.domain.models.persona import Advisor, Customer
from compass_agent.domain.tool.tool_validator import (
    AdvisorTasksInput,
    AdvisorToolInput,
    CustomerInteractionsInput,
    CustomerToolInput,
    RecommendAdvisorsInput,
)


logger = structlog.get_logger(__name__)

OPEN_TASK_STATUSES = {"open", "in_progress"}


def unwrap(result: LookupResult, default: Any = None) -> Any:
    """Found -> record, NotFound -> default, TransportFailure -> ToolExecutionError"""

    if isinstance(result, Found):
        return result.record
    if isinstance(result, NotFound):
        return default
    raise ToolExecutionError(result.detail)


class CrmTools:
    """Structured CRM lookups exposed as tools, keyed by public persona number"""

    def __init__(self, crm: CrmStore):
        self.crm = crm

    async def _customer(self, customer_number: str) -> Optional[Customer]:
        return unwrap(await self.crm.get_customer_by_number(customer_number))

    async def _advisor(self, advisor_number: str) -> Optional[Advisor]:
        return unwrap(await self.crm.get_advisor_by_number(advisor_number))

    async def get_customer_policies(self, params: CustomerToolInput) -> List[Dict[str, Any]]:
        customer = await self._customer(params.customer_number)
        if customer is None:
            return []
        return unwrap(await self.crm.get_customer_policies(customer.id), [])

    async def get_customer_claims(self, params: CustomerToolInput) -> List[Dict[str, Any]]:
        customer = await self._customer(params.customer_number)
        if customer is None:
            return []
        return unwrap(await self.crm.get_customer_claims(customer.id), [])

    async def get_customer_interactions(self, params: CustomerInteractionsInput) -> List[Dict[str, Any]]:
        customer = await self._customer(params.customer_number)
        if customer is None:
            return []
        return unwrap(await self.crm.get_customer_interactions(customer.id, params.limit), [])

    async def get_customer_profile(self, params: CustomerToolInput) -> Optional[Dict[str, Any]]:
        customer = await self._customer(params.customer_number)
        if customer is None:
            return None

        policies, claims, interactions = await asyncio.gather(
            self.crm.get_customer_policies(customer.id),
            self.crm.get_customer_claims(customer.id),
            self.crm.get_customer_interactions(customer.id, 5),
        )
        policies = unwrap(policies, [])
        claims = unwrap(claims, [])
        interactions = unwrap(interactions, [])

        return {
            "customer": customer.model_dump(),
            "policies": policies,
            "claims": claims,
            "recent_interactions": interactions,
            "summary": {
                "policy_count": len(policies),
                "claim_count": len(claims),
                "interaction_count": len(interactions),
            },
        }

    async def get_advisor_profile(self, params: AdvisorToolInput) -> Optional[Dict[str, Any]]:
        advisor = await self._advisor(params.advisor_number)
        if advisor is None:
            return None

        clients, tasks = await asyncio.gather(
            self.crm.get_advisor_clients(advisor.id),
            self.crm.get_advisor_tasks(advisor.id),
        )
        clients = unwrap(clients, [])
        tasks = unwrap(tasks, [])
        open_tasks = [
            task for task in tasks
            if str(task.get("status", "")).lower().replace(" ", "_") in OPEN_TASK_STATUSES
        ]

        return {
            "advisor": advisor.model_dump(),
            "clients": clients[:10],
            "recent_tasks": tasks[:5],
            "summary": {
                "client_count": len(clients),
                "open_task_count": len(open_tasks),
            },
        }

    async def get_advisor_tasks(self, params: AdvisorTasksInput) -> List[Dict[str, Any]]:
        advisor = await self._advisor(params.advisor_number)
        if advisor is None:
            return []
        return unwrap(await self.crm.get_advisor_tasks(advisor.id, params.status, params.priority), [])

    async def recommend_advisors(self, params: RecommendAdvisorsInput) -> List[Dict[str, Any]]:
        advisors = unwrap(await self.crm.list_advisors(params.specialization, params.limit), [])
        logger.debug("advisors_recommended", specialization=params.specialization, count=len(advisors))
        return advisors
