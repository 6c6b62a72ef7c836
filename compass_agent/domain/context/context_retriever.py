import asyncio
from typing import Any, Dict, List, Optional

import structlog

from compass_agent.domain.interfaces import CrmStore
from compass_agent.domain.models.lookup import Found, LookupResult, TransportFailure
from compass_agent.domain.models.persona import Advisor, Customer, ResolvedPersona

logger = structlog.get_logger(__name__)


SETTLED_CLAIM_STATUSES = {"paid", "closed", "denied"}
ADVISOR_SPECIALIZATIONS = "Life Insurance, Investment & Retirement, Wealth Management, Business Solutions"


def _records(result: LookupResult, what: str) -> List[Dict[str, Any]]:
    if isinstance(result, Found):
        return result.record or []
    if isinstance(result, TransportFailure):
        logger.warning("crm_lookup_failed", lookup=what, detail=result.detail)
    return []


def _plural(count: int, noun: str, plural: Optional[str] = None) -> str:
    return f"{count} {noun}" if count == 1 else f"{count} {plural or noun + 's'}"


class ContextRetriever:
    """Builds the short CRM summary that frames every turn for a persona"""

    def __init__(self, crm: CrmStore):
        self.crm = crm

    async def build_summary(self, persona: Optional[ResolvedPersona]) -> str:
        """Summary text for the persona, or an empty string when unavailable"""

        if persona is None:
            return ""
        try:
            if persona.customer is not None:
                return await self._customer_summary(persona.customer)
            if persona.advisor is not None:
                return await self._advisor_summary(persona.advisor)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("crm_summary_failed", persona=persona.number)
        return ""

    async def _customer_summary(self, customer: Customer) -> str:
        policies, claims = await asyncio.gather(
            self.crm.get_customer_policies(customer.id),
            self.crm.get_customer_claims(customer.id),
        )
        policies = _records(policies, "policies")
        claims = _records(claims, "claims")
        active_policies = [p for p in policies if str(p.get("status", "active")).lower() == "active"]
        outstanding = [c for c in claims if str(c.get("status", "")).lower() not in SETTLED_CLAIM_STATUSES]

        segment = f", {customer.segment} segment" if customer.segment else ""
        lines = [
            f"You are {customer.full_name} ({customer.customer_number.upper()}){segment}. "
            f"You have {_plural(len(active_policies), 'active policy', 'active policies')} "
            f"and {_plural(len(claims), 'claim')}."
        ]
        if outstanding:
            lines.append(f"{_plural(len(outstanding), 'claim')} still outstanding.")

        advisor = None
        if customer.primary_advisor_id:
            result = await self.crm.get_advisor_by_id(customer.primary_advisor_id)
            if isinstance(result, Found):
                advisor = result.record
            elif isinstance(result, TransportFailure):
                logger.warning("crm_lookup_failed", lookup="advisor", detail=result.detail)

        if advisor is not None:
            contact = ", ".join(part for part in (advisor.phone, advisor.email) if part)
            specialization = f", {advisor.specialization}" if advisor.specialization else ""
            lines.append(
                f"Your assigned advisor is {advisor.full_name} ({advisor.advisor_number}{specialization})"
                + (f", reachable at {contact}." if contact else ".")
            )
        else:
            lines.append(
                "You currently do not have an assigned advisor. Advisors can be recommended by "
                f"specialization ({ADVISOR_SPECIALIZATIONS})."
            )

        return " ".join(lines)

    async def _advisor_summary(self, advisor: Advisor) -> str:
        clients = _records(await self.crm.get_advisor_clients(advisor.id), "clients")
        active_clients = [c for c in clients if str(c.get("status", "active")).lower() == "active"]
        specialization = f", a {advisor.specialization} specialist" if advisor.specialization else ""

        return (
            f"You are {advisor.full_name} ({advisor.advisor_number.upper()}){specialization}. "
            f"You manage {_plural(len(active_clients), 'active client')}. "
            "When customers' data appears below, you are viewing it as their advisor, "
            "not as the customer."
        )
