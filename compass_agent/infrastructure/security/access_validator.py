"""
Access Validation Module

Resolves the caller's declared persona against the CRM store and returns a
session that is safe to append messages to. Every failure is raised before
anything is created or modified.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Dict, Optional, TypeVar

import structlog

from compass_agent.domain.errors import (
    AmbiguousPersona,
    CompassError,
    IdentityBackendUnavailable,
    IdentityMismatch,
    NoIdentity,
    PersonaNotFound,
    SessionOwnershipMismatch,
)
from compass_agent.domain.interfaces import CrmStore, SessionStore
from compass_agent.domain.models.conversation import IDENTITY_METADATA_KEYS, Session
from compass_agent.domain.models.lookup import Found, NotFound
from compass_agent.domain.models.persona import (
    PersonaNumber,
    PersonaSelection,
    PersonaType,
    ResolvedPersona,
    looks_like_session_id,
    normalize_persona_number,
    parse_identity,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass
class ValidatedSession:
    session: Session
    persona: Optional[ResolvedPersona]
    created: bool = False


class AccessValidator:
    """Enforces one identity per session and one persona per request"""

    def __init__(self, crm: CrmStore, sessions: SessionStore):
        self.crm = crm
        self.sessions = sessions

    async def resolve_persona(self, selection: PersonaSelection) -> Optional[ResolvedPersona]:
        """
        Confirm the declared persona exists.

        Raises:
            AmbiguousPersona: both a customer and an advisor persona were declared
            PersonaNotFound: the declared persona is not in the CRM
            IdentityBackendUnavailable: the CRM could not be reached
        """

        if selection.is_ambiguous:
            raise AmbiguousPersona("both customer and advisor persona supplied")

        customer_number = normalize_persona_number(selection.customer_number)
        if customer_number:
            result = await self.crm.get_customer_by_number(customer_number)
            if isinstance(result, Found):
                return ResolvedPersona.from_customer(result.record)
            if isinstance(result, NotFound):
                raise PersonaNotFound(f"customer {customer_number} not found", {"persona": customer_number})
            raise IdentityBackendUnavailable(result.detail, {"persona": customer_number})

        advisor_number = normalize_persona_number(selection.advisor_number)
        if advisor_number:
            result = await self.crm.get_advisor_by_number(advisor_number)
            if isinstance(result, Found):
                return ResolvedPersona.from_advisor(result.record)
            if isinstance(result, NotFound):
                raise PersonaNotFound(f"advisor {advisor_number} not found", {"persona": advisor_number})
            raise IdentityBackendUnavailable(result.detail, {"persona": advisor_number})

        return None

    async def resolve_session(
        self,
        raw_identity: Optional[str],
        selection: PersonaSelection,
        session_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> ValidatedSession:
        """Validate the caller and return a reusable or freshly created session"""

        identity = parse_identity(raw_identity)
        persona = await self.resolve_persona(selection)

        if persona is None and identity is None:
            raise NoIdentity("no persona selected and no caller identity")

        if persona is not None and isinstance(identity, PersonaNumber) and identity.value != persona.user_id:
            raise IdentityMismatch(
                "caller identity does not match selected persona",
                {"identity": identity.value, "persona": persona.user_id},
            )

        owner_id = persona.user_id if persona is not None else identity.value
        refreshed = {
            key: value for key, value in (metadata or {}).items()
            if key not in IDENTITY_METADATA_KEYS
        }

        if session_id and looks_like_session_id(session_id):
            existing = await self._store_call(self.sessions.get_session(session_id))
            if existing is not None:
                self._check_ownership(existing, persona, owner_id)
                session = await self._refresh(existing, refreshed)
                logger.info("session_reused", session_id=session.id, owner=owner_id)
                return ValidatedSession(session, persona)
        elif session_id:
            logger.info("session_id_ignored", reason="malformed")

        if persona is not None:
            customer = persona.number if persona.persona_type == PersonaType.CUSTOMER else None
            advisor = persona.number if persona.persona_type == PersonaType.ADVISOR else None
            existing = await self._store_call(self.sessions.find_session_by_persona(customer, advisor))
            if existing is not None:
                session = await self._refresh(existing, refreshed)
                logger.info("session_reused", session_id=session.id, owner=owner_id, matched="persona")
                return ValidatedSession(session, persona)

        session_metadata = dict(refreshed)
        if persona is not None:
            session_metadata.update(persona.session_metadata())
        session = await self._store_call(self.sessions.create_session(owner_id, session_metadata))
        logger.info("session_created", session_id=session.id, owner=owner_id)
        return ValidatedSession(session, persona, created=True)

    @staticmethod
    def _check_ownership(session: Session, persona: Optional[ResolvedPersona], owner_id: str) -> None:
        if persona is None:
            expected = (None, None)
        elif persona.persona_type == PersonaType.CUSTOMER:
            expected = (persona.number, None)
        else:
            expected = (None, persona.number)

        stored = (session.customer_persona, session.advisor_persona)
        if stored != expected:
            raise SessionOwnershipMismatch(
                "session persona does not match caller",
                {"session_id": session.id},
            )
        if persona is None and session.user_id != owner_id:
            raise SessionOwnershipMismatch("session owner does not match caller", {"session_id": session.id})

    async def _refresh(self, session: Session, refreshed: Dict[str, Any]) -> Session:
        if not refreshed:
            return session
        merged = {**session.metadata, **refreshed}
        await self._store_call(self.sessions.update_session_metadata(session.id, merged))
        return session.model_copy(update={"metadata": merged})

    @staticmethod
    async def _store_call(call: Awaitable[T]) -> T:
        try:
            return await call
        except (CompassError, asyncio.CancelledError):
            raise
        except Exception as e:
            logger.error("session_store_unavailable", error=str(e))
            raise IdentityBackendUnavailable(str(e)) from e
