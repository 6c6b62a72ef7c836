"""Tests for caller validation and session ownership."""

import uuid

import pytest

from compass_agent.domain.errors import (
    AmbiguousPersona,
    IdentityBackendUnavailable,
    IdentityMismatch,
    NoIdentity,
    PersonaNotFound,
    SessionOwnershipMismatch,
)
from compass_agent.domain.models.conversation import ADVISOR_PERSONA_KEY, CUSTOMER_PERSONA_KEY
from compass_agent.domain.models.persona import PersonaSelection, PersonaType
from compass_agent.infrastructure.persistence.demo_data import build_demo_crm
from compass_agent.infrastructure.security.access_validator import AccessValidator
from tests.fakes.fake_providers import FailingSessionStore, UnreachableCrmStore


CUSTOMER = PersonaSelection(customer_number="CUST-001", user_type=PersonaType.CUSTOMER)
OTHER_CUSTOMER = PersonaSelection(customer_number="CUST-002", user_type=PersonaType.CUSTOMER)
ADVISOR = PersonaSelection(advisor_number="ADV-001", user_type=PersonaType.ADVISOR)


class TestResolvePersona:
    @pytest.mark.asyncio
    async def test_both_personas_is_ambiguous(self, crm, sessions):
        validator = AccessValidator(crm, sessions)

        with pytest.raises(AmbiguousPersona):
            await validator.resolve_session(
                None, PersonaSelection(customer_number="CUST-001", advisor_number="ADV-001")
            )

        assert sessions.sessions == {}

    @pytest.mark.asyncio
    async def test_unknown_customer(self, crm, sessions):
        validator = AccessValidator(crm, sessions)

        with pytest.raises(PersonaNotFound) as exc_info:
            await validator.resolve_session(None, PersonaSelection(customer_number="CUST-999"))

        assert exc_info.value.status_code == 404
        assert sessions.sessions == {}

    @pytest.mark.asyncio
    async def test_persona_number_is_case_insensitive(self, crm, sessions):
        validator = AccessValidator(crm, sessions)

        validated = await validator.resolve_session(None, PersonaSelection(customer_number="cust-001"))

        assert validated.persona.number == "CUST-001"
        assert validated.session.user_id == "CUST-001"

    @pytest.mark.asyncio
    async def test_crm_unreachable(self, sessions):
        validator = AccessValidator(UnreachableCrmStore(), sessions)

        with pytest.raises(IdentityBackendUnavailable):
            await validator.resolve_session(None, CUSTOMER)


class TestResolveSession:
    @pytest.mark.asyncio
    async def test_no_identity(self, crm, sessions):
        validator = AccessValidator(crm, sessions)

        with pytest.raises(NoIdentity):
            await validator.resolve_session(None, PersonaSelection())
        with pytest.raises(NoIdentity):
            await validator.resolve_session("   ", PersonaSelection())

    @pytest.mark.asyncio
    async def test_new_customer_session_carries_identity_metadata(self, crm, sessions):
        validator = AccessValidator(crm, sessions)

        validated = await validator.resolve_session("CUST-001", CUSTOMER)

        assert validated.created
        metadata = validated.session.metadata
        assert metadata[CUSTOMER_PERSONA_KEY] == "CUST-001"
        assert metadata["customer_id"] == validated.persona.internal_id
        assert metadata["user_type"] == "customer"
        assert ADVISOR_PERSONA_KEY not in metadata

    @pytest.mark.asyncio
    async def test_persona_shaped_identity_must_match(self, crm, sessions):
        validator = AccessValidator(crm, sessions)

        with pytest.raises(IdentityMismatch):
            await validator.resolve_session("CUST-002", CUSTOMER)

        assert sessions.sessions == {}

    @pytest.mark.asyncio
    async def test_opaque_identity_is_not_compared(self, crm, sessions):
        validator = AccessValidator(crm, sessions)

        validated = await validator.resolve_session("browser-7f3a", CUSTOMER)

        assert validated.session.user_id == "CUST-001"

    @pytest.mark.asyncio
    async def test_reuses_session_by_id(self, crm, sessions):
        validator = AccessValidator(crm, sessions)
        first = await validator.resolve_session(None, CUSTOMER)

        second = await validator.resolve_session(
            None, CUSTOMER, session_id=first.session.id, metadata={"last_message_at": "now"}
        )

        assert second.session.id == first.session.id
        assert not second.created
        assert second.session.metadata["last_message_at"] == "now"

    @pytest.mark.asyncio
    async def test_refresh_never_overwrites_identity_keys(self, crm, sessions):
        validator = AccessValidator(crm, sessions)
        first = await validator.resolve_session(None, CUSTOMER)

        second = await validator.resolve_session(
            None, CUSTOMER, session_id=first.session.id,
            metadata={CUSTOMER_PERSONA_KEY: "CUST-002", "customer_id": "forged"}
        )

        assert second.session.metadata[CUSTOMER_PERSONA_KEY] == "CUST-001"
        assert second.session.metadata["customer_id"] == first.persona.internal_id

    @pytest.mark.asyncio
    async def test_other_customer_cannot_use_session(self, crm, sessions):
        """CUST-002 presenting CUST-001's session id"""

        validator = AccessValidator(crm, sessions)
        first = await validator.resolve_session(None, CUSTOMER)

        with pytest.raises(SessionOwnershipMismatch) as exc_info:
            await validator.resolve_session(None, OTHER_CUSTOMER, session_id=first.session.id)

        assert exc_info.value.status_code == 403
        assert len(sessions.sessions) == 1
        assert sessions.messages.get(first.session.id, []) == []

    @pytest.mark.asyncio
    async def test_advisor_cannot_use_customer_session(self, crm, sessions):
        validator = AccessValidator(crm, sessions)
        first = await validator.resolve_session(None, CUSTOMER)

        with pytest.raises(SessionOwnershipMismatch):
            await validator.resolve_session(None, ADVISOR, session_id=first.session.id)

    @pytest.mark.asyncio
    async def test_anonymous_session_is_bound_to_raw_identity(self, crm, sessions):
        validator = AccessValidator(crm, sessions)
        first = await validator.resolve_session("browser-1", PersonaSelection())

        with pytest.raises(SessionOwnershipMismatch):
            await validator.resolve_session("browser-2", PersonaSelection(), session_id=first.session.id)

        reused = await validator.resolve_session("browser-1", PersonaSelection(), session_id=first.session.id)
        assert reused.session.id == first.session.id

    @pytest.mark.asyncio
    async def test_customer_cannot_use_anonymous_session(self, crm, sessions):
        validator = AccessValidator(crm, sessions)
        first = await validator.resolve_session("browser-1", PersonaSelection())

        with pytest.raises(SessionOwnershipMismatch):
            await validator.resolve_session(None, CUSTOMER, session_id=first.session.id)

    @pytest.mark.asyncio
    async def test_unknown_session_id_falls_back_to_persona_session(self, crm, sessions):
        validator = AccessValidator(crm, sessions)
        first = await validator.resolve_session(None, CUSTOMER)

        again = await validator.resolve_session(None, CUSTOMER, session_id=str(uuid.uuid4()))

        assert again.session.id == first.session.id
        assert not again.created

    @pytest.mark.asyncio
    async def test_malformed_session_id_is_ignored(self, crm, sessions):
        validator = AccessValidator(crm, sessions)

        validated = await validator.resolve_session(None, ADVISOR, session_id="not-a-uuid")

        assert validated.created
        assert validated.session.advisor_persona == "ADV-001"

    @pytest.mark.asyncio
    async def test_persona_sessions_are_isolated(self, crm, sessions):
        """Two personas never share a session"""

        validator = AccessValidator(crm, sessions)

        maria = await validator.resolve_session(None, CUSTOMER)
        petrus = await validator.resolve_session(None, OTHER_CUSTOMER)
        advisor = await validator.resolve_session(None, ADVISOR)

        assert len({maria.session.id, petrus.session.id, advisor.session.id}) == 3

    @pytest.mark.asyncio
    async def test_store_failure_is_terminal(self):
        sessions = FailingSessionStore(fail_reads=True)
        validator = AccessValidator(build_demo_crm(), sessions)

        with pytest.raises(IdentityBackendUnavailable):
            await validator.resolve_session(None, CUSTOMER, session_id=str(uuid.uuid4()))
