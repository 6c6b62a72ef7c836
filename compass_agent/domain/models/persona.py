import re
from typing import Any, Dict, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field
from enum import Enum

from compass_agent.domain.models.conversation import ADVISOR_PERSONA_KEY, CUSTOMER_PERSONA_KEY


PERSONA_NUMBER_PATTERN = re.compile(r"^(CUST|ADV)-\d+$", re.IGNORECASE)
SESSION_ID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


class PersonaType(str, Enum):
    """Kind of CRM persona a caller acts as"""
    CUSTOMER = "customer"
    ADVISOR = "advisor"


class PersonaNumber(BaseModel):
    """Raw caller identity shaped like a public persona number"""
    kind: Literal["persona_number"] = "persona_number"
    value: str


class OpaqueToken(BaseModel):
    """Raw caller identity with no persona semantics (browser id, auth subject)"""
    kind: Literal["opaque"] = "opaque"
    value: str


Identity = Union[PersonaNumber, OpaqueToken]


def parse_identity(raw: Optional[str]) -> Optional[Identity]:
    """Classify a raw caller identity once, at the request boundary"""

    if raw is None:
        return None
    value = raw.strip()
    if not value:
        return None
    if PERSONA_NUMBER_PATTERN.match(value):
        return PersonaNumber(value=value.upper())
    return OpaqueToken(value=value)


def looks_like_session_id(value: Optional[str]) -> bool:
    return bool(value) and SESSION_ID_PATTERN.match(value) is not None


def normalize_persona_number(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value.upper() or None


class Customer(BaseModel):
    """Customer record as returned by the CRM store"""
    model_config = ConfigDict(extra="allow")

    id: str
    customer_number: str
    first_name: str = ""
    last_name: str = ""
    segment: Optional[str] = None
    email: Optional[str] = None
    phone_primary: Optional[str] = None
    primary_advisor_id: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Advisor(BaseModel):
    """Advisor record as returned by the CRM store"""
    model_config = ConfigDict(extra="allow")

    id: str
    advisor_number: str
    first_name: str = ""
    last_name: str = ""
    specialization: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    active_clients: Optional[int] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class PersonaSelection(BaseModel):
    """Persona numbers declared by the caller for this request"""
    customer_number: Optional[str] = None
    advisor_number: Optional[str] = None
    user_type: Optional[PersonaType] = None

    @property
    def is_ambiguous(self) -> bool:
        return bool(self.customer_number and self.advisor_number)


class ResolvedPersona(BaseModel):
    """A persona selection confirmed against the CRM store"""
    persona_type: PersonaType
    number: str = Field(description="Public persona number, e.g. CUST-001")
    internal_id: str = Field(description="CRM primary key")
    display_name: str = ""
    customer: Optional[Customer] = None
    advisor: Optional[Advisor] = None

    @classmethod
    def from_customer(cls, customer: Customer) -> "ResolvedPersona":
        return cls(
            persona_type=PersonaType.CUSTOMER,
            number=customer.customer_number.upper(),
            internal_id=customer.id,
            display_name=customer.full_name,
            customer=customer,
        )

    @classmethod
    def from_advisor(cls, advisor: Advisor) -> "ResolvedPersona":
        return cls(
            persona_type=PersonaType.ADVISOR,
            number=advisor.advisor_number.upper(),
            internal_id=advisor.id,
            display_name=advisor.full_name,
            advisor=advisor,
        )

    @property
    def user_id(self) -> str:
        return self.number

    @property
    def is_customer(self) -> bool:
        return self.persona_type == PersonaType.CUSTOMER

    def session_metadata(self) -> Dict[str, Any]:
        """Identity keys written once when a session is created"""

        if self.is_customer:
            return {
                CUSTOMER_PERSONA_KEY: self.number,
                "customer_id": self.internal_id,
                "customer_number": self.number,
                "user_type": PersonaType.CUSTOMER.value,
            }
        return {
            ADVISOR_PERSONA_KEY: self.number,
            "advisor_id": self.internal_id,
            "advisor_number": self.number,
            "user_type": PersonaType.ADVISOR.value,
        }
