"""Pytest configuration and fixtures."""

import os

import pytest

from compass_agent.application.container import build_driver
from compass_agent.domain.models.persona import Advisor, Customer, ResolvedPersona
from compass_agent.infrastructure.config.settings import Settings
from compass_agent.infrastructure.persistence.demo_data import ADVISORS, CUSTOMERS, build_demo_crm, build_demo_knowledge
from compass_agent.infrastructure.persistence.memory_store import InMemorySessionStore
from tests.fakes.fake_providers import FakeCompletionProvider, FakeGraphSearch


@pytest.fixture(scope="session", autouse=True)
def setup_test_env():
    """Set up test environment variables."""
    os.environ["ENVIRONMENT"] = "test"
    os.environ.pop("DATABASE_URL", None)
    os.environ.pop("NEO4J_URI", None)
    os.environ.pop("LLM_API_KEY", None)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        ENVIRONMENT="test",
        GRAPH_SEARCH_TIMEOUT_SECONDS=0.2,
        TOOL_TIMEOUT_SECONDS=2.0,
        RATE_LIMIT_REQUESTS=100,
    )


@pytest.fixture
def crm():
    return build_demo_crm()


@pytest.fixture
def sessions():
    return InMemorySessionStore()


@pytest.fixture
def knowledge():
    return build_demo_knowledge()


@pytest.fixture
def graph():
    return FakeGraphSearch()


@pytest.fixture
def completion():
    return FakeCompletionProvider()


@pytest.fixture
def driver(settings, sessions, crm, knowledge, graph, completion):
    return build_driver(settings, sessions, crm, knowledge, graph, completion)


@pytest.fixture
def maria() -> ResolvedPersona:
    return ResolvedPersona.from_customer(Customer.model_validate(CUSTOMERS[0]))


@pytest.fixture
def thandi() -> ResolvedPersona:
    return ResolvedPersona.from_advisor(Advisor.model_validate(ADVISORS[0]))
