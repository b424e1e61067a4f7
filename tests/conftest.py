"""Pytest configuration and fixtures for vikunja-mcp tests."""

from datetime import UTC, datetime

import pytest

from vikunja_mcp.core.circuit_breaker import CircuitBreaker
from vikunja_mcp.core.models import Task
from vikunja_mcp.filtering.client_side import ClientSideStrategy
from vikunja_mcp.filtering.hybrid import HybridFilteringStrategy
from vikunja_mcp.filtering.memory import MemoryRiskEstimator
from vikunja_mcp.filtering.parser import FilterParser
from vikunja_mcp.filtering.schema import FieldSchema, default_task_schema
from vikunja_mcp.filtering.server_side import ServerSideStrategy
from vikunja_mcp.filtering.service import TaskFilterService
from vikunja_mcp.storage.filter_store import SessionFilterStore

from fakes import FIXED_NOW, FakeClock, FakeTaskClient


@pytest.fixture
def schema() -> FieldSchema:
    return default_task_schema()


@pytest.fixture
def parser(schema: FieldSchema) -> FilterParser:
    return FilterParser(schema)


@pytest.fixture
def sample_tasks() -> list[Task]:
    """A small, varied set of tasks."""
    return [
        Task(
            id=1,
            title="Write release notes",
            description="WIP draft for 1.2",
            done=False,
            priority=4,
            percent_done=0.5,
            due_date=datetime(2024, 3, 1, tzinfo=UTC),
            project_id=1,
            labels=["docs"],
            assignees=["alice"],
        ),
        Task(
            id=2,
            title="Fix login bug",
            description="Users cannot log in",
            done=False,
            priority=5,
            due_date=datetime(2024, 2, 1, tzinfo=UTC),
            project_id=2,
            labels=["bug", "urgent"],
            assignees=["bob"],
        ),
        Task(
            id=3,
            title="Plan sprint",
            description="",
            done=True,
            priority=2,
            project_id=1,
        ),
        Task(
            id=4,
            title="Refactor wip parser",
            description="cleanup",
            done=False,
            priority=1,
            due_date=datetime(2024, 2, 20, tzinfo=UTC),
            project_id=2,
            labels=["tech-debt"],
        ),
    ]


@pytest.fixture
def fake_client(sample_tasks: list[Task]) -> FakeTaskClient:
    return FakeTaskClient(sample_tasks)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def estimator() -> MemoryRiskEstimator:
    return MemoryRiskEstimator()


@pytest.fixture
def client_side(schema: FieldSchema, estimator: MemoryRiskEstimator) -> ClientSideStrategy:
    return ClientSideStrategy(schema, estimator, clock=lambda: FIXED_NOW)


@pytest.fixture
def breaker() -> CircuitBreaker:
    return CircuitBreaker(call_timeout=1.0)


@pytest.fixture
def server_side(schema: FieldSchema, breaker: CircuitBreaker) -> ServerSideStrategy:
    return ServerSideStrategy(schema, breaker)


@pytest.fixture
def hybrid(server_side: ServerSideStrategy, client_side: ClientSideStrategy) -> HybridFilteringStrategy:
    return HybridFilteringStrategy(server_side, client_side)


@pytest.fixture
def filter_store(parser: FilterParser, clock: FakeClock) -> SessionFilterStore:
    return SessionFilterStore(parser, idle_timeout=60.0, sweep_interval=0.01, clock=clock)


@pytest.fixture
def service(
    parser: FilterParser,
    hybrid: HybridFilteringStrategy,
    filter_store: SessionFilterStore,
    fake_client: FakeTaskClient,
) -> TaskFilterService:
    return TaskFilterService(parser, hybrid, filter_store, fake_client)
