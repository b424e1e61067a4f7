"""Tests for the task filtering service facade."""

import asyncio

import httpx
import pytest

from vikunja_mcp.core.circuit_breaker import CircuitState
from vikunja_mcp.core.config import Settings
from vikunja_mcp.core.vikunja_client import VikunjaClient
from vikunja_mcp.filtering.hybrid import Provenance
from vikunja_mcp.filtering.service import FetchScope, TaskFilterService, build_filter_service
from vikunja_mcp.utils.errors import (
    LimitExceededError,
    MemoryLimitExceeded,
    NotFoundError,
    RemoteError,
    ValidationError,
)

from fakes import FakeTaskClient


def _settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


class TestFilterTasks:
    @pytest.mark.asyncio
    async def test_server_evaluable_filter(self, service: TaskFilterService, fake_client):
        result = await service.filter_tasks("S1", "priority >= 3 AND done = false")

        assert result.provenance == Provenance.SERVER
        assert fake_client.query_calls == [{"filter": "priority >= 3 && done = false"}]

    @pytest.mark.asyncio
    async def test_client_fallback(self, service: TaskFilterService):
        result = await service.filter_tasks("S1", "description CONTAINS 'wip'")

        assert result.provenance == Provenance.CLIENT
        assert [task.id for task in result.items] == [1]

    @pytest.mark.asyncio
    async def test_project_scope(self, service: TaskFilterService, fake_client):
        await service.filter_tasks("S1", "done = false", scope=FetchScope(project_id=3))

        assert fake_client.query_calls == [{"project_id": 3, "filter": "done = false"}]

    @pytest.mark.asyncio
    async def test_overlong_filter_fails_before_any_evaluation(
        self, service: TaskFilterService, fake_client
    ):
        with pytest.raises(LimitExceededError):
            await service.filter_tasks("S1", "priority = 1 && " + "x" * 5000)

        assert fake_client.call_count == 0

    @pytest.mark.asyncio
    async def test_invalid_filter_is_not_downgraded(self, service, fake_client):
        with pytest.raises(ValidationError):
            await service.filter_tasks("S1", "colour = red")

        assert fake_client.call_count == 0

    @pytest.mark.asyncio
    async def test_saved_filter_by_id(self, service: TaskFilterService):
        saved = await service.save_filter("S1", "wip", "description contains 'wip'")

        result = await service.filter_tasks("S1", filter_id=saved.id)

        assert [task.id for task in result.items] == [1]

    @pytest.mark.asyncio
    async def test_saved_filter_from_other_session(self, service: TaskFilterService, fake_client):
        saved = await service.save_filter("S1", "wip", "description contains 'wip'")

        with pytest.raises(NotFoundError):
            await service.filter_tasks("S2", filter_id=saved.id)
        assert fake_client.call_count == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "kwargs", [{}, {"raw_filter": "done = true", "filter_id": "abc"}]
    )
    async def test_exactly_one_source(self, service: TaskFilterService, kwargs: dict):
        with pytest.raises(ValueError, match="exactly one"):
            await service.filter_tasks("S1", **kwargs)

    @pytest.mark.asyncio
    async def test_filtering_touches_session(self, service: TaskFilterService, clock):
        saved = await service.save_filter("S1", "open", "done = false")
        clock.advance(50)
        await service.filter_tasks("S1", filter_id=saved.id)
        clock.advance(50)

        assert await service.store.evict_idle() == []


class TestValidateFilter:
    def test_server_compatible_summary(self, service: TaskFilterService):
        summary = service.validate_filter("priority>=3 and done=false")

        assert summary == {
            "filter": "priority >= 3 AND done = false",
            "conditions": 2,
            "depth": 1,
            "server_compatible": True,
            "remote_query": "priority >= 3 && done = false",
        }

    def test_incompatible_summary(self, service: TaskFilterService):
        summary = service.validate_filter("labels = bug")

        assert summary["server_compatible"] is False
        assert "labels" in summary["incompatible_reason"]

    def test_invalid_filter_raises(self, service: TaskFilterService):
        with pytest.raises(ValidationError):
            service.validate_filter("priority contains 3")


class TestSavedFilterCrud:
    @pytest.mark.asyncio
    async def test_crud_round_trip(self, service: TaskFilterService):
        saved = await service.save_filter("S1", "urgent", "priority >= 4")
        assert [f.id for f in await service.list_filters("S1")] == [saved.id]
        assert await service.list_filters("S2") == []

        updated = await service.update_filter("S1", saved.id, raw_filter="priority = 5")
        assert str(updated.expression) == "priority = 5"
        assert (await service.get_filter("S1", saved.id)).name == "urgent"

        await service.delete_filter("S1", saved.id)
        with pytest.raises(NotFoundError):
            await service.delete_filter("S1", saved.id)

    @pytest.mark.asyncio
    async def test_update_requires_a_change(self, service: TaskFilterService):
        saved = await service.save_filter("S1", "urgent", "priority >= 4")

        with pytest.raises(ValueError):
            await service.update_filter("S1", saved.id)


class TestBuildFilterService:
    @pytest.mark.asyncio
    async def test_wires_limits_from_settings(self, sample_tasks):
        client = FakeTaskClient(sample_tasks)
        service = build_filter_service(_settings(filter_max_conditions=2), client)

        with pytest.raises(LimitExceededError, match="condition count 3 exceeds limit 2"):
            await service.filter_tasks("S1", "id = 1 || id = 2 || id = 3")

    @pytest.mark.asyncio
    async def test_applies_server_operator_overrides(self, sample_tasks):
        client = FakeTaskClient(sample_tasks)
        service = build_filter_service(
            _settings(server_operator_overrides={"labels": ["="]}), client
        )

        result = await service.filter_tasks("S1", "labels = bug")

        assert result.provenance == Provenance.SERVER
        assert client.query_calls == [{"filter": "labels = bug"}]

    @pytest.mark.asyncio
    async def test_applies_memory_marks(self, sample_tasks):
        client = FakeTaskClient(sample_tasks)
        service = build_filter_service(
            _settings(memory_low_water_mb=0.0001, memory_high_water_mb=0.0002), client
        )

        with pytest.raises(MemoryLimitExceeded):
            await service.filter_tasks("S1", "labels = bug")

    @pytest.mark.asyncio
    async def test_applies_case_sensitivity(self, sample_tasks):
        client = FakeTaskClient(sample_tasks)
        service = build_filter_service(_settings(contains_case_sensitive=True), client)

        result = await service.filter_tasks("S1", "description contains 'wip'")

        assert result.items == []

    def test_store_settings(self, sample_tasks):
        service = build_filter_service(
            _settings(session_idle_timeout=5, max_filters_per_session=3),
            FakeTaskClient(sample_tasks),
        )

        assert service.store.idle_timeout == 5
        assert service.store.max_filters_per_session == 3
        assert service.hybrid.server.breaker.failure_threshold == 3

    def test_breaker_bounds_whole_listing(self, sample_tasks):
        settings = _settings(request_timeout=2.0, listing_timeout=45.0)

        service = build_filter_service(settings, FakeTaskClient(sample_tasks))

        assert service.hybrid.server.breaker.call_timeout == 45.0


class TestSlowPaginatedListing:
    """A fallback listing may take longer than any single page request."""

    PAGES = 5
    PAGE_DELAY = 0.03

    def _remote(self) -> VikunjaClient:
        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(self.PAGE_DELAY)
            page = int(request.url.params["page"])
            task = {"id": page, "title": f"Task {page}", "labels": [{"title": "bug"}]}
            return httpx.Response(
                200, json=[task], headers={"x-pagination-total-pages": str(self.PAGES)}
            )

        return VikunjaClient(
            "https://vikunja.example.com",
            "tk_abc123456789",
            timeout=0.1,
            page_size=1,
            transport=httpx.MockTransport(handler),
        )

    @pytest.mark.asyncio
    async def test_listing_longer_than_request_timeout_completes(self):
        remote = self._remote()
        service = build_filter_service(_settings(request_timeout=0.1, listing_timeout=5.0), remote)

        result = await service.filter_tasks("S1", "labels = bug")
        await remote.close()

        breaker = service.hybrid.server.breaker
        assert result.provenance == Provenance.CLIENT
        assert [task.id for task in result.items] == [1, 2, 3, 4, 5]
        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_listing_timeout_still_applies(self):
        remote = self._remote()
        service = build_filter_service(_settings(request_timeout=0.05, listing_timeout=0.05), remote)

        with pytest.raises(RemoteError) as exc_info:
            await service.filter_tasks("S1", "labels = bug")
        await remote.close()

        assert exc_info.value.kind == "timeout"
        assert service.hybrid.server.breaker.failure_count == 1
