"""Task filtering service.

Ties the parser, the hybrid strategy and the session filter store together
behind one object that the MCP tools call. All wiring from settings lives in
:func:`build_filter_service`.
"""

import logging
from dataclasses import dataclass
from typing import Any

from ..core.circuit_breaker import CircuitBreaker
from ..core.config import Settings
from ..core.vikunja_client import RemoteTaskClient
from ..storage.filter_store import SavedFilter, SessionFilterStore
from .client_side import ClientSideStrategy
from .expression import FilterExpression, expression_to_string
from .hybrid import FilterResult, HybridFilteringStrategy
from .memory import MB, MemoryRiskEstimator
from .parser import FilterLimits, FilterParser
from .schema import default_task_schema
from .server_side import ServerSideStrategy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FetchScope:
    """Restricts which tasks are fetched from the remote API."""

    project_id: int | None = None

    def to_params(self) -> dict[str, Any]:
        if self.project_id is None:
            return {}
        return {"project_id": self.project_id}


class TaskFilterService:
    """Entry point for filtering tasks and managing saved filters."""

    def __init__(
        self,
        parser: FilterParser,
        hybrid: HybridFilteringStrategy,
        store: SessionFilterStore,
        remote: RemoteTaskClient,
    ):
        self.parser = parser
        self.hybrid = hybrid
        self.store = store
        self.remote = remote

    async def _resolve(
        self, session_id: str, raw_filter: str | None, filter_id: str | None
    ) -> FilterExpression:
        if (raw_filter is None) == (filter_id is None):
            raise ValueError("Provide exactly one of 'filter' or 'filter_id'")
        if filter_id is not None:
            saved = await self.store.get(session_id, filter_id)
            return saved.expression
        return self.parser.parse(raw_filter or "")

    async def filter_tasks(
        self,
        session_id: str,
        raw_filter: str | None = None,
        filter_id: str | None = None,
        scope: FetchScope | None = None,
        allow_high_memory: bool = False,
    ) -> FilterResult:
        """Filter tasks with a raw expression or a saved filter of this session.

        Raises:
            FilterError: If the raw expression is invalid
            NotFoundError: If ``filter_id`` is not a filter of this session
            RemoteError: If the remote API fails
            MemoryLimitExceeded: If a local fallback would use too much memory
        """
        expression = await self._resolve(session_id, raw_filter, filter_id)
        self.store.touch(session_id)
        scope = scope or FetchScope()
        logger.info(
            f"Filtering tasks for session {session_id}: {expression_to_string(expression)}"
        )
        return await self.hybrid.execute(
            expression,
            self.remote,
            scope=scope.to_params(),
            allow_high_memory=allow_high_memory,
        )

    def validate_filter(self, raw_filter: str) -> dict[str, Any]:
        """Parse a filter without running it and describe how it would execute."""
        expression = self.parser.parse(raw_filter)
        server = self.hybrid.server
        incompatible = server.check_compatibility(expression)
        summary: dict[str, Any] = {
            "filter": expression_to_string(expression),
            "conditions": expression.condition_count,
            "depth": expression.depth,
            "server_compatible": incompatible is None,
        }
        if incompatible is None:
            summary["remote_query"] = server.to_query(expression.root)
        else:
            summary["incompatible_reason"] = incompatible.reason
        return summary

    async def save_filter(self, session_id: str, name: str, raw_filter: str) -> SavedFilter:
        return await self.store.save(session_id, name, raw_filter)

    async def update_filter(
        self,
        session_id: str,
        filter_id: str,
        name: str | None = None,
        raw_filter: str | None = None,
    ) -> SavedFilter:
        if name is None and raw_filter is None:
            raise ValueError("Provide a new 'name' and/or 'filter' to update")
        return await self.store.update(session_id, filter_id, name=name, expression=raw_filter)

    async def list_filters(self, session_id: str) -> list[SavedFilter]:
        return await self.store.list(session_id)

    async def get_filter(self, session_id: str, filter_id: str) -> SavedFilter:
        return await self.store.get(session_id, filter_id)

    async def delete_filter(self, session_id: str, filter_id: str) -> None:
        await self.store.delete(session_id, filter_id)


def build_filter_service(settings: Settings, remote: RemoteTaskClient) -> TaskFilterService:
    """Create a fully wired TaskFilterService from settings."""
    schema = default_task_schema()
    if settings.server_operator_overrides:
        schema = schema.with_server_operators(settings.server_operator_overrides)
    schema.max_server_depth = settings.server_max_depth

    parser = FilterParser(
        schema,
        FilterLimits(
            max_length=settings.filter_max_length,
            max_depth=settings.filter_max_depth,
            max_conditions=settings.filter_max_conditions,
        ),
    )
    estimator = MemoryRiskEstimator(
        sample_size=settings.memory_sample_size,
        margin=settings.memory_margin,
        low_water_bytes=int(settings.memory_low_water_mb * MB),
        high_water_bytes=int(settings.memory_high_water_mb * MB),
    )
    breaker = CircuitBreaker(
        failure_threshold=settings.circuit_failure_threshold,
        reset_timeout=settings.circuit_reset_timeout,
        call_timeout=settings.listing_timeout,
    )
    hybrid = HybridFilteringStrategy(
        ServerSideStrategy(schema, breaker),
        ClientSideStrategy(
            schema, estimator, contains_case_sensitive=settings.contains_case_sensitive
        ),
    )
    store = SessionFilterStore(
        parser,
        idle_timeout=settings.session_idle_timeout,
        sweep_interval=settings.session_sweep_interval,
        max_filters_per_session=settings.max_filters_per_session,
    )
    return TaskFilterService(parser, hybrid, store, remote)
