"""Hybrid filtering: server first, client-side fallback.

The strategy always tries the remote API first and classifies the outcome:

- success: the remote result is returned as is (provenance ``server``)
- incompatible: the expression (or part of it) has no remote equivalent, so
  the candidates are fetched and filtered locally. If a conjunction can be
  split, the compatible part is still pushed to the server and only the rest
  is evaluated locally (``hybrid-merged``); otherwise the full scope is fetched
  unfiltered (``client``)
- remote failure: the RemoteError propagates. Falling back here would turn an
  outage or an expired token into an empty or wrong result set.

Every result carries a FilterRunStats with its candidate and match counts and
the time spent remotely and locally.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..core.models import Task
from ..core.vikunja_client import RemoteTaskClient
from ..utils.errors import MemoryLimitExceeded, RemoteError
from .client_side import ClientSideStrategy
from .expression import FilterExpression, group_to_string
from .memory import RiskTier
from .metrics import FilterMetrics, FilterRunStats, elapsed_ms
from .server_side import ServerSideStrategy

logger = logging.getLogger(__name__)


class Provenance(str, Enum):
    SERVER = "server"
    CLIENT = "client"
    HYBRID_MERGED = "hybrid-merged"


@dataclass
class FilterResult:
    """Matching tasks plus where they were filtered."""

    items: list[Task]
    provenance: Provenance
    warnings: list[str] = field(default_factory=list)
    remote_query: str | None = None
    stats: FilterRunStats | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tasks": [task.to_dict() for task in self.items],
            "count": len(self.items),
            "provenance": self.provenance.value,
            "warnings": self.warnings,
            "remote_query": self.remote_query,
            "stats": self.stats.to_dict() if self.stats else None,
        }


class HybridFilteringStrategy:
    """Orchestrates the server attempt and the client-side fallback.

    Each successful run is timed and recorded in ``metrics``; failed runs
    are counted by error kind.
    """

    def __init__(
        self,
        server: ServerSideStrategy,
        client_side: ClientSideStrategy,
        metrics: FilterMetrics | None = None,
    ):
        self.server = server
        self.client_side = client_side
        self.metrics = metrics or FilterMetrics()

    async def execute(
        self,
        expression: FilterExpression,
        remote: RemoteTaskClient,
        scope: dict[str, Any] | None = None,
        allow_high_memory: bool = False,
    ) -> FilterResult:
        """Filter tasks in ``scope`` with ``expression``.

        Raises:
            RemoteError: If the remote API fails (never masked by fallback)
            MemoryLimitExceeded: If the fallback candidate set is too large
        """
        start = time.perf_counter()
        try:
            result = await self._execute(expression, remote, scope or {}, allow_high_memory)
        except RemoteError as e:
            self.metrics.record_failure(e.kind)
            raise
        except MemoryLimitExceeded:
            self.metrics.record_failure("memory")
            raise

        stats = result.stats
        stats.total_time_ms = elapsed_ms(start)
        self.metrics.record(stats)
        logger.info(
            f"Filter run ({stats.provenance}): {stats.matched}/{stats.candidates} tasks in "
            f"{stats.total_time_ms:.1f}ms (remote {stats.remote_time_ms:.1f}ms, "
            f"local {stats.local_time_ms:.1f}ms)"
        )
        return result

    async def _execute(
        self,
        expression: FilterExpression,
        remote: RemoteTaskClient,
        scope: dict[str, Any],
        allow_high_memory: bool,
    ) -> FilterResult:
        start = time.perf_counter()
        outcome = await self.server.try_server(expression, remote, scope)
        remote_ms = elapsed_ms(start)

        if outcome.ok:
            items = outcome.items or []
            logger.info(f"Filter evaluated server-side: {len(items)} tasks")
            return FilterResult(
                items=items,
                provenance=Provenance.SERVER,
                remote_query=outcome.query,
                stats=FilterRunStats(
                    Provenance.SERVER.value,
                    candidates=len(items),
                    matched=len(items),
                    remote_time_ms=remote_ms,
                ),
            )

        if outcome.incompatible is None:
            raise RuntimeError("Server attempt returned neither tasks nor an incompatibility")
        warnings = [f"Evaluated locally because {outcome.incompatible.reason}"]
        return await self._client_fallback(
            expression, remote, scope, allow_high_memory, warnings, remote_ms
        )

    async def _client_fallback(
        self,
        expression: FilterExpression,
        remote: RemoteTaskClient,
        scope: dict[str, Any],
        allow_high_memory: bool,
        warnings: list[str],
        remote_ms: float = 0.0,
    ) -> FilterResult:
        server_part, local_part = self.server.split_compatible(expression)

        candidates: list[Task] | None = None
        remote_query = None
        provenance = Provenance.CLIENT
        local = expression.root

        start = time.perf_counter()
        if server_part is not None and local_part is not None:
            try:
                candidates, remote_query = await self.server.run_query(server_part, remote, scope)
                provenance = Provenance.HYBRID_MERGED
                local = local_part
            except RemoteError as e:
                if e.kind != "rejected":
                    raise
                logger.info(f"Remote API rejected partial query, fetching unfiltered: {e}")

        if candidates is None:
            candidates = await self.server.breaker.call(remote.fetch_all, scope)
        remote_ms += elapsed_ms(start)

        logger.info(
            f"Client-side fallback ({provenance.value}): evaluating "
            f"'{group_to_string(local)}' over {len(candidates)} tasks"
        )
        start = time.perf_counter()
        evaluation = self.client_side.evaluate(local, candidates, allow_high_memory=allow_high_memory)
        local_ms = elapsed_ms(start)

        if evaluation.estimate.risk_tier is RiskTier.MEDIUM:
            warnings.append(
                f"Large candidate set ({evaluation.estimate.estimated_mb:.1f}MB estimated); "
                "consider narrowing the filter"
            )
        elif evaluation.estimate.risk_tier is RiskTier.HIGH:
            warnings.append("High memory usage was explicitly allowed for this request")

        return FilterResult(
            items=evaluation.items,
            provenance=provenance,
            warnings=warnings,
            remote_query=remote_query,
            stats=FilterRunStats(
                provenance.value,
                candidates=len(candidates),
                matched=len(evaluation.items),
                remote_time_ms=remote_ms,
                local_time_ms=local_ms,
            ),
        )
