"""Session-scoped storage for saved filters.

Saved filters belong to exactly one session and are never visible from
another. Each session entry owns its own ``asyncio.Lock``; every
read-modify-write on a session runs under that lock, so operations on one
session are serialized while different sessions proceed independently.

Sessions are created lazily on first save and evicted after a configurable
idle period by a background sweep. Eviction removes the whole entry under the
session's lock. An operation that was waiting on the lock of a session that
got evicted in the meantime sees the ``evicted`` flag: saves retry against a
fresh entry, lookups report NotFoundError.
"""

import asyncio
import logging
import re
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from ..filtering.expression import FilterExpression, expression_to_string
from ..filtering.parser import FilterParser
from ..utils.errors import ConflictError, NotFoundError

logger = logging.getLogger(__name__)

DEFAULT_IDLE_TIMEOUT = 1800.0  # 30 minutes
DEFAULT_SWEEP_INTERVAL = 60.0
DEFAULT_MAX_FILTERS_PER_SESSION = 100

MAX_SESSION_ID_LENGTH = 128
MAX_FILTER_NAME_LENGTH = 100
SESSION_ID_PATTERN = re.compile(r"^[A-Za-z0-9_.:-]+$")
FILTER_NAME_PATTERN = re.compile(r"^[\w][\w .-]*$")


def validate_session_id(session_id: str) -> str:
    """Validate a session identifier supplied by the dispatch layer.

    Raises:
        ValueError: If the session id is empty, too long or has odd characters
    """
    if not session_id:
        raise ValueError("session_id cannot be empty")
    if len(session_id) > MAX_SESSION_ID_LENGTH:
        raise ValueError(f"session_id cannot exceed {MAX_SESSION_ID_LENGTH} characters")
    if not SESSION_ID_PATTERN.match(session_id):
        raise ValueError(
            "session_id must contain only alphanumeric characters, '_', '-', '.' and ':'"
        )
    return session_id


def validate_filter_name(name: str) -> str:
    """Validate and normalize a saved filter name.

    Raises:
        ValueError: If the name is empty, too long or has invalid characters
    """
    name = name.strip() if name else ""
    if not name:
        raise ValueError("Filter name cannot be empty")
    if len(name) > MAX_FILTER_NAME_LENGTH:
        raise ValueError(f"Filter name cannot exceed {MAX_FILTER_NAME_LENGTH} characters")
    if not FILTER_NAME_PATTERN.match(name):
        raise ValueError(
            "Filter name must start with a letter, digit or underscore and contain only "
            "letters, digits, spaces, '_', '-' and '.'"
        )
    return name


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class SavedFilter:
    """A named filter owned by one session."""

    id: str
    session_id: str
    name: str
    expression: FilterExpression
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "name": self.name,
            "filter": expression_to_string(self.expression),
            "conditions": self.expression.condition_count,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


class _SessionState:
    """Per-session filters, lock and last access time."""

    __slots__ = ("session_id", "lock", "filters", "last_access", "evicted")

    def __init__(self, session_id: str, now: float) -> None:
        self.session_id = session_id
        self.lock = asyncio.Lock()
        self.filters: dict[str, SavedFilter] = {}
        self.last_access = now
        self.evicted = False


class SessionFilterStore:
    """In-memory, session-isolated store of saved filters."""

    def __init__(
        self,
        parser: FilterParser,
        idle_timeout: float = DEFAULT_IDLE_TIMEOUT,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL,
        max_filters_per_session: int = DEFAULT_MAX_FILTERS_PER_SESSION,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.parser = parser
        self.idle_timeout = idle_timeout
        self.sweep_interval = sweep_interval
        self.max_filters_per_session = max_filters_per_session
        self._clock = clock
        self._sessions: dict[str, _SessionState] = {}
        self._sweep_task: asyncio.Task | None = None

    # Session bookkeeping

    def _existing(self, session_id: str) -> _SessionState | None:
        return self._sessions.get(validate_session_id(session_id))

    def _get_or_create(self, session_id: str) -> _SessionState:
        session_id = validate_session_id(session_id)
        state = self._sessions.get(session_id)
        if state is None:
            state = _SessionState(session_id, self._clock())
            self._sessions[session_id] = state
            logger.info(f"Created filter session {session_id}")
        return state

    def _coerce_expression(self, expression: FilterExpression | str) -> FilterExpression:
        if isinstance(expression, FilterExpression):
            return expression
        return self.parser.parse(expression)

    def _lookup(self, state: _SessionState | None, session_id: str, filter_id: str) -> SavedFilter:
        if state is None or state.evicted or filter_id not in state.filters:
            raise NotFoundError(f"Saved filter '{filter_id}' not found in session {session_id}")
        return state.filters[filter_id]

    def _name_taken(self, state: _SessionState, name: str, exclude_id: str | None = None) -> bool:
        folded = name.casefold()
        return any(
            f.name.casefold() == folded and f.id != exclude_id for f in state.filters.values()
        )

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    def touch(self, session_id: str) -> bool:
        """Mark a session as active. Returns True if the session exists."""
        state = self._existing(session_id)
        if state is None:
            return False
        state.last_access = self._clock()
        return True

    # CRUD

    async def save(
        self, session_id: str, name: str, expression: FilterExpression | str
    ) -> SavedFilter:
        """Save a new named filter in the session.

        Raises:
            ConflictError: If the session already has a filter with this name
            ValueError: If the name or session id is invalid, or the session
                is full
            FilterError: If ``expression`` is a string that fails to parse
        """
        name = validate_filter_name(name)
        parsed = self._coerce_expression(expression)

        while True:
            state = self._get_or_create(session_id)
            async with state.lock:
                if state.evicted:
                    continue
                if self._name_taken(state, name):
                    raise ConflictError(f"A filter named '{name}' already exists in this session")
                if len(state.filters) >= self.max_filters_per_session:
                    raise ValueError(
                        f"Session already has {len(state.filters)} saved filters "
                        f"(limit {self.max_filters_per_session})"
                    )
                now = _utcnow()
                saved = SavedFilter(
                    id=uuid.uuid4().hex[:12],
                    session_id=state.session_id,
                    name=name,
                    expression=parsed,
                    created_at=now,
                    updated_at=now,
                )
                state.filters[saved.id] = saved
                state.last_access = self._clock()
                logger.info(f"Saved filter '{name}' ({saved.id}) in session {state.session_id}")
                return saved

    async def update(
        self,
        session_id: str,
        filter_id: str,
        name: str | None = None,
        expression: FilterExpression | str | None = None,
    ) -> SavedFilter:
        """Rename a saved filter and/or replace its expression.

        Raises:
            NotFoundError: If the filter does not exist in this session
            ConflictError: If the new name is taken by another filter
        """
        new_name = validate_filter_name(name) if name is not None else None
        parsed = self._coerce_expression(expression) if expression is not None else None

        state = self._existing(session_id)
        if state is None:
            raise NotFoundError(f"Saved filter '{filter_id}' not found in session {session_id}")
        async with state.lock:
            saved = self._lookup(state, session_id, filter_id)
            if new_name is not None and self._name_taken(state, new_name, exclude_id=filter_id):
                raise ConflictError(f"A filter named '{new_name}' already exists in this session")
            if new_name is not None:
                saved.name = new_name
            if parsed is not None:
                saved.expression = parsed
            saved.updated_at = _utcnow()
            state.last_access = self._clock()
            logger.info(f"Updated filter {filter_id} in session {session_id}")
            return saved

    async def list(self, session_id: str) -> list[SavedFilter]:
        """List the session's saved filters, oldest first."""
        state = self._existing(session_id)
        if state is None:
            return []
        async with state.lock:
            if state.evicted:
                return []
            state.last_access = self._clock()
            return sorted(state.filters.values(), key=lambda f: f.created_at)

    async def get(self, session_id: str, filter_id: str) -> SavedFilter:
        """Get a saved filter by id.

        Raises:
            NotFoundError: If the id is unknown or belongs to another session
        """
        state = self._existing(session_id)
        if state is None:
            raise NotFoundError(f"Saved filter '{filter_id}' not found in session {session_id}")
        async with state.lock:
            saved = self._lookup(state, session_id, filter_id)
            state.last_access = self._clock()
            return saved

    async def delete(self, session_id: str, filter_id: str) -> None:
        """Delete a saved filter.

        Raises:
            NotFoundError: If the id is unknown, already deleted or foreign
        """
        state = self._existing(session_id)
        if state is None:
            raise NotFoundError(f"Saved filter '{filter_id}' not found in session {session_id}")
        async with state.lock:
            self._lookup(state, session_id, filter_id)
            del state.filters[filter_id]
            state.last_access = self._clock()
            logger.info(f"Deleted filter {filter_id} from session {session_id}")

    # Eviction

    async def _evict(self, state: _SessionState, only_if_idle: bool) -> bool:
        async with state.lock:
            if state.evicted:
                return False
            if only_if_idle and self._clock() - state.last_access <= self.idle_timeout:
                return False
            state.evicted = True
            state.filters.clear()
            if self._sessions.get(state.session_id) is state:
                del self._sessions[state.session_id]
            return True

    async def drop_session(self, session_id: str) -> bool:
        """Destroy a session and all its filters. Returns True if it existed."""
        state = self._existing(session_id)
        if state is None:
            return False
        dropped = await self._evict(state, only_if_idle=False)
        if dropped:
            logger.info(f"Dropped filter session {session_id}")
        return dropped

    async def evict_idle(self) -> "list[str]":
        """Evict every session idle for longer than ``idle_timeout``."""
        now = self._clock()
        candidates = [
            state
            for state in list(self._sessions.values())
            if now - state.last_access > self.idle_timeout
        ]
        evicted = []
        for state in candidates:
            if await self._evict(state, only_if_idle=True):
                logger.info(f"Evicting idle filter session {state.session_id}")
                evicted.append(state.session_id)
        return evicted

    def start_sweeper(self) -> None:
        """Start background task that evicts idle sessions."""
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def stop_sweeper(self) -> None:
        if self._sweep_task is None:
            return
        self._sweep_task.cancel()
        try:
            await self._sweep_task
        except asyncio.CancelledError:
            pass
        self._sweep_task = None

    async def _sweep_loop(self) -> None:
        """Periodically remove sessions that exceed the idle timeout."""
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                await self.evict_idle()
            except Exception:
                logger.exception("Idle session sweep failed")
