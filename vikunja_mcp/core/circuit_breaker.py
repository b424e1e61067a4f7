"""Circuit breaker around remote API calls.

State machine::

    CLOSED --(failure_threshold consecutive failures)--> OPEN
    OPEN   --(reset_timeout elapsed)-------------------> HALF_OPEN
    HALF_OPEN --(trial call succeeds)------------------> CLOSED
    HALF_OPEN --(trial call fails)---------------------> OPEN

While OPEN every call fails fast with CircuitOpenError without touching the
network. Each call is bounded by ``call_timeout``; a timeout is reported as
a RemoteError of kind ``timeout``.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any, TypeVar

from ..utils.errors import CircuitOpenError, RemoteError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_FAILURE_THRESHOLD = 3
DEFAULT_RESET_TIMEOUT = 30.0  # seconds
DEFAULT_CALL_TIMEOUT = 10.0  # seconds

# Failures that say something about the health of the remote side. Auth
# failures and rejected queries are answered promptly by a healthy server.
TRIPPING_KINDS = frozenset({"timeout", "transport", "server"})


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Fail-fast wrapper for an unreliable async dependency."""

    def __init__(
        self,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        reset_timeout: float = DEFAULT_RESET_TIMEOUT,
        call_timeout: float = DEFAULT_CALL_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
        name: str = "vikunja",
    ):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.call_timeout = call_timeout
        self.name = name
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._opened_at = 0.0
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitState:
        """Current state; an expired OPEN period reads as HALF_OPEN."""
        if self._state is CircuitState.OPEN and self._cooldown_remaining() <= 0:
            return CircuitState.HALF_OPEN
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failures

    def _cooldown_remaining(self) -> float:
        return self._opened_at + self.reset_timeout - self._clock()

    def _before_call(self) -> None:
        if self._state is CircuitState.OPEN:
            remaining = self._cooldown_remaining()
            if remaining > 0:
                raise CircuitOpenError(remaining)
            self._state = CircuitState.HALF_OPEN
            logger.info(f"Circuit {self.name} half-open: probing remote API")

        if self._state is CircuitState.HALF_OPEN:
            if self._trial_in_flight:
                raise CircuitOpenError(self.reset_timeout)
            self._trial_in_flight = True

    def _on_success(self) -> None:
        if self._state is not CircuitState.CLOSED:
            logger.info(f"Circuit {self.name} closed: remote API recovered")
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._trial_in_flight = False

    def _on_failure(self, error: RemoteError) -> None:
        was_trial = self._state is CircuitState.HALF_OPEN
        self._trial_in_flight = False
        if error.kind not in TRIPPING_KINDS:
            if was_trial:
                # The server answered, so it is reachable
                self._state = CircuitState.CLOSED
                self._failures = 0
            return

        self._failures += 1
        if was_trial or self._failures >= self.failure_threshold:
            self._state = CircuitState.OPEN
            self._opened_at = self._clock()
            logger.warning(
                f"Circuit {self.name} opened after {self._failures} failure(s); "
                f"cooling down for {self.reset_timeout:.0f}s"
            )

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Invoke ``func`` through the breaker.

        Raises:
            CircuitOpenError: If the circuit is open (no call is made)
            RemoteError: If the call fails or exceeds ``call_timeout``
        """
        self._before_call()
        try:
            result = await asyncio.wait_for(func(*args, **kwargs), timeout=self.call_timeout)
        except TimeoutError:
            error = RemoteError(
                f"Remote API call timed out after {self.call_timeout:.1f}s", kind="timeout"
            )
            self._on_failure(error)
            raise error from None
        except RemoteError as e:
            self._on_failure(e)
            raise
        except BaseException:
            self._trial_in_flight = False
            raise
        self._on_success()
        return result

    def reset(self) -> None:
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._trial_in_flight = False
