"""Core components: settings, task model and the Vikunja API client."""

from .circuit_breaker import CircuitBreaker, CircuitState
from .config import Settings
from .models import Task
from .vikunja_client import RemoteTaskClient, VikunjaClient

__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "RemoteTaskClient",
    "Settings",
    "Task",
    "VikunjaClient",
]
