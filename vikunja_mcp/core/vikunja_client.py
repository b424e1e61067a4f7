"""HTTP client for the Vikunja task API.

The filtering code only depends on the small :class:`RemoteTaskClient`
protocol; :class:`VikunjaClient` is the production implementation on top of
``httpx.AsyncClient``. Every failure is converted to a :class:`RemoteError`
whose ``kind`` tells timeouts, authentication failures, rejected queries and
generic transport/server failures apart. Messages never include the token.
"""

import logging
from typing import Any, Protocol, Self

import httpx
from pydantic import ValidationError as PydanticValidationError

from ..utils.errors import RemoteError
from ..utils.security import create_secure_connection_message, redact
from .models import Task

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"
DEFAULT_TIMEOUT = 10.0  # seconds
DEFAULT_PAGE_SIZE = 50
DEFAULT_MAX_PAGES = 100
TOTAL_PAGES_HEADER = "x-pagination-total-pages"


class RemoteTaskClient(Protocol):
    """Capability the filtering strategies need from the remote API."""

    async def query(self, params: dict[str, Any]) -> list[Task]:
        """Return tasks matching a remote ``filter`` query."""
        ...

    async def fetch_all(self, params: dict[str, Any] | None = None) -> list[Task]:
        """Return every task in scope, unfiltered."""
        ...


def scoped_filter(query: str | None, project_id: int | None) -> str | None:
    """Combine a remote filter query with an optional project scope."""
    if project_id is None:
        return query
    scope = f"project = {int(project_id)}"
    return f"{scope} && ({query})" if query else scope


def classify_http_error(error: httpx.HTTPError) -> RemoteError:
    """Map an httpx exception to a RemoteError without leaking credentials."""
    if isinstance(error, httpx.TimeoutException):
        return RemoteError("Vikunja API request timed out", kind="timeout")

    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        detail = ""
        try:
            body = error.response.json()
            if isinstance(body, dict) and body.get("message"):
                detail = f": {redact(str(body['message']))}"
        except ValueError:
            pass
        if status in (401, 403):
            return RemoteError(
                f"Vikunja API authentication failed (HTTP {status}). "
                "Check VIKUNJA_API_TOKEN.",
                kind="auth",
                status_code=status,
            )
        if status in (400, 422):
            return RemoteError(
                f"Vikunja API rejected the query (HTTP {status}){detail}",
                kind="rejected",
                status_code=status,
            )
        return RemoteError(
            f"Vikunja API error (HTTP {status}){detail}", kind="server", status_code=status
        )

    return RemoteError(f"Vikunja API request failed: {type(error).__name__}", kind="transport")


class VikunjaClient:
    """Async client for Vikunja's task listing endpoint.

    Usage:
        async with VikunjaClient("https://vikunja.example.com", token) as client:
            tasks = await client.query({"filter": "done = false"})
    """

    def __init__(
        self,
        base_url: str,
        api_token: str,
        timeout: float = DEFAULT_TIMEOUT,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_pages: int = DEFAULT_MAX_PAGES,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the client.

        Args:
            base_url: Vikunja instance URL, with or without the /api/v1 suffix
            api_token: API token sent as a bearer token
            timeout: Per-request timeout in seconds
            page_size: Tasks requested per page
            max_pages: Upper bound on pages fetched for one listing
            transport: Optional httpx transport (used by tests)
        """
        base = base_url.rstrip("/")
        if base.endswith(API_PREFIX):
            base = base[: -len(API_PREFIX)]
        self.base_url = base
        self.page_size = page_size
        self.max_pages = max_pages
        self._api_token = api_token
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        logger.info(create_secure_connection_message(self.base_url, api_token))

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=f"{self.base_url}{API_PREFIX}",
                headers={
                    "Authorization": f"Bearer {self._api_token}",
                    "Accept": "application/json",
                },
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def _list_tasks(self, filter_query: str | None) -> list[Task]:
        client = await self._get_client()
        tasks: list[Task] = []
        page = 1
        while page <= self.max_pages:
            params: dict[str, Any] = {"page": page, "per_page": self.page_size}
            if filter_query:
                params["filter"] = filter_query
            try:
                response = await client.get("/tasks/all", params=params)
                response.raise_for_status()
            except httpx.HTTPError as e:
                raise classify_http_error(e) from None

            try:
                payload = response.json() or []
            except ValueError:
                raise RemoteError("Invalid JSON from /tasks/all", kind="server") from None
            if not isinstance(payload, list):
                raise RemoteError("Unexpected response shape from /tasks/all", kind="server")
            try:
                tasks.extend(Task.model_validate(item) for item in payload)
            except PydanticValidationError as e:
                logger.debug(f"Rejected task payload on page {page}: {e.error_count()} error(s)")
                raise RemoteError("Malformed task in /tasks/all response", kind="server") from None

            try:
                total_pages = int(response.headers.get(TOTAL_PAGES_HEADER, page))
            except ValueError:
                raise RemoteError(f"Invalid {TOTAL_PAGES_HEADER} header", kind="server") from None
            if not payload or page >= total_pages:
                break
            page += 1
        else:
            logger.warning(f"Stopped listing tasks after {self.max_pages} pages")

        logger.debug(f"Fetched {len(tasks)} tasks (filter={filter_query!r})")
        return tasks

    async def query(self, params: dict[str, Any]) -> list[Task]:
        """Return tasks matching ``params["filter"]``, optionally project scoped."""
        return await self._list_tasks(scoped_filter(params.get("filter"), params.get("project_id")))

    async def fetch_all(self, params: dict[str, Any] | None = None) -> list[Task]:
        """Return every task in scope without a remote filter."""
        params = params or {}
        return await self._list_tasks(scoped_filter(None, params.get("project_id")))
