"""
Azure DevOps API Client - HTTP client for the Work Item Tracking REST API.

Implements RemoteTrackerPort directly: the sync engines only need work item
reads, WIQL queries, state patches and creation.

REST API documentation:
https://learn.microsoft.com/en-us/rest/api/azure/devops/wit/

The PAT is kept in memory only and never logged.
"""

from __future__ import annotations

import base64
import logging
import random
import time
from typing import Any
from urllib.parse import quote

import requests
from requests.adapters import HTTPAdapter

from boardsync.core.domain.entities import RemoteWorkItem
from boardsync.core.exceptions import (
    AuthenticationError,
    AuthorizationError,
    ConfigError,
    RateLimitError,
    RemoteNotFoundError,
    RemoteServerError,
    TrackerError,
    ValidationError,
)
from boardsync.core.ports.remote_tracker import PatchOperation, RemoteTrackerPort


RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

# Rejected before the server acted on the request
REJECTED_STATUS_CODES = frozenset({429})


def get_retry_after(response: requests.Response) -> float | None:
    """Seconds from a ``Retry-After`` header, if present and numeric."""
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def calculate_delay(
    attempt: int,
    initial_delay: float,
    max_delay: float,
    backoff_factor: float,
    jitter: float,
    retry_after: float | None = None,
) -> float:
    """Exponential backoff with jitter; a server-provided Retry-After wins."""
    if retry_after is not None:
        return min(retry_after, max_delay)
    delay = min(initial_delay * (backoff_factor**attempt), max_delay)
    return delay + delay * jitter * random.random()


class AzureDevOpsClient(RemoteTrackerPort):
    """
    Azure DevOps work item client.

    Features:
    - PAT (Basic) authentication
    - Automatic retry with exponential backoff for 429/5xx and connection errors
    - Typed errors for 400/401/403/404/429/5xx
    - Connection pooling
    """

    API_VERSION = "7.1"
    DEFAULT_BASE_URL = "https://dev.azure.com"

    # Default retry configuration
    DEFAULT_MAX_RETRIES = 3
    DEFAULT_INITIAL_DELAY = 1.0
    DEFAULT_MAX_DELAY = 60.0
    DEFAULT_BACKOFF_FACTOR = 2.0
    DEFAULT_JITTER = 0.1

    # Connection pool settings
    DEFAULT_POOL_CONNECTIONS = 10
    DEFAULT_POOL_MAXSIZE = 10
    DEFAULT_TIMEOUT = 30.0

    JSON_PATCH = "application/json-patch+json"

    def __init__(
        self,
        organization: str,
        project: str,
        pat: str,
        base_url: str = DEFAULT_BASE_URL,
        batch_size: int = RemoteTrackerPort.MAX_BATCH_SIZE,
        max_retries: int = DEFAULT_MAX_RETRIES,
        initial_delay: float = DEFAULT_INITIAL_DELAY,
        max_delay: float = DEFAULT_MAX_DELAY,
        backoff_factor: float = DEFAULT_BACKOFF_FACTOR,
        jitter: float = DEFAULT_JITTER,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        """
        Initialize the Azure DevOps client.

        Args:
            organization: ADO organization name
            project: ADO project name
            pat: Personal Access Token
            base_url: Service root (override for on-premises servers)
            batch_size: Ids per workitemsbatch request (capped at 200)
            max_retries: Maximum retry attempts for transient failures
            initial_delay: Initial retry delay in seconds
            max_delay: Maximum retry delay in seconds
            backoff_factor: Multiplier for exponential backoff
            jitter: Random jitter factor (0.1 = 10%)
            timeout: Request timeout in seconds
        """
        if not pat or not pat.strip():
            raise ConfigError("PAT is required and cannot be empty")

        self.organization = organization
        self.project = project
        self.base_url = base_url.rstrip("/")
        self.api_url = f"{self.base_url}/{quote(organization)}/{quote(project)}/_apis"
        self.batch_size = max(1, min(batch_size, self.MAX_BATCH_SIZE))
        self.timeout = timeout
        self.logger = logging.getLogger("AzureDevOpsClient")

        # Retry configuration
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.backoff_factor = backoff_factor
        self.jitter = jitter

        # ADO expects Basic auth with an empty user name
        token = base64.b64encode(f":{pat}".encode()).decode("ascii")

        self._session = requests.Session()
        self._session.headers.update(
            {
                "Accept": "application/json",
                "Authorization": f"Basic {token}",
            }
        )

        adapter = HTTPAdapter(
            pool_connections=self.DEFAULT_POOL_CONNECTIONS,
            pool_maxsize=self.DEFAULT_POOL_MAXSIZE,
        )
        self._session.mount("https://", adapter)
        self._session.mount("http://", adapter)

    # -------------------------------------------------------------------------
    # Core Request Methods
    # -------------------------------------------------------------------------

    def request(
        self,
        method: str,
        endpoint: str,
        idempotent: bool = True,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """
        Make an authenticated request with retry.

        Non-idempotent requests are only re-sent when the server cannot have
        acted on them: a 429 rejection or a connect timeout.

        Args:
            method: HTTP method
            endpoint: Path under the project ``_apis`` root, or an absolute URL
            idempotent: Whether the request may be repeated after a 5xx or a
                dropped connection
            **kwargs: Additional arguments for requests

        Returns:
            Parsed JSON object (empty dict for empty bodies)

        Raises:
            TrackerError: On API errors
        """
        url = endpoint if endpoint.startswith("http") else f"{self.api_url}{endpoint}"
        params = dict(kwargs.pop("params", None) or {})
        params.setdefault("api-version", self.API_VERSION)
        kwargs.setdefault("timeout", self.timeout)

        retry_statuses = RETRYABLE_STATUS_CODES if idempotent else REJECTED_STATUS_CODES
        last_exception: Exception | None = None

        for attempt in range(self.max_retries + 1):
            try:
                response = self._session.request(method, url, params=params, **kwargs)

                if response.status_code in retry_statuses:
                    retry_after = get_retry_after(response)
                    if attempt < self.max_retries:
                        delay = calculate_delay(
                            attempt,
                            initial_delay=self.initial_delay,
                            max_delay=self.max_delay,
                            backoff_factor=self.backoff_factor,
                            jitter=self.jitter,
                            retry_after=retry_after,
                        )
                        self.logger.warning(
                            f"Retryable error {response.status_code} on {method} {endpoint}, "
                            f"attempt {attempt + 1}/{self.max_retries + 1}, "
                            f"retrying in {delay:.2f}s"
                        )
                        time.sleep(delay)
                        continue

                return self._handle_response(response, endpoint)

            except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
                last_exception = e
                unsent = isinstance(e, requests.exceptions.ConnectTimeout)
                if attempt < self.max_retries and (idempotent or unsent):
                    delay = calculate_delay(
                        attempt,
                        initial_delay=self.initial_delay,
                        max_delay=self.max_delay,
                        backoff_factor=self.backoff_factor,
                        jitter=self.jitter,
                    )
                    self.logger.warning(
                        f"{e.__class__.__name__} on {method} {endpoint}, retrying in {delay:.2f}s"
                    )
                    time.sleep(delay)
                    continue
                raise RemoteServerError(
                    f"Request to Azure DevOps failed: {e.__class__.__name__}",
                    issue_key=endpoint,
                    cause=e,
                ) from e

        raise RemoteServerError(
            f"Request failed after {self.max_retries + 1} attempts",
            issue_key=endpoint,
            cause=last_exception,
        )

    # -------------------------------------------------------------------------
    # Response Handling
    # -------------------------------------------------------------------------

    def _handle_response(self, response: requests.Response, endpoint: str) -> dict[str, Any]:
        """Handle API response and convert errors to typed exceptions."""
        if response.ok:
            if not response.text:
                return {}
            try:
                data = response.json()
            except ValueError:
                return {}
            return data if isinstance(data, dict) else {}

        status = response.status_code
        self.logger.error(f"ADO API error {status} for {endpoint}")

        if status == 400:
            details = response.text[:500] if response.text else None
            raise ValidationError(
                self._extract_error_message(response) or "Invalid request",
                details=details,
                issue_key=endpoint,
            )

        if status == 401:
            raise AuthenticationError(
                "Authentication failed. Check your PAT validity and permissions.",
                issue_key=endpoint,
            )

        if status == 403:
            raise AuthorizationError(
                "Access denied. Your PAT may lack required permissions.", issue_key=endpoint
            )

        if status == 404:
            raise RemoteNotFoundError(f"Not found: {endpoint}", issue_key=endpoint)

        if status == 429:
            raise RateLimitError(
                f"Azure DevOps rate limit exceeded for {endpoint}",
                retry_after=get_retry_after(response),
                issue_key=endpoint,
            )

        raise RemoteServerError(
            f"Azure DevOps API error {status}: {response.reason or ''}".strip(),
            status_code=status,
            issue_key=endpoint,
        )

    @staticmethod
    def _extract_error_message(response: requests.Response) -> str | None:
        try:
            body = response.json()
        except ValueError:
            return None
        if not isinstance(body, dict):
            return None
        for key in ("message", "Message"):
            if isinstance(body.get(key), str):
                return body[key]
        nested = body.get("value")
        if isinstance(nested, dict) and isinstance(nested.get("Message"), str):
            return nested["Message"]
        return None

    # -------------------------------------------------------------------------
    # Work Items API
    # -------------------------------------------------------------------------

    def get_work_item(self, work_item_id: int, expand: str | None = None) -> RemoteWorkItem:
        params = {"$expand": expand} if expand else None
        try:
            data = self.request("GET", f"/wit/workitems/{work_item_id}", params=params)
        except RemoteNotFoundError as e:
            raise RemoteNotFoundError(
                f"Work item {work_item_id} not found", issue_key=work_item_id, cause=e
            ) from e
        return RemoteWorkItem.from_api(data)

    def get_work_items(self, work_item_ids: list[int]) -> list[RemoteWorkItem]:
        if not work_item_ids:
            return []
        if len(work_item_ids) > self.MAX_BATCH_SIZE:
            raise ValidationError(
                f"Cannot fetch more than {self.MAX_BATCH_SIZE} work items at once"
            )

        data = self.request("POST", "/wit/workitemsbatch", json={"ids": list(work_item_ids)})
        return [RemoteWorkItem.from_api(item) for item in data.get("value") or []]

    def query_by_filter(
        self,
        work_item_types: list[str],
        area_path: str | None = None,
        iteration_path: str | None = None,
    ) -> list[RemoteWorkItem]:
        wiql = self.build_wiql(work_item_types, area_path, iteration_path)
        return self.query_work_items(wiql)

    def build_wiql(
        self,
        work_item_types: list[str],
        area_path: str | None = None,
        iteration_path: str | None = None,
    ) -> str:
        """WIQL selecting non-removed items of the given types, newest change first."""
        types = ", ".join(f"'{_wiql_literal(t)}'" for t in work_item_types)
        clauses = [
            f"[System.TeamProject] = '{_wiql_literal(self.project)}'",
            f"[System.WorkItemType] IN ({types})",
            "[System.State] <> 'Removed'",
        ]
        if area_path:
            clauses.append(f"[System.AreaPath] UNDER '{_wiql_literal(area_path)}'")
        if iteration_path:
            clauses.append(f"[System.IterationPath] UNDER '{_wiql_literal(iteration_path)}'")

        return (
            "SELECT [System.Id] FROM WorkItems WHERE "
            + " AND ".join(clauses)
            + " ORDER BY [System.ChangedDate] DESC"
        )

    def query_work_items(self, wiql: str) -> list[RemoteWorkItem]:
        """Run a WIQL query and fetch the full items in batches."""
        data = self.request("POST", "/wit/wiql", json={"query": wiql})
        ids = [ref["id"] for ref in data.get("workItems") or []]
        if not ids:
            return []

        items: list[RemoteWorkItem] = []
        for start in range(0, len(ids), self.batch_size):
            items.extend(self.get_work_items(ids[start : start + self.batch_size]))
        self.logger.debug(f"WIQL returned {len(ids)} ids, fetched {len(items)} items")
        return items

    def update_work_item(
        self, work_item_id: int, operations: list[PatchOperation]
    ) -> RemoteWorkItem:
        """Apply JSON Patch operations to a work item."""
        if not operations:
            raise ValidationError("At least one operation is required")
        try:
            data = self.request(
                "PATCH",
                f"/wit/workitems/{work_item_id}",
                json=[op.to_dict() for op in operations],
                headers={"Content-Type": self.JSON_PATCH},
            )
        except RemoteNotFoundError as e:
            raise RemoteNotFoundError(
                f"Work item {work_item_id} not found", issue_key=work_item_id, cause=e
            ) from e
        return RemoteWorkItem.from_api(data)

    def update_state(
        self, work_item_id: int, state: str, reason: str | None = None
    ) -> RemoteWorkItem:
        operations = [PatchOperation("add", PatchOperation.field_path("System.State"), state)]
        if reason:
            operations.append(
                PatchOperation("add", PatchOperation.field_path("System.Reason"), reason)
            )
        return self.update_work_item(work_item_id, operations)

    def create_item(self, work_item_type: str, fields: dict[str, Any]) -> RemoteWorkItem:
        operations = [
            PatchOperation("add", PatchOperation.field_path(name), value)
            for name, value in fields.items()
            if value is not None
        ]
        if not operations:
            raise ValidationError("At least one field is required to create a work item")

        data = self.request(
            "POST",
            f"/wit/workitems/${quote(work_item_type)}",
            idempotent=False,
            json=[op.to_dict() for op in operations],
            headers={"Content-Type": self.JSON_PATCH},
        )
        return RemoteWorkItem.from_api(data)

    # -------------------------------------------------------------------------
    # Connection
    # -------------------------------------------------------------------------

    def test_connection(self) -> bool:
        """Check credentials by reading the project. Never raises."""
        url = f"{self.base_url}/{quote(self.organization)}/_apis/projects/{quote(self.project)}"
        try:
            self.request("GET", url)
            return True
        except AuthenticationError:
            self.logger.error("Authentication failed - PAT may be invalid or expired")
        except RemoteNotFoundError:
            self.logger.error(
                f"Project '{self.project}' not found in organization '{self.organization}'"
            )
        except TrackerError as e:
            self.logger.error(f"Connection test failed: {e}")
        return False

    # -------------------------------------------------------------------------
    # Resource Cleanup
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close the client and release connection pool resources."""
        self._session.close()
        self.logger.debug("Closed HTTP session")

    def __enter__(self) -> AzureDevOpsClient:
        return self

    def __exit__(
        self,
        exc_type: type | None,
        exc_val: Exception | None,
        exc_tb: Any,
    ) -> None:
        self.close()


def _wiql_literal(value: str) -> str:
    return value.replace("'", "''")
