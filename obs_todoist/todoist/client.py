"""
HTTP client for the Todoist task service.

Implements the RemoteTaskService operations on top of the REST v2 API and
uses the Sync v9 item endpoint to translate legacy numeric ids.
"""

import logging
import time
import uuid
from typing import Any, Callable, Dict, List, Optional

import requests

from ..core.exceptions import (
    AuthorizationError,
    IdTranslationError,
    RateLimitError,
    RemoteNotFoundError,
    RemoteServiceError,
)
from ..core.interfaces import RemoteTaskService
from ..core.models import RemoteTask


REST_API_URL = "https://api.todoist.com/rest/v2"
SYNC_API_URL = "https://api.todoist.com/sync/v9"

DEFAULT_TIMEOUT = 30
DEFAULT_MAX_RETRIES = 3
# Used when a 429 response carries no Retry-After header
DEFAULT_RETRY_AFTER = 2.0
MAX_RETRY_AFTER = 60.0


class TodoistClient(RemoteTaskService):
    """Todoist REST client with in-call retries for rate limits and 5xx."""

    def __init__(self, api_token: str, logger: Optional[logging.Logger] = None,
                 timeout: float = DEFAULT_TIMEOUT, max_retries: int = DEFAULT_MAX_RETRIES,
                 rest_url: str = REST_API_URL, sync_url: str = SYNC_API_URL,
                 sleep: Callable[[float], None] = time.sleep):
        if not api_token:
            raise AuthorizationError("A Todoist API token is required")

        self.api_token = api_token
        self.logger = logger or logging.getLogger(__name__)
        self.timeout = timeout
        self.max_retries = max(0, int(max_retries))
        self.rest_url = rest_url.rstrip("/")
        self.sync_url = sync_url.rstrip("/")
        self._sleep = sleep
        self.api_calls = 0

    def reset_call_count(self) -> int:
        """Return the number of calls made so far and start counting again."""
        count = self.api_calls
        self.api_calls = 0
        return count

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_token}",
            "Accept": "application/json",
        }

    @staticmethod
    def _retry_after(response: requests.Response) -> float:
        value = response.headers.get("Retry-After")
        try:
            delay = float(value) if value is not None else DEFAULT_RETRY_AFTER
        except ValueError:
            delay = DEFAULT_RETRY_AFTER
        return min(max(delay, 0.0), MAX_RETRY_AFTER)

    def _request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        """
        Send one request, retrying 429 and 5xx responses in-call.

        Raises:
            RemoteNotFoundError: 404 or 403
            AuthorizationError: 401
            RateLimitError: 429 after all retries
            RemoteServiceError: network errors and any other failure status
        """
        headers = self._headers()
        headers.update(kwargs.pop("headers", {}))

        attempt = 0
        while True:
            attempt += 1
            self.api_calls += 1
            try:
                response = requests.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
            except requests.exceptions.RequestException as exc:
                raise RemoteServiceError(f"Network error calling {url}: {exc}") from exc

            status = response.status_code
            if status in (403, 404):
                raise RemoteNotFoundError(f"Not found: {url}", status_code=status)
            if status == 401:
                raise AuthorizationError("Todoist rejected the API token", status_code=status)

            if status == 429 or status >= 500:
                if attempt <= self.max_retries:
                    delay = self._retry_after(response) if status == 429 else float(2 ** (attempt - 1))
                    self.logger.warning(
                        f"{method} {url} returned {status}; retrying in {delay:.1f}s "
                        f"(attempt {attempt}/{self.max_retries})"
                    )
                    self._sleep(delay)
                    continue
                if status == 429:
                    raise RateLimitError(f"Rate limited by Todoist: {url}", status_code=status)

            try:
                response.raise_for_status()
            except requests.exceptions.HTTPError as exc:
                raise RemoteServiceError(
                    f"HTTP {status} from {url}: {response.text[:200]}", status_code=status
                ) from exc
            return response

    @staticmethod
    def _json(response: requests.Response) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise RemoteServiceError(f"Invalid JSON from {response.url}") from exc

    def get_task(self, task_id: str) -> RemoteTask:
        response = self._request("GET", f"{self.rest_url}/tasks/{task_id}")
        return RemoteTask.from_api(self._json(response))

    def get_tasks_bulk(self) -> List[RemoteTask]:
        response = self._request("GET", f"{self.rest_url}/tasks")
        data = self._json(response)
        return [RemoteTask.from_api(item) for item in data or []]

    def close_task(self, task_id: str) -> None:
        self._request("POST", f"{self.rest_url}/tasks/{task_id}/close")
        self.logger.debug(f"Closed Todoist task {task_id}")

    def create_task(self, fields: Dict[str, Any]) -> RemoteTask:
        if not fields.get("content"):
            raise ValueError("Task content is required")

        response = self._request(
            "POST",
            f"{self.rest_url}/tasks",
            json=fields,
            headers={"X-Request-Id": uuid.uuid4().hex},
        )
        task = RemoteTask.from_api(self._json(response))
        self.logger.info(f"Created Todoist task {task.id}")
        return task

    def translate_id(self, legacy_id: str) -> str:
        try:
            response = self._request(
                "GET", f"{self.sync_url}/items/get", params={"item_id": legacy_id}
            )
            data = self._json(response)
        except RemoteServiceError as exc:
            raise IdTranslationError(f"Cannot translate id {legacy_id}: {exc}") from exc

        canonical = (data.get("item") or {}).get("v2_id") if isinstance(data, dict) else None
        if not canonical:
            raise IdTranslationError(f"No canonical id returned for {legacy_id}")
        return str(canonical)
