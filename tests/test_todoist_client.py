"""
Tests for the Todoist HTTP client (obs_todoist/todoist/client.py).

All HTTP traffic is mocked by patching requests.request.
"""

from unittest.mock import MagicMock, patch

import pytest
import requests

from obs_todoist.core.exceptions import (
    AuthorizationError,
    IdTranslationError,
    RateLimitError,
    RemoteNotFoundError,
    RemoteServiceError,
)
from obs_todoist.todoist.client import REST_API_URL, SYNC_API_URL, TodoistClient


def make_response(status=200, payload=None, headers=None):
    response = MagicMock(spec=requests.Response)
    response.status_code = status
    response.headers = headers or {}
    response.json.return_value = payload
    response.text = ""
    response.url = "https://api.todoist.com"
    if status >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(f"{status} Error")
    else:
        response.raise_for_status.return_value = None
    return response


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def client(sleeps):
    return TodoistClient("token-123", max_retries=2, sleep=sleeps.append)


class TestTodoistClient:

    def test_requires_token(self):
        with pytest.raises(AuthorizationError):
            TodoistClient("")

    @patch('obs_todoist.todoist.client.requests.request')
    def test_get_task(self, mock_request, client):
        mock_request.return_value = make_response(payload={
            "id": "6X7rM8997g3RQmvh",
            "content": "Buy milk",
            "description": "2%",
            "is_completed": False,
        })

        task = client.get_task("6X7rM8997g3RQmvh")

        assert task.id == "6X7rM8997g3RQmvh"
        assert task.content == "Buy milk"
        assert task.completed is False
        args, kwargs = mock_request.call_args
        assert args == ("GET", f"{REST_API_URL}/tasks/6X7rM8997g3RQmvh")
        assert kwargs["headers"]["Authorization"] == "Bearer token-123"
        assert kwargs["timeout"] == 30
        assert client.api_calls == 1

    @patch('obs_todoist.todoist.client.requests.request')
    @pytest.mark.parametrize("status", [403, 404])
    def test_not_found(self, mock_request, client, status):
        mock_request.return_value = make_response(status=status)

        with pytest.raises(RemoteNotFoundError) as excinfo:
            client.get_task("abc")
        assert excinfo.value.status_code == status

    @patch('obs_todoist.todoist.client.requests.request')
    def test_unauthorized(self, mock_request, client):
        mock_request.return_value = make_response(status=401)

        with pytest.raises(AuthorizationError):
            client.get_task("abc")

    @patch('obs_todoist.todoist.client.requests.request')
    def test_rate_limit_honors_retry_after(self, mock_request, client, sleeps):
        mock_request.side_effect = [
            make_response(status=429, headers={"Retry-After": "5"}),
            make_response(payload={"id": "abc", "is_completed": True}),
        ]

        task = client.get_task("abc")

        assert task.completed is True
        assert sleeps == [5.0]
        assert client.api_calls == 2

    @patch('obs_todoist.todoist.client.requests.request')
    def test_rate_limit_exhausted(self, mock_request, client, sleeps):
        mock_request.return_value = make_response(status=429)

        with pytest.raises(RateLimitError):
            client.close_task("abc")
        assert len(sleeps) == 2
        assert mock_request.call_count == 3

    @patch('obs_todoist.todoist.client.requests.request')
    def test_server_errors_retry_then_fail(self, mock_request, client, sleeps):
        mock_request.return_value = make_response(status=503)

        with pytest.raises(RemoteServiceError) as excinfo:
            client.get_task("abc")
        assert excinfo.value.status_code == 503
        assert not isinstance(excinfo.value, RemoteNotFoundError)
        assert sleeps == [1.0, 2.0]

    @patch('obs_todoist.todoist.client.requests.request')
    def test_network_error(self, mock_request, client):
        mock_request.side_effect = requests.exceptions.ConnectionError("offline")

        with pytest.raises(RemoteServiceError):
            client.get_task("abc")

    @patch('obs_todoist.todoist.client.requests.request')
    def test_close_task(self, mock_request, client):
        mock_request.return_value = make_response(status=204)

        client.close_task("abc")

        args, _kwargs = mock_request.call_args
        assert args == ("POST", f"{REST_API_URL}/tasks/abc/close")

    @patch('obs_todoist.todoist.client.requests.request')
    def test_get_tasks_bulk(self, mock_request, client):
        mock_request.return_value = make_response(payload=[{"id": "a"}, {"id": "b"}])

        assert [task.id for task in client.get_tasks_bulk()] == ["a", "b"]

    @patch('obs_todoist.todoist.client.requests.request')
    def test_create_task(self, mock_request, client):
        mock_request.return_value = make_response(payload={"id": "new1", "content": "Write report"})

        task = client.create_task({"content": "Write report"})

        assert task.id == "new1"
        _args, kwargs = mock_request.call_args
        assert kwargs["json"] == {"content": "Write report"}
        assert "X-Request-Id" in kwargs["headers"]

    def test_create_task_requires_content(self, client):
        with pytest.raises(ValueError):
            client.create_task({})


class TestTranslateId:

    @patch('obs_todoist.todoist.client.requests.request')
    def test_translate_id(self, mock_request, client):
        mock_request.return_value = make_response(payload={"item": {"id": "123456", "v2_id": "6X7rM8997g3RQmvh"}})

        assert client.translate_id("123456") == "6X7rM8997g3RQmvh"
        args, kwargs = mock_request.call_args
        assert args == ("GET", f"{SYNC_API_URL}/items/get")
        assert kwargs["params"] == {"item_id": "123456"}

    @patch('obs_todoist.todoist.client.requests.request')
    def test_translate_id_missing_v2_id(self, mock_request, client):
        mock_request.return_value = make_response(payload={"item": {"id": "123456"}})

        with pytest.raises(IdTranslationError):
            client.translate_id("123456")

    @patch('obs_todoist.todoist.client.requests.request')
    def test_translate_id_not_found(self, mock_request, client):
        mock_request.return_value = make_response(status=404)

        with pytest.raises(IdTranslationError):
            client.translate_id("123456")
