"""Tests for the registration client module."""

from unittest.mock import MagicMock, Mock, patch

import pytest
import requests

from rollcall.client import ClientError, clear_endpoints, register_endpoint


def _response(body, status_code: int = 200) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = body
    return response


class TestRegisterEndpoint:
    """Tests for register_endpoint function."""

    @patch("rollcall.client.requests.post")
    def test_posts_registration_payload(self, mock_post: Mock) -> None:
        mock_post.return_value = _response({"success": True, "message": "Endpoint registered"})

        body = register_endpoint("http://10.0.0.1:8080/", "Alice", "alice", ip="10.0.0.5", port=2222)

        assert body["success"] is True
        args, kwargs = mock_post.call_args
        assert args[0] == "http://10.0.0.1:8080/api/register"
        assert kwargs["json"] == {"name": "Alice", "ip": "10.0.0.5", "port": 2222, "username": "alice"}
        assert kwargs["timeout"] == 10

    @patch("rollcall.client.get_local_ip", return_value="192.168.1.20")
    @patch("rollcall.client.requests.post")
    def test_detects_local_ip_when_omitted(self, mock_post: Mock, mock_ip: Mock) -> None:
        mock_post.return_value = _response({"success": True})

        register_endpoint("http://dash:8080", "Alice", "alice")

        assert mock_post.call_args.kwargs["json"]["ip"] == "192.168.1.20"
        mock_ip.assert_called_once()

    @patch("rollcall.client.requests.post")
    def test_rejection_raises_with_server_message(self, mock_post: Mock) -> None:
        mock_post.return_value = _response({"success": False, "error": "Missing required field: username"}, 400)

        with pytest.raises(ClientError, match="username"):
            register_endpoint("http://dash:8080", "Alice", "", ip="10.0.0.5")

        assert mock_post.call_count == 1

    @patch("rollcall.client.requests.post")
    def test_non_json_response_raises(self, mock_post: Mock) -> None:
        response = _response(None, 502)
        response.json.side_effect = ValueError("no json")
        mock_post.return_value = response

        with pytest.raises(ClientError, match="502"):
            register_endpoint("http://dash:8080", "Alice", "alice", ip="10.0.0.5")

    @patch("rollcall.client.time.sleep")
    @patch("rollcall.client.requests.post")
    def test_retries_on_connection_error(self, mock_post: Mock, mock_sleep: Mock) -> None:
        mock_post.side_effect = [
            requests.ConnectionError("refused"),
            _response({"success": True}),
        ]

        body = register_endpoint("http://dash:8080", "Alice", "alice", ip="10.0.0.5", retry_delay=1)

        assert body["success"] is True
        assert mock_post.call_count == 2
        mock_sleep.assert_called_once_with(1)

    @patch("rollcall.client.time.sleep")
    @patch("rollcall.client.requests.post")
    def test_gives_up_after_max_retries(self, mock_post: Mock, mock_sleep: Mock) -> None:
        mock_post.side_effect = requests.RequestException("Connection error")

        with pytest.raises(ClientError, match="Could not reach"):
            register_endpoint("http://dash:8080", "Alice", "alice", ip="10.0.0.5", max_retries=2, retry_delay=1)

        # Initial attempt + 2 retries, with exponential backoff between them
        assert mock_post.call_count == 3
        assert [c.args[0] for c in mock_sleep.call_args_list] == [1, 2]


class TestClearEndpoints:
    """Tests for clear_endpoints function."""

    @patch("rollcall.client.requests.post")
    def test_posts_to_clear(self, mock_post: Mock) -> None:
        mock_post.return_value = _response({"success": True})

        assert clear_endpoints("http://dash:8080") == {"success": True}
        assert mock_post.call_args.args[0] == "http://dash:8080/api/clear"

    @patch("rollcall.client.requests.post")
    def test_does_not_retry(self, mock_post: Mock) -> None:
        mock_post.side_effect = requests.Timeout("timed out")

        with pytest.raises(ClientError):
            clear_endpoints("http://dash:8080")

        assert mock_post.call_count == 1
