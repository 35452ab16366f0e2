"""
Unit tests for retry logic with exponential backoff
"""

import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import requests

# Add parent directory to path to import trello2planner module
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from trello2planner import TrelloReader
from trello2planner.exceptions import (
    TrelloAPIError,
    TrelloAuthenticationError,
    TrelloNotFoundError,
    TrelloRateLimitError,
    TrelloServerError,
)
from trello2planner.retry import send_with_retry


def http_error_response(status_code, text=""):
    response = MagicMock()
    response.status_code = status_code
    response.text = text
    response.raise_for_status.side_effect = requests.HTTPError(response=response)
    return response


def ok_response(payload):
    response = MagicMock()
    response.json.return_value = payload
    response.raise_for_status.return_value = None
    return response


class TestRetryLogic:
    """Test retry logic and exponential backoff in TrelloReader"""

    def test_successful_request_no_retry(self):
        """Should succeed on first attempt without retrying"""
        reader = TrelloReader(api_key="test_key", token="test_token")

        with (
            patch.object(reader.rate_limiter, "acquire", return_value=True),
            patch("requests.get", return_value=ok_response({"id": "b1"})) as mock_get,
        ):
            result = reader._request("boards/b1")

            assert mock_get.call_count == 1
            assert result == {"id": "b1"}
            params = mock_get.call_args.kwargs["params"]
            assert params["key"] == "test_key"
            assert params["token"] == "test_token"

    def test_retry_on_429_rate_limit(self):
        """Should retry on 429 (rate limit) with exponential backoff"""
        reader = TrelloReader(api_key="test_key", token="test_token")

        with (
            patch.object(reader.rate_limiter, "acquire", return_value=True),
            patch("requests.get") as mock_get,
            patch("time.sleep") as mock_sleep,
        ):
            mock_get.side_effect = [
                http_error_response(429),
                http_error_response(429),
                ok_response({"success": True}),
            ]

            result = reader._request("boards/b1")

            assert mock_get.call_count == 3
            assert result == {"success": True}
            assert [c.args[0] for c in mock_sleep.call_args_list] == [1.0, 2.0]

    def test_rate_limiter_acquired_per_attempt(self):
        """Every retry is a new request and must pass the rate limiter"""
        reader = TrelloReader(api_key="test_key", token="test_token")

        with (
            patch.object(reader.rate_limiter, "acquire", return_value=True) as mock_acquire,
            patch("requests.get") as mock_get,
            patch("time.sleep"),
        ):
            mock_get.side_effect = [http_error_response(503), ok_response([])]
            reader._request("boards/b1")

            assert mock_acquire.call_count == 2

    @pytest.mark.parametrize("status", [500, 502, 503, 504])
    def test_server_error_persists(self, status):
        """Should raise TrelloServerError after exhausting retries"""
        reader = TrelloReader(api_key="test_key", token="test_token")

        with (
            patch.object(reader.rate_limiter, "acquire", return_value=True),
            patch("requests.get", return_value=http_error_response(status, "oops")) as mock_get,
            patch("time.sleep"),
        ):
            with pytest.raises(TrelloServerError) as exc_info:
                reader._request("boards/b1")

            assert mock_get.call_count == 3
            assert exc_info.value.status_code == status
            assert exc_info.value.response_text == "oops"

    def test_rate_limit_persists(self):
        """Should raise TrelloRateLimitError when 429 never clears"""
        reader = TrelloReader(api_key="test_key", token="test_token")

        with (
            patch.object(reader.rate_limiter, "acquire", return_value=True),
            patch("requests.get", return_value=http_error_response(429)),
            patch("time.sleep"),
        ):
            with pytest.raises(TrelloRateLimitError):
                reader._request("boards/b1")

    def test_no_retry_on_401(self):
        """Should not retry authentication errors"""
        reader = TrelloReader(api_key="test_key", token="test_token")

        with (
            patch.object(reader.rate_limiter, "acquire", return_value=True),
            patch("requests.get", return_value=http_error_response(401)) as mock_get,
        ):
            with pytest.raises(TrelloAuthenticationError):
                reader._request("members/me")

            assert mock_get.call_count == 1

    def test_no_retry_on_404(self):
        """Should not retry not-found errors"""
        reader = TrelloReader(api_key="test_key", token="test_token")

        with (
            patch.object(reader.rate_limiter, "acquire", return_value=True),
            patch("requests.get", return_value=http_error_response(404)) as mock_get,
        ):
            with pytest.raises(TrelloNotFoundError):
                reader._request("boards/missing")

            assert mock_get.call_count == 1

    def test_network_error_retries_then_raises(self):
        """Connection errors are retried and then reported as TrelloAPIError"""
        reader = TrelloReader(api_key="test_key", token="test_token")

        with (
            patch.object(reader.rate_limiter, "acquire", return_value=True),
            patch("requests.get", side_effect=requests.ConnectionError("down")) as mock_get,
            patch("time.sleep") as mock_sleep,
        ):
            with pytest.raises(TrelloAPIError, match="Network error after 3 attempts"):
                reader._request("boards/b1")

            assert mock_get.call_count == 3
            assert mock_sleep.call_count == 2

    def test_invalid_json_raises_api_error(self):
        """A non-JSON body is an API error, not a crash"""
        reader = TrelloReader(api_key="test_key", token="test_token")
        response = ok_response(None)
        response.json.side_effect = ValueError("no json")
        response.status_code = 200
        response.text = "<html>"

        with (
            patch.object(reader.rate_limiter, "acquire", return_value=True),
            patch("requests.get", return_value=response),
        ):
            with pytest.raises(TrelloAPIError, match="not valid JSON"):
                reader._request("boards/b1")


class RecordingErrors:
    """Error mapping that tags each exception with the failure kind"""

    def status_error(self, status_code, response_text):
        return RuntimeError(f"status {status_code}")

    def exhausted_error(self, status_code, response_text, attempts):
        return RuntimeError(f"exhausted {status_code} after {attempts}")

    def network_error(self, error, attempts):
        return RuntimeError(f"network after {attempts}")


class TestSendWithRetry:
    """Test the retry loop shared by the Trello and Graph clients"""

    def test_backoff_doubles(self):
        limiter = MagicMock()
        ok = ok_response({})
        send = MagicMock(side_effect=[http_error_response(502)] * 3 + [ok])

        with patch("time.sleep") as mock_sleep:
            response = send_with_retry(send, limiter, RecordingErrors(), retries=4)

        assert response is ok
        assert [c.args[0] for c in mock_sleep.call_args_list] == [1.0, 2.0, 4.0]
        assert limiter.acquire.call_count == 4

    def test_exhausted_status_reported(self):
        send = MagicMock(return_value=http_error_response(429, "slow down"))

        with patch("time.sleep") as mock_sleep, pytest.raises(RuntimeError) as exc_info:
            send_with_retry(send, MagicMock(), RecordingErrors())

        assert str(exc_info.value) == "exhausted 429 after 3"
        assert isinstance(exc_info.value.__cause__, requests.HTTPError)
        assert mock_sleep.call_count == 2

    def test_non_transient_status_raised_at_once(self):
        send = MagicMock(return_value=http_error_response(400))

        with patch("time.sleep"), pytest.raises(RuntimeError, match="status 400"):
            send_with_retry(send, MagicMock(), RecordingErrors())

        assert send.call_count == 1

    def test_network_error_after_last_attempt(self):
        send = MagicMock(side_effect=requests.ConnectionError("refused"))

        with patch("time.sleep"), pytest.raises(RuntimeError, match="network after 3"):
            send_with_retry(send, MagicMock(), RecordingErrors())

        assert send.call_count == 3
