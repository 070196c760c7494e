"""Unit tests for the library API client."""

import json
from unittest.mock import patch

import httpx
import pytest

from pyaiplib.api import AIPLibraryClient
from pyaiplib.exceptions import (
    AIPLibAPIError,
    AIPLibAuthenticationError,
    AIPLibConfigError,
    AIPLibInvalidResponseError,
    AIPLibNetworkError,
    AIPLibNotFoundError,
    AIPLibRateLimitError,
)
from pyaiplib.models import Library


def envelope(data=None, success=True, error_code=0, message="ok"):
    return {
        "success": success,
        "errorCode": error_code,
        "message": message,
        "data": data,
    }


def make_client(handler, **kwargs):
    """Create a client whose requests are answered by ``handler``."""
    kwargs.setdefault("retry_delay", 0.0)
    return AIPLibraryClient(
        api_key="test_key",
        api_url="https://library.test/api",
        ask_url="https://ask.test/api/library/ask",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


class TestAIPLibraryClient:
    """Tests for client initialization."""

    def test_init_with_api_key(self):
        client = AIPLibraryClient(api_key="test_key", api_url="https://x.test/api/")
        assert client.api_key == "test_key"
        assert client.api_url == "https://x.test/api"

    def test_init_without_api_key_raises_error(self):
        """Test that initializing without API key raises error."""
        with patch("pyaiplib.api.config") as mock_config:
            mock_config.api_key = None
            with pytest.raises(AIPLibConfigError, match="API key not configured"):
                AIPLibraryClient(api_key=None)

    def test_api_key_header_sent(self):
        """Test that every request carries the Api-Key header."""
        seen = {}

        def handler(request):
            seen["key"] = request.headers.get("Api-Key")
            return httpx.Response(200, json=envelope({"id": 1, "libraryName": "n"}))

        make_client(handler).get_library(1)
        assert seen["key"] == "test_key"


class TestAPIRequest:
    """Tests for the _request method."""

    def test_unauthorized(self):
        client = make_client(lambda r: httpx.Response(401, json={}))
        with pytest.raises(AIPLibAuthenticationError):
            client._request("GET", "/library/get")

    def test_not_found(self):
        client = make_client(lambda r: httpx.Response(404, json={}))
        with pytest.raises(AIPLibNotFoundError):
            client._request("GET", "/library/get")

    def test_html_response_means_bad_key(self):
        client = make_client(
            lambda r: httpx.Response(
                200, content=b"<html></html>", headers={"Content-Type": "text/html"}
            )
        )
        with pytest.raises(AIPLibAuthenticationError, match="HTML"):
            client._request("GET", "/library/get")

    def test_unexpected_content_type(self):
        client = make_client(
            lambda r: httpx.Response(
                200, content=b"hello", headers={"Content-Type": "text/plain"}
            )
        )
        with pytest.raises(AIPLibInvalidResponseError):
            client._request("GET", "/library/get")

    def test_server_error_is_retried(self):
        """Test that 5xx responses are retried until success."""
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(503, json={"message": "busy"})
            return httpx.Response(200, json=envelope())

        with patch("pyaiplib.api.time.sleep") as mock_sleep:
            result = make_client(handler, max_retries=3)._request("GET", "/x")
        assert result["success"] is True
        assert len(calls) == 3
        assert mock_sleep.call_count == 2

    def test_server_error_after_all_retries(self):
        with patch("pyaiplib.api.time.sleep"):
            client = make_client(
                lambda r: httpx.Response(500, json={"message": "boom"}), max_retries=1
            )
            with pytest.raises(AIPLibAPIError, match="boom"):
                client._request("GET", "/x")

    def test_rate_limit_uses_retry_after(self):
        """Test that the Retry-After header sets the retry delay."""
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                return httpx.Response(429, headers={"Retry-After": "7"})
            return httpx.Response(200, json=envelope())

        with patch("pyaiplib.api.time.sleep") as mock_sleep:
            make_client(handler)._request("GET", "/x")
        mock_sleep.assert_called_once_with(7.0)

    def test_rate_limit_exhausted(self):
        with patch("pyaiplib.api.time.sleep"):
            client = make_client(lambda r: httpx.Response(429), max_retries=0)
            with pytest.raises(AIPLibRateLimitError):
                client._request("GET", "/x")

    def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with patch("pyaiplib.api.time.sleep"):
            client = make_client(handler, max_retries=1)
            with pytest.raises(AIPLibNetworkError):
                client._request("GET", "/x")

    def test_retry_delay_grows(self):
        client = make_client(lambda r: httpx.Response(200), retry_delay=1.0)
        with patch("pyaiplib.api.random.random", return_value=0.5):
            assert client._calculate_retry_delay(0) == 1.0
            assert client._calculate_retry_delay(2) == 4.0


class TestEnvelope:
    """Tests for the success envelope check."""

    def test_failure_envelope_raises(self):
        client = make_client(
            lambda r: httpx.Response(
                200, json=envelope(success=False, error_code=1001, message="bad id")
            )
        )
        with pytest.raises(AIPLibAPIError, match="bad id"):
            client.delete_docs(["d1"], 5)

    def test_nonzero_error_code_raises(self):
        client = make_client(
            lambda r: httpx.Response(200, json=envelope(error_code=3))
        )
        with pytest.raises(AIPLibAPIError):
            client.update_library(Library(library_id=1, library_name="n"))


class TestLibraryOperations:
    """Tests for library endpoints."""

    def test_create_library(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=envelope(123))

        assert make_client(handler).create_library("Notes", "mine") == 123
        assert seen["path"] == "/api/library/create"
        assert seen["body"] == {"libraryName": "Notes", "description": "mine"}

    def test_create_library_nested_id(self):
        client = make_client(
            lambda r: httpx.Response(200, json=envelope({"libraryId": "77"}))
        )
        assert client.create_library("Notes") == 77

    def test_get_library(self):
        def handler(request):
            assert request.url.params["libraryId"] == "9"
            return httpx.Response(
                200, json=envelope({"id": 9, "libraryName": "Notes"})
            )

        library = make_client(handler).get_library(9)
        assert library.library_id == 9
        assert library.library_name == "Notes"

    def test_get_library_empty_data_is_not_found(self):
        """Test that success with null data means the library is not ours."""
        client = make_client(lambda r: httpx.Response(200, json=envelope(None)))
        with pytest.raises(AIPLibNotFoundError):
            client.get_library(9)


class TestDocumentOperations:
    """Tests for document endpoints."""

    def test_create_doc_by_text(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=envelope("doc-1"))

        doc_id = make_client(handler).create_doc_by_text(5, "# Hi", title="notes/a.md")
        assert doc_id == "doc-1"
        assert seen["path"] == "/api/library/document/createByText"
        assert seen["body"] == {
            "libraryId": 5,
            "text": "# Hi",
            "title": "notes/a.md",
            "url": "",
        }

    def test_create_doc_by_text_without_id(self):
        client = make_client(lambda r: httpx.Response(200, json=envelope(None)))
        with pytest.raises(AIPLibInvalidResponseError):
            client.create_doc_by_text(5, "x", title="a.md")

    def test_create_doc_by_url(self):
        client = make_client(
            lambda r: httpx.Response(200, json=envelope({"docIds": [1, 2]}))
        )
        assert client.create_doc_by_url(5, ["https://a", "https://b"]) == ["1", "2"]

    def test_list_docs_params(self):
        seen = {}

        def handler(request):
            seen.update(dict(request.url.params))
            return httpx.Response(
                200,
                json=envelope(
                    {"records": [{"docId": "d1", "title": "a.md"}], "totalPages": 4}
                ),
            )

        page = make_client(handler).list_docs(5, page=2, page_size=10)
        assert seen == {
            "libraryId": "5",
            "page": "2",
            "pageSize": "10",
            "order": "desc",
            "orderBy": "gmtCreate",
        }
        assert page.total_pages == 4
        assert page.records[0].title == "a.md"

    def test_delete_docs_payload(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=envelope())

        assert make_client(handler).delete_docs(["d1", "d2"], 5) is True
        assert seen["body"] == {"libraryId": 5, "docIds": ["d1", "d2"]}

    def test_delete_no_docs_makes_no_request(self):
        def handler(request):
            raise AssertionError("no request expected")

        assert make_client(handler).delete_docs([], 5) is True


class TestAsk:
    """Tests for the ask endpoint."""

    def test_ask_uses_bearer_and_ask_url(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200, json={"data": {"success": True, "answer": "Paris"}}
            )

        answer = make_client(handler).ask(5, "Capital of France?", model="m1")
        assert answer.answer == "Paris"
        assert seen["url"] == "https://ask.test/api/library/ask"
        assert seen["auth"] == "Bearer test_key"
        assert seen["body"] == {
            "libraryId": 5,
            "model": "m1",
            "query": "Capital of France?",
            "stream": False,
        }

    def test_ask_failure(self):
        client = make_client(
            lambda r: httpx.Response(
                200, json={"data": {"success": False, "message": "quota"}}
            )
        )
        with pytest.raises(AIPLibAPIError, match="quota"):
            client.ask(5, "q")

    def test_ask_stream_not_supported(self):
        client = make_client(lambda r: httpx.Response(200, json={}))
        with pytest.raises(NotImplementedError):
            client.ask(5, "q", stream=True)
