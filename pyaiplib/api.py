"""API client for the AIProxy knowledge library service."""

from __future__ import annotations

import logging
import random
import time
from typing import Any, Literal

import httpx

from .config import DEFAULT_API_URL, DEFAULT_ASK_URL, DEFAULT_MODEL, config
from .exceptions import (
    AIPLibAPIError,
    AIPLibAuthenticationError,
    AIPLibConfigError,
    AIPLibInvalidResponseError,
    AIPLibNetworkError,
    AIPLibNotFoundError,
    AIPLibPermissionError,
    AIPLibRateLimitError,
)
from .models import AskAnswer, DocumentPage, Library
from .utils import DEFAULT_MAX_RETRIES, DEFAULT_PAGE_SIZE, DEFAULT_RETRY_DELAY

logger = logging.getLogger(__name__)

Order = Literal["asc", "desc"]
OrderBy = Literal["gmtCreate", "gmtModified", "libraryName"]


class AIPLibraryClient:
    """Client for interacting with the AIProxy library API."""

    def __init__(
        self,
        api_key: str | None = None,
        api_url: str | None = None,
        ask_url: str | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        """Initialize the library API client.

        Args:
            api_key: Optional API key (uses config if not provided)
            api_url: Optional API base URL (uses config if not provided)
            ask_url: Optional URL of the ask endpoint (uses config if not provided)
            max_retries: Maximum number of retry attempts (default: 3)
            retry_delay: Initial delay between retries in seconds (default: 1.0)
            timeout: Request timeout in seconds (default: 30.0)
            transport: Optional httpx transport (used by tests)
        """
        self.api_key = api_key or config.api_key
        self.api_url = (api_url or config.api_url or DEFAULT_API_URL).rstrip("/")
        self.ask_url = ask_url or config.ask_url or DEFAULT_ASK_URL
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.timeout = timeout
        self._transport = transport

        if not self.api_key:
            raise AIPLibConfigError(
                "API key not configured. Please set AIPLIB_API_KEY environment "
                "variable."
            )

        self._client: httpx.Client | None = None

    def _get_client(self) -> httpx.Client:
        """Get or create the httpx client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.Client(
                headers={"Api-Key": self.api_key},
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    def close(self) -> None:
        """Close the client and release connections."""
        if self._client is not None and not self._client.is_closed:
            self._client.close()
            self._client = None

    def __enter__(self) -> AIPLibraryClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def _should_retry(self, exception: Exception, attempt: int) -> bool:
        """Determine if a request should be retried.

        Args:
            exception: The exception that occurred
            attempt: Current attempt number (0-based)

        Returns:
            True if the request should be retried, False otherwise
        """
        if attempt >= self.max_retries:
            return False

        if isinstance(exception, (AIPLibNetworkError, AIPLibRateLimitError)):
            return True

        if isinstance(exception, httpx.HTTPStatusError):
            return 500 <= exception.response.status_code < 600

        return False

    def _calculate_retry_delay(self, attempt: int) -> float:
        """Calculate delay before next retry using exponential backoff.

        Args:
            attempt: Current attempt number (0-based)

        Returns:
            Delay in seconds
        """
        base_delay = self.retry_delay * (2**attempt)
        # +/- 25% jitter
        jitter = base_delay * 0.25 * (2 * random.random() - 1)
        return base_delay + jitter

    def _handle_http_error(
        self, e: httpx.HTTPStatusError, attempt: int
    ) -> tuple[Exception, bool]:
        """Handle HTTP errors and determine if retry should occur.

        Args:
            e: The HTTP error exception
            attempt: Current attempt number

        Returns:
            Tuple of (exception to raise, should_retry)
        """
        status_code = e.response.status_code

        if status_code == 401:
            raise AIPLibAuthenticationError(
                "Invalid API key or unauthorized access"
            ) from e
        elif status_code == 403:
            raise AIPLibPermissionError(
                "Access forbidden - check your permissions"
            ) from e
        elif status_code == 404:
            raise AIPLibNotFoundError("Resource not found") from e
        elif status_code == 429:
            error = AIPLibRateLimitError("Rate limit exceeded - please try again later")
            return (error, attempt < self.max_retries)

        error_msg = f"API request failed with status {status_code}"
        try:
            if e.response.content:
                error_data = e.response.json()
                if isinstance(error_data, dict):
                    msg = error_data.get("message") or error_data.get("errMsg")
                    if msg:
                        error_msg = f"{error_msg}: {msg}"
        except ValueError:
            # Body is not JSON, keep the status-based message
            pass

        error = AIPLibAPIError(error_msg)
        should_retry = 500 <= status_code < 600 and attempt < self.max_retries
        return (error, should_retry)

    def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        """Make an API request with retry logic.

        Args:
            method: HTTP method
            url: Endpoint path (joined to ``api_url``) or absolute URL
            **kwargs: Additional arguments passed to httpx

        Returns:
            Decoded JSON body

        Raises:
            AIPLibAPIError: If the request fails after all retries
        """
        if not url.startswith(("http://", "https://")):
            url = f"{self.api_url}/{url.lstrip('/')}"
        last_exception: Exception | None = None
        client = self._get_client()

        for attempt in range(self.max_retries + 1):
            try:
                response = client.request(method, url, **kwargs)
                response.raise_for_status()

                content_type = response.headers.get("Content-Type", "")
                if response.content and "application/json" not in content_type:
                    if "text/html" in content_type:
                        raise AIPLibAuthenticationError(
                            "Invalid API key - server returned HTML instead of JSON"
                        )
                    raise AIPLibInvalidResponseError(
                        f"Unexpected response type: {content_type}"
                    )

                if not response.content:
                    return {}
                try:
                    return response.json()
                except ValueError as e:
                    raise AIPLibInvalidResponseError(
                        "Invalid JSON response from server"
                    ) from e

            except httpx.HTTPStatusError as e:
                error, should_retry = self._handle_http_error(e, attempt)
                last_exception = error

                if should_retry:
                    if isinstance(error, AIPLibRateLimitError):
                        retry_after = e.response.headers.get("Retry-After")
                        if retry_after and retry_after.isdigit():
                            delay = float(retry_after)
                        else:
                            delay = self._calculate_retry_delay(attempt)
                    else:
                        delay = self._calculate_retry_delay(attempt)
                    logger.debug(
                        f"{method} {url} failed ({error}), retrying in {delay:.1f}s"
                    )
                    time.sleep(delay)
                    continue
                raise error from e
            except AIPLibAPIError:
                raise
            except httpx.RequestError as e:
                error = AIPLibNetworkError(f"Network error: {e}")
                last_exception = error
                if self._should_retry(error, attempt):
                    delay = self._calculate_retry_delay(attempt)
                    logger.debug(f"{method} {url} failed ({e}), retrying in {delay:.1f}s")
                    time.sleep(delay)
                    continue
                raise error from e

        if last_exception:
            raise last_exception
        raise AIPLibAPIError("Request failed after all retry attempts")

    @staticmethod
    def _check_envelope(resp: Any) -> Any:
        """Validate the ``{success, errorCode, message, data}`` envelope.

        Args:
            resp: Decoded JSON body

        Returns:
            The ``data`` field

        Raises:
            AIPLibAPIError: If the envelope reports a failure
        """
        if not isinstance(resp, dict):
            raise AIPLibInvalidResponseError("Response is not a JSON object")
        if resp.get("success") is not True or resp.get("errorCode", 0) != 0:
            message = resp.get("message") or resp.get("errMsg") or "unknown error"
            raise AIPLibAPIError(
                f"Library API error (code {resp.get('errorCode')}): {message}"
            )
        return resp.get("data")

    # =========================
    # Library Operations
    # =========================

    def create_library(self, library_name: str, description: str = "") -> int:
        """Create a new knowledge library.

        Args:
            library_name: Name of the library
            description: Optional description

        Returns:
            ID of the created library
        """
        payload = {"libraryName": library_name, "description": description}
        data = self._check_envelope(
            self._request("POST", "/library/create", json=payload)
        )
        # Older deployments nest the id one level deeper
        while isinstance(data, dict):
            data = data.get("libraryId", data.get("data"))
        try:
            return int(data)
        except (TypeError, ValueError) as e:
            raise AIPLibInvalidResponseError(
                f"Library create returned no library id: {data!r}"
            ) from e

    def get_library(self, library_id: int) -> Library:
        """Get the settings of a library.

        Args:
            library_id: ID of the library

        Returns:
            Library settings

        Raises:
            AIPLibNotFoundError: If the library does not exist or belongs to
                another account (the API reports success with empty data)
        """
        data = self._check_envelope(
            self._request(
                "GET", "/library/get", params={"libraryId": str(library_id)}
            )
        )
        if not data:
            raise AIPLibNotFoundError(
                f"Library {library_id} not found or not owned by you"
            )
        return Library.from_api_response(data)

    def update_library(self, library: Library) -> bool:
        """Update the settings of a library.

        Args:
            library: Library settings to store

        Returns:
            True on success
        """
        self._check_envelope(
            self._request("POST", "/library/update", json=library.to_api_payload())
        )
        return True

    # =========================
    # Document Operations
    # =========================

    def create_doc_by_text(
        self, library_id: int, text: str, title: str, url: str = ""
    ) -> str:
        """Add a document to a library from plain text.

        Args:
            library_id: ID of the library
            text: Document content
            title: Document title (the vault path when used by the sync engine)
            url: Optional source URL

        Returns:
            ID of the created document
        """
        payload = {"libraryId": library_id, "text": text, "title": title, "url": url}
        data = self._check_envelope(
            self._request("POST", "/library/document/createByText", json=payload)
        )
        if isinstance(data, dict):
            data = data.get("docId")
        if not data:
            raise AIPLibInvalidResponseError("Document create returned no document id")
        logger.debug(f"Created document {data} for {title}")
        return str(data)

    def create_doc_by_url(
        self, library_id: int, urls: list[str], refresh: bool = True
    ) -> list[str]:
        """Add documents to a library by URL.

        Args:
            library_id: ID of the library
            urls: URLs to fetch
            refresh: Whether the service should refresh already known URLs

        Returns:
            IDs of the created documents
        """
        payload = {"libraryId": library_id, "refresh": refresh, "urls": urls}
        data = self._check_envelope(
            self._request("POST", "/library/document/createByUrl", json=payload)
        )
        if isinstance(data, dict):
            data = data.get("docIds", [])
        return [str(doc_id) for doc_id in data or []]

    def list_docs(
        self,
        library_id: int,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
        order: Order = "desc",
        order_by: OrderBy = "gmtCreate",
    ) -> DocumentPage:
        """List one page of documents in a library.

        Args:
            library_id: ID of the library
            page: Page number (1-based)
            page_size: Number of records per page
            order: Sort direction
            order_by: Sort field

        Returns:
            The requested page with its records and the total page count
        """
        params = {
            "libraryId": str(library_id),
            "page": str(page),
            "pageSize": str(page_size),
            "order": order,
            "orderBy": order_by,
        }
        data = self._check_envelope(
            self._request("GET", "/library/listDocument", params=params)
        )
        return DocumentPage.from_api_response(data, page=page, page_size=page_size)

    def delete_docs(self, doc_ids: list[str], library_id: int) -> bool:
        """Delete documents from a library.

        Args:
            doc_ids: IDs of the documents to delete
            library_id: ID of the library

        Returns:
            True on success
        """
        if not doc_ids:
            return True
        payload = {"libraryId": library_id, "docIds": list(doc_ids)}
        self._check_envelope(
            self._request("POST", "/library/document/delete", json=payload)
        )
        logger.debug(f"Deleted {len(doc_ids)} document(s) from library {library_id}")
        return True

    def ask(
        self,
        library_id: int,
        query: str,
        model: str = DEFAULT_MODEL,
        stream: bool = False,
    ) -> AskAnswer:
        """Ask a question against a library.

        Args:
            library_id: ID of the library
            query: The question
            model: Chat model used to compose the answer
            stream: Streaming is not supported

        Returns:
            The answer
        """
        if stream:
            raise NotImplementedError("Streaming answers are not supported")
        payload = {
            "libraryId": library_id,
            "model": model,
            "query": query,
            "stream": stream,
        }
        resp = self._request(
            "POST",
            self.ask_url,
            json=payload,
            headers={"Authorization": f"Bearer {self.api_key}"},
        )
        # The ask endpoint nests the success flag inside ``data``
        data = resp.get("data", resp) if isinstance(resp, dict) else resp
        if not isinstance(data, dict) or data.get("success") is not True:
            message = (
                (data.get("message") if isinstance(data, dict) else None)
                or (resp.get("message") if isinstance(resp, dict) else None)
                or "unknown error"
            )
            raise AIPLibAPIError(f"Ask failed: {message}")
        return AskAnswer.from_api_response(data)
