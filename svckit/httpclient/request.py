"""
HTTP request builder over httpx.
"""

import secrets
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union
from urllib.parse import unquote_plus, urlencode

import httpx

from ..errors import HttpClientError, InvalidMethodError
from ..logging import get_logger
from ..metrics import MetricsCollector, get_metrics_collector

VALID_METHODS = ("GET", "HEAD", "POST", "PUT", "PATCH", "DELETE")

SUCCESS_STATUS_CODES = (200, 201, 204)

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"

logger = get_logger("svckit.httpclient")


def new_http_client(**kwargs: Any) -> httpx.AsyncClient:
    """Create the shared async HTTP client."""
    return httpx.AsyncClient(**kwargs)


@dataclass
class HttpFile:
    """File part of a multipart request."""

    filename: str
    content: Any


class HttpResponse:
    """Status and fully read body of a response."""

    def __init__(self, response: httpx.Response):
        self._response = response

    @property
    def status_code(self) -> int:
        return self._response.status_code

    @property
    def body(self) -> bytes:
        return self._response.content

    @property
    def headers(self) -> httpx.Headers:
        return self._response.headers

    def is_(self, status_code: int) -> bool:
        return self._response.status_code == status_code

    def is_success(self) -> bool:
        return self._response.status_code in SUCCESS_STATUS_CODES

    def json(self) -> Any:
        return self._response.json()

    def __str__(self) -> str:
        body = self.body.decode("utf-8", errors="replace").replace("\n", "")
        return f"Response from {self._response.request.url} with body: {body}"


class HttpRequest:
    """
    One outgoing request.

    GET requests carry params in the query string. Other methods send, in
    order of precedence: a multipart form (when files were added or the
    Content-Type is multipart/*) holding files and params, the raw body, or
    the params url-encoded.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        metrics: Optional[MetricsCollector] = None,
    ):
        self._client = client
        self.method = method.upper()
        self.url = url
        self.headers: Dict[str, str] = {}
        self.params: List[Tuple[str, str]] = []
        self.files: Dict[str, HttpFile] = {}
        self.body = b""
        self.multipart = False
        self.metrics = metrics or get_metrics_collector()

    def set_header(self, key: str, value: str) -> None:
        self.headers[key] = value
        if key.lower() == "content-type":
            self.multipart = value.lower().startswith("multipart")

    def set_body(self, body: Union[bytes, str]) -> None:
        self.body = body.encode("utf-8") if isinstance(body, str) else body

    def set_params(self, params: Mapping[str, Union[str, Sequence[str]]]) -> None:
        """Replace all params; a sequence value adds the key once per item."""
        self.params = []
        for key, value in params.items():
            if isinstance(value, (list, tuple)):
                self.params.extend((key, str(item)) for item in value)
            else:
                self.params.append((key, str(value)))

    def add_param(self, key: str, value: str) -> None:
        self.params.append((key, str(value)))

    def add_file(self, key: str, filename: str, content: Any) -> None:
        """Attach a file object or bytes; file objects are closed once sent."""
        self.files[key] = HttpFile(filename=filename, content=content)

    def build(self, timeout: float = 0) -> httpx.Request:
        """Build the httpx request, validating the method."""
        if self.method not in VALID_METHODS:
            raise InvalidMethodError(self.method)

        options: Dict[str, Any] = {}
        if timeout > 0:
            options["timeout"] = httpx.Timeout(timeout)
        headers = dict(self.headers)

        if self.method == "GET":
            return self._client.build_request(
                self.method, self.url, params=self.params, headers=headers, **options
            )

        if self.files or self.multipart:
            # httpx writes its own multipart Content-Type with the boundary
            headers = {k: v for k, v in headers.items() if k.lower() != "content-type"}
            parts: List[Tuple[str, Tuple[Optional[str], Any]]] = [
                (key, (file.filename, file.content)) for key, file in self.files.items()
            ]
            parts.extend((key, (None, value.encode("utf-8"))) for key, value in self.params)
            if not parts:
                # httpx sends no body at all for an empty files list
                boundary = secrets.token_hex(16)
                headers["Content-Type"] = f"multipart/form-data; boundary={boundary}"
                return self._client.build_request(
                    self.method, self.url, content=f"--{boundary}--\r\n".encode("ascii"),
                    headers=headers, **options
                )
            return self._client.build_request(
                self.method, self.url, files=parts, headers=headers, **options
            )

        if self.body:
            return self._client.build_request(
                self.method, self.url, content=self.body, headers=headers, **options
            )

        headers = {k: v for k, v in headers.items() if k.lower() != "content-type"}
        headers["Content-Type"] = FORM_CONTENT_TYPE
        return self._client.build_request(
            self.method, self.url, content=urlencode(self.params).encode("ascii"),
            headers=headers, **options
        )

    async def do(self, timeout: float = 0) -> HttpResponse:
        """Send the request; `timeout` seconds when positive, else the client default."""
        request = self.build(timeout)
        start = time.perf_counter()
        status_code = "error"
        try:
            response = await self._client.send(request)
            status_code = str(response.status_code)
        except httpx.HTTPError as exc:
            logger.error("HTTP request failed", method=self.method, url=self.url, error=str(exc))
            raise HttpClientError(
                f"{self.method} {self.url}: {str(exc) or type(exc).__name__}",
                {"method": self.method, "url": self.url},
            ) from exc
        finally:
            self._close_files()
            self.metrics.increment_counter(
                "http_client_requests_total", method=self.method, status_code=status_code
            )
            self.metrics.observe_histogram(
                "http_client_request_duration_seconds", time.perf_counter() - start,
                method=self.method,
            )

        logger.debug("HTTP request sent", method=self.method, url=self.url,
                     status_code=response.status_code)
        return HttpResponse(response)

    def _close_files(self) -> None:
        for file in self.files.values():
            close = getattr(file.content, "close", None)
            if callable(close):
                close()

    def __str__(self) -> str:
        body = urlencode(self.params)
        if self.body:
            body = self.body.decode("utf-8", errors="replace")
        elif self.files:
            for key, file in self.files.items():
                body = f"{body}&{key}={file.filename}"
        body = unquote_plus(body)
        return f"Request {self.method} to {self.url} with header: {self.headers} and body: {body}"


class HttpRequestor:
    """Creates requests bound to one shared client."""

    def __init__(self, client: Optional[httpx.AsyncClient] = None,
                 metrics: Optional[MetricsCollector] = None):
        self.client = client or new_http_client()
        self.metrics = metrics

    def new_request(self, method: str, uri: str) -> HttpRequest:
        return HttpRequest(self.client, method, uri, metrics=self.metrics)

    async def close(self) -> None:
        await self.client.aclose()
