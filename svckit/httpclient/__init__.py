"""
HTTP request client.

    requestor = HttpRequestor(new_http_client())
    request = requestor.new_request("post", "https://example.com/upload")
    request.add_param("name", "report")
    request.add_file("file", "report.pdf", open("report.pdf", "rb"))
    response = await request.do(timeout=10)
    if response.is_success():
        ...
"""

from ..errors import HttpClientError, InvalidMethodError
from .request import (
    SUCCESS_STATUS_CODES,
    VALID_METHODS,
    HttpFile,
    HttpRequest,
    HttpRequestor,
    HttpResponse,
    new_http_client,
)

__all__ = [
    "HttpClientError",
    "HttpFile",
    "HttpRequest",
    "HttpRequestor",
    "HttpResponse",
    "InvalidMethodError",
    "SUCCESS_STATUS_CODES",
    "VALID_METHODS",
    "new_http_client",
]
