"""
nebula_core/transport.py — Request dispatch over HTTP

Dispatch:   descriptor + credential → URL, headers, body → httpx
Interpret:  HEAD/DELETE → bool, GET/POST/PUT → body text or None
Translate:  httpx failure → RepositoryError (invalidRequest, serverDown,
            malformedRequest)

Status policy:
    < 400 or 404   non-exceptional (a missing resource is a value)
    other >= 400   failure, raised as invalidRequest

One httpx.AsyncClient is opened per request and closed with it; there is
no pooling or caching across calls.  Redirects are followed, so the
status policy applies to the final response.
"""

from __future__ import annotations

import logging
from typing import Optional, Union

import httpx
from pydantic_core import PydanticSerializationError

from .config import RequestPolicy
from .document import NotarizedDocument, format_document
from .errors import ErrorContext, ExceptionKind, RepositoryError
from .resources import HttpMethod, RequestDescriptor

logger = logging.getLogger(__name__)

CREDENTIALS_HEADER = "Nebula-Credentials"
CONTENT_TYPE = "application/bali"

Outcome = Union[bool, Optional[str]]

# Failures that translate_error() classifies.
_DISPATCH_ERRORS = (
    httpx.HTTPError,
    httpx.InvalidURL,
    httpx.StreamError,
    PydanticSerializationError,
    UnicodeEncodeError,
)


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

def build_headers(
    credentials: NotarizedDocument, body: Optional[bytes]
) -> dict[str, str]:
    """Credential header (quoted canonical form) plus body headers."""
    headers = {CREDENTIALS_HEADER: '"' + format_document(credentials) + '"'}
    if body:
        headers["Content-Type"] = CONTENT_TYPE
        headers["Content-Length"] = str(len(body))
    return headers


async def send_request(
    credentials: NotarizedDocument,
    function_name: str,
    base_url: str,
    descriptor: RequestDescriptor,
    *,
    policy: RequestPolicy | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Outcome:
    """Send one validated request and interpret the response.

    Args:
        credentials:   Freshly notarized credential for this request only.
        function_name: Name of the calling operation, for error context.
        base_url:      Repository address ending in "/".
        descriptor:    Output of validate_request().
        policy:        Timeout policy; retries are the caller's concern.
        transport:     Optional httpx transport (tests use MockTransport).

    Raises:
        RepositoryError: invalidRequest, serverDown or malformedRequest,
            with the httpx exception as cause.
    """
    policy = policy or RequestPolicy()
    method = descriptor.method
    url = base_url + descriptor.path
    body = descriptor.payload.encode("utf-8") if descriptor.payload else None

    try:
        headers = build_headers(credentials, body)
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(policy.timeout_seconds),
            follow_redirects=True,
            transport=transport,
        ) as client:
            response = await client.request(
                method.value, url, headers=headers, content=body,
            )
        logger.debug(
            "%s %s -> %d", method.value, url, response.status_code,
        )
        if response.status_code >= 400 and response.status_code != 404:
            response.raise_for_status()
    except _DISPATCH_ERRORS as cause:
        raise translate_error(cause, function_name, url, method) from cause

    return interpret_response(method, response)


# ---------------------------------------------------------------------------
# Interpretation
# ---------------------------------------------------------------------------

def interpret_response(method: HttpMethod, response: httpx.Response) -> Outcome:
    if method in (HttpMethod.HEAD, HttpMethod.DELETE):
        return response.status_code != 404
    if response.status_code == 404:
        return None
    return response.text or None


# ---------------------------------------------------------------------------
# Error translation
# ---------------------------------------------------------------------------

# Raised before anything reached the wire.
_NOT_SENT = (
    httpx.UnsupportedProtocol,
    httpx.LocalProtocolError,
    httpx.ProxyError,
)


def translate_error(
    cause: BaseException,
    function_name: str,
    url: str,
    method: HttpMethod,
) -> RepositoryError:
    """Classify a transport failure into exactly one error kind."""
    if isinstance(cause, httpx.HTTPStatusError):
        response = cause.response
        return RepositoryError(
            "The request was rejected by the repository.",
            ExceptionKind.INVALID_REQUEST,
            ErrorContext(
                function=function_name,
                url=url,
                method=method.value,
                status=response.status_code,
                details=response.reason_phrase,
            ),
            cause,
        )

    if isinstance(cause, httpx.TransportError) and not isinstance(cause, _NOT_SENT):
        # timeouts, connect/read/write failures, dropped connections
        return RepositoryError(
            "The request received no response.",
            ExceptionKind.SERVER_DOWN,
            ErrorContext(
                function=function_name,
                url=url,
                method=method.value,
                details=f"{type(cause).__name__}: {cause}",
            ),
            cause,
        )

    return RepositoryError(
        "The request was not formed correctly.",
        ExceptionKind.MALFORMED_REQUEST,
        ErrorContext(
            function=function_name,
            url=url,
            method=method.value,
            details=f"{type(cause).__name__}: {cause}",
        ),
        cause,
    )
