"""
nebula_core/resources.py — Resource kinds and request validation

ALLOWED_METHODS is the closed table of (kind, method) combinations the
repository accepts.  validate_request() is the only way to obtain a
RequestDescriptor, so no request reaches the dispatcher without passing
through it.
"""

# NOTE: `from __future__ import annotations` is intentionally omitted,
# RequestDescriptor is a pydantic model.

from enum import Enum
from urllib.parse import quote
from typing import Optional, Union

from pydantic import BaseModel, Field

from .errors import ErrorContext, ExceptionKind, RepositoryError


class ResourceKind(str, Enum):
    """Categories of remote resource, also the first URL path segment."""
    CERTIFICATE = "certificate"
    DRAFT = "draft"
    DOCUMENT = "document"
    TYPE = "type"
    QUEUE = "queue"


class HttpMethod(str, Enum):
    HEAD = "HEAD"
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"


# Certificates, documents and types are immutable (no PUT/DELETE);
# drafts are replaceable and deletable; queues only enqueue and dequeue.
ALLOWED_METHODS: dict[ResourceKind, frozenset[HttpMethod]] = {
    ResourceKind.CERTIFICATE: frozenset({HttpMethod.HEAD, HttpMethod.GET, HttpMethod.POST}),
    ResourceKind.DRAFT: frozenset({HttpMethod.HEAD, HttpMethod.GET, HttpMethod.PUT, HttpMethod.DELETE}),
    ResourceKind.DOCUMENT: frozenset({HttpMethod.HEAD, HttpMethod.GET, HttpMethod.POST}),
    ResourceKind.TYPE: frozenset({HttpMethod.HEAD, HttpMethod.GET, HttpMethod.POST}),
    ResourceKind.QUEUE: frozenset({HttpMethod.PUT, HttpMethod.GET}),
}


class RequestDescriptor(BaseModel):
    """A validated request, created per call and discarded afterwards."""

    kind: ResourceKind
    method: HttpMethod
    identifier: str = Field(..., min_length=1)
    payload: Optional[str] = None

    @property
    def path(self) -> str:
        """Kind segment plus the percent-encoded identifier segments."""
        segments = (quote(segment, safe="") for segment in self.identifier.split("/"))
        return self.kind.value + "/" + "/".join(segments)


def make_identifier(tag: str, version: str) -> str:
    """Identifier for a versioned resource (drafts are addressed this way)."""
    return f"{tag}/{version}"


def validate_request(
    kind: Union[ResourceKind, str],
    method: Union[HttpMethod, str],
    identifier: str,
    payload: Optional[str] = None,
    *,
    function_name: Optional[str] = None,
    url: Optional[str] = None,
) -> RequestDescriptor:
    """Check a (kind, method) pair against ALLOWED_METHODS.

    Raises:
        RepositoryError: invalidParameter for an unknown kind or method,
            a combination outside the table, or an identifier that is empty
            or has an empty, "." or ".." segment.
    """
    def invalid(text: str) -> RepositoryError:
        return RepositoryError(
            text,
            ExceptionKind.INVALID_PARAMETER,
            ErrorContext(
                function=function_name,
                url=url,
                method=str(getattr(method, "value", method)),
                resource_kind=str(getattr(kind, "value", kind)),
                identifier=identifier or None,
            ),
        )

    try:
        resource_kind = ResourceKind(kind)
    except ValueError:
        raise invalid("An invalid document type was specified.") from None

    try:
        http_method = HttpMethod(method)
    except ValueError:
        raise invalid("An invalid method was specified.") from None

    if http_method not in ALLOWED_METHODS[resource_kind]:
        raise invalid("An invalid method and document type combination was specified.")

    if not identifier:
        raise invalid("An identifier must be specified.")

    # Dot segments would be resolved away and move the request to another kind.
    if any(segment in ("", ".", "..") for segment in identifier.split("/")):
        raise invalid("An invalid identifier was specified.")

    return RequestDescriptor(
        kind=resource_kind,
        method=http_method,
        identifier=identifier,
        payload=payload,
    )
