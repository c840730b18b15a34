"""Repository errors — one tagged exception for every failure mode.

Invariants:
    - Every error has a kind (ExceptionKind) and an ErrorContext
    - The low-level cause, when there is one, is chained via __cause__
    - Payloads are never carried whole; only an excerpt is kept

Kinds:
    invalidParameter   pre-flight validation failed, no I/O performed
    invalidRequest     the server answered with a status >= 400 (not 404)
    serverDown         the request was sent but no response arrived
    malformedRequest   the request could not be built or sent
    unexpected         facade-level wrapper around any of the above
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

# Characters of a payload kept in an error context.
PAYLOAD_EXCERPT_LENGTH = 80


class ExceptionKind(str, Enum):
    INVALID_PARAMETER = "invalidParameter"
    INVALID_REQUEST = "invalidRequest"
    SERVER_DOWN = "serverDown"
    MALFORMED_REQUEST = "malformedRequest"
    UNEXPECTED = "unexpected"


def excerpt(payload: Optional[str], limit: int = PAYLOAD_EXCERPT_LENGTH) -> Optional[str]:
    """Truncate a payload for inclusion in an error context."""
    if payload is None:
        return None
    if len(payload) <= limit:
        return payload
    return payload[:limit] + "..."


@dataclass
class ErrorContext:
    """Where and on what a failure happened.  Unset fields stay None."""
    module: str = "CloudRepository"
    function: Optional[str] = None
    account: Optional[str] = None
    url: Optional[str] = None
    method: Optional[str] = None
    resource_kind: Optional[str] = None
    identifier: Optional[str] = None
    payload: Optional[str] = None
    status: Optional[int] = None
    details: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        data = {k: v for k, v in asdict(self).items() if v is not None}
        data["timestamp"] = self.timestamp.isoformat()
        return data


class RepositoryError(Exception):
    """Base (and only) exception raised by the repository client."""

    def __init__(
        self,
        message: str,
        kind: ExceptionKind,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.context = context or ErrorContext()
        if cause is not None:
            self.__cause__ = cause

    @property
    def cause(self) -> BaseException | None:
        return self.__cause__

    def chain(self) -> list[BaseException]:
        """This error followed by every wrapped cause, outermost first."""
        errors: list[BaseException] = []
        current: BaseException | None = self
        while current is not None and current not in errors:
            errors.append(current)
            current = current.__cause__
        return errors

    def root_cause(self) -> BaseException:
        return self.chain()[-1]

    def find(self, kind: ExceptionKind) -> "RepositoryError | None":
        """First error of the given kind in the causal chain."""
        for error in self.chain():
            if isinstance(error, RepositoryError) and error.kind == kind:
                return error
        return None

    def to_dict(self) -> dict[str, Any]:
        """Structured rendering of the error and its repository causes."""
        data: dict[str, Any] = {
            "exception": self.kind.value,
            "text": self.message,
            **self.context.to_dict(),
        }
        cause = self.__cause__
        if isinstance(cause, RepositoryError):
            data["cause"] = cause.to_dict()
        elif cause is not None:
            data["cause"] = {
                "exception": type(cause).__name__,
                "text": str(cause),
            }
        return data

    def __str__(self) -> str:
        parts = [f"[{self.kind.value}] {self.message}"]
        ctx = self.context
        if ctx.function:
            parts.append(f"function={ctx.function}")
        if ctx.method:
            parts.append(f"method={ctx.method}")
        if ctx.url:
            parts.append(f"url={ctx.url}")
        if ctx.status is not None:
            parts.append(f"status={ctx.status}")
        return " ".join(parts)
