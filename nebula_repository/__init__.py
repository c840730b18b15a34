"""
nebula_repository — Client for the Nebula cloud document repository.

One async operation per (resource kind, action):

    certificate   exists / fetch / create          HEAD / GET / POST
    draft         exists / fetch / save / delete   HEAD / GET / PUT / DELETE
    document      exists / fetch / create          HEAD / GET / POST
    type          exists / fetch / create          HEAD / GET / POST
    queue         queue / dequeue                  PUT / GET

Architecture:
    Caller → CloudRepository → credentials → validation → transport → server

Every operation runs the same pipeline and converts any failure into a
single `unexpected` RepositoryError carrying the operation name, account,
URL, identifier and payload excerpt, with the original error chained as
its cause.  A missing resource is not a failure: exists-style calls
return False and fetch-style calls return None.

The client holds no mutable state.  Operations may be awaited
concurrently without coordination; the server is relied upon for
immutability and queue ordering.
"""

import asyncio
import logging
from typing import Optional

import httpx

from nebula_core.canonical import canonical_text
from nebula_core.config import RepositorySettings, RequestPolicy, normalize_url
from nebula_core.credentials import generate_credentials
from nebula_core.errors import ErrorContext, ExceptionKind, RepositoryError, excerpt
from nebula_core.notary import Notary
from nebula_core.resources import (
    HttpMethod,
    ResourceKind,
    make_identifier,
    validate_request,
)
from nebula_core.transport import Outcome, send_request

logger = logging.getLogger(__name__)


class CloudRepository:
    """Authenticated client for one cloud repository.

    Args:
        notary:    Notary used to mint a credential for every request.
        url:       Base address of the repository (http or https).
        debug:     Log each wrapped exception before raising it.  Never
                   changes whether the exception propagates.
        policy:    Timeout/retry policy.  Defaults to no timeout and no
                   retries.
        transport: Optional httpx transport, e.g. httpx.MockTransport.
    """

    def __init__(
        self,
        notary: Notary,
        url: str,
        debug: bool = False,
        policy: Optional[RequestPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._notary = notary
        self._url = normalize_url(url)
        self._debug = debug
        self._policy = policy or RequestPolicy()
        self._transport = transport
        self._account = notary.get_account()

    @classmethod
    def from_settings(
        cls,
        notary: Notary,
        settings: Optional[RepositorySettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "CloudRepository":
        """Build a client from NEBULA_* environment settings."""
        settings = settings or RepositorySettings()
        return cls(
            notary,
            settings.url,
            debug=settings.debug,
            policy=settings.to_policy(),
            transport=transport,
        )

    # ------------------------------------------------------------------
    # Attributes
    # ------------------------------------------------------------------

    def get_url(self) -> str:
        return self._url

    @property
    def account(self) -> str:
        return self._account

    @property
    def policy(self) -> RequestPolicy:
        return self._policy

    def __str__(self) -> str:
        return canonical_text({
            "module": "CloudRepository",
            "account": self._account,
            "url": self._url,
        })

    def __repr__(self) -> str:
        return f"CloudRepository(account={self._account!r}, url={self._url!r})"

    # ------------------------------------------------------------------
    # Certificates (immutable)
    # ------------------------------------------------------------------

    async def certificate_exists(self, certificate_id: str) -> bool:
        return await self._call(
            "certificate_exists", ResourceKind.CERTIFICATE, HttpMethod.HEAD,
            certificate_id,
            text="An unexpected error occurred while attempting to check "
                 "whether the certificate exists.",
        )

    async def fetch_certificate(self, certificate_id: str) -> Optional[str]:
        """Canonical source of the certificate, or None if it doesn't exist."""
        return await self._call(
            "fetch_certificate", ResourceKind.CERTIFICATE, HttpMethod.GET,
            certificate_id,
            text="An unexpected error occurred while attempting to fetch "
                 "the certificate.",
        )

    async def create_certificate(self, certificate_id: str, certificate: str) -> None:
        """Create a certificate.  Fails if one already exists for the id."""
        await self._call(
            "create_certificate", ResourceKind.CERTIFICATE, HttpMethod.POST,
            certificate_id, certificate,
            text="An unexpected error occurred while attempting to create "
                 "the certificate.",
        )

    # ------------------------------------------------------------------
    # Drafts (mutable, deletable)
    # ------------------------------------------------------------------

    async def draft_exists(self, tag: str, version: str) -> bool:
        return await self._call(
            "draft_exists", ResourceKind.DRAFT, HttpMethod.HEAD,
            make_identifier(tag, version),
            text="An unexpected error occurred while attempting to check "
                 "whether the draft exists.",
        )

    async def fetch_draft(self, tag: str, version: str) -> Optional[str]:
        return await self._call(
            "fetch_draft", ResourceKind.DRAFT, HttpMethod.GET,
            make_identifier(tag, version),
            text="An unexpected error occurred while attempting to fetch "
                 "the draft.",
        )

    async def save_draft(self, tag: str, version: str, draft: str) -> None:
        """Create the draft, or replace it if it already exists."""
        await self._call(
            "save_draft", ResourceKind.DRAFT, HttpMethod.PUT,
            make_identifier(tag, version), draft,
            text="An unexpected error occurred while attempting to save "
                 "the draft.",
        )

    async def delete_draft(self, tag: str, version: str) -> bool:
        """Delete the draft.  Returns False if there was nothing to delete."""
        return await self._call(
            "delete_draft", ResourceKind.DRAFT, HttpMethod.DELETE,
            make_identifier(tag, version),
            text="An unexpected error occurred while attempting to delete "
                 "the draft.",
        )

    # ------------------------------------------------------------------
    # Documents (immutable)
    # ------------------------------------------------------------------

    async def document_exists(self, document_id: str) -> bool:
        return await self._call(
            "document_exists", ResourceKind.DOCUMENT, HttpMethod.HEAD,
            document_id,
            text="An unexpected error occurred while attempting to check "
                 "whether the document exists.",
        )

    async def fetch_document(self, document_id: str) -> Optional[str]:
        return await self._call(
            "fetch_document", ResourceKind.DOCUMENT, HttpMethod.GET,
            document_id,
            text="An unexpected error occurred while attempting to fetch "
                 "the document.",
        )

    async def create_document(self, document_id: str, document: str) -> None:
        await self._call(
            "create_document", ResourceKind.DOCUMENT, HttpMethod.POST,
            document_id, document,
            text="An unexpected error occurred while attempting to create "
                 "the document.",
        )

    # ------------------------------------------------------------------
    # Types (immutable)
    # ------------------------------------------------------------------

    async def type_exists(self, type_id: str) -> bool:
        return await self._call(
            "type_exists", ResourceKind.TYPE, HttpMethod.HEAD,
            type_id,
            text="An unexpected error occurred while attempting to check "
                 "whether the type exists.",
        )

    async def fetch_type(self, type_id: str) -> Optional[str]:
        return await self._call(
            "fetch_type", ResourceKind.TYPE, HttpMethod.GET,
            type_id,
            text="An unexpected error occurred while attempting to fetch "
                 "the type.",
        )

    async def create_type(self, type_id: str, type_: str) -> None:
        await self._call(
            "create_type", ResourceKind.TYPE, HttpMethod.POST,
            type_id, type_,
            text="An unexpected error occurred while attempting to create "
                 "the type.",
        )

    # ------------------------------------------------------------------
    # Queues
    # ------------------------------------------------------------------

    async def queue_message(self, queue_id: str, message: str) -> None:
        await self._call(
            "queue_message", ResourceKind.QUEUE, HttpMethod.PUT,
            queue_id, message,
            text="An unexpected error occurred while attempting to queue "
                 "the message.",
        )

    async def dequeue_message(self, queue_id: str) -> Optional[str]:
        """Remove a message from the queue, or None if it is empty.

        Which message is returned is up to the server; order is not
        guaranteed to be FIFO.
        """
        return await self._call(
            "dequeue_message", ResourceKind.QUEUE, HttpMethod.GET,
            queue_id,
            text="An unexpected error occurred while attempting to dequeue "
                 "a message.",
        )

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _call(
        self,
        function_name: str,
        kind: ResourceKind,
        method: HttpMethod,
        identifier: str,
        payload: Optional[str] = None,
        *,
        text: str,
    ) -> Outcome:
        """Run one operation, wrapping any failure as `unexpected`."""
        try:
            return await self._request(function_name, kind, method, identifier, payload)
        except Exception as cause:
            exception = RepositoryError(
                text,
                ExceptionKind.UNEXPECTED,
                ErrorContext(
                    function=function_name,
                    account=self._account,
                    url=self._url,
                    method=method.value,
                    resource_kind=kind.value,
                    identifier=identifier,
                    payload=excerpt(payload),
                ),
                cause,
            )
            if self._debug:
                logger.error("%s", exception, extra={"error": exception.to_dict()})
            raise exception from cause

    async def _request(
        self,
        function_name: str,
        kind: ResourceKind,
        method: HttpMethod,
        identifier: str,
        payload: Optional[str],
    ) -> Outcome:
        """credentials → validate → dispatch, retrying serverDown per policy.

        Each attempt mints its own credential.
        """
        attempt = 0
        while True:
            credentials = await generate_credentials(self._notary)
            descriptor = validate_request(
                kind, method, identifier, payload,
                function_name=function_name, url=self._url,
            )
            try:
                return await send_request(
                    credentials, function_name, self._url, descriptor,
                    policy=self._policy, transport=self._transport,
                )
            except RepositoryError as e:
                if e.kind != ExceptionKind.SERVER_DOWN or attempt >= self._policy.max_retries:
                    raise
                delay = self._policy.delay_for(attempt)
                logger.warning(
                    "%s: no response from %s, retry %d/%d in %.2fs",
                    function_name, e.context.url, attempt + 1,
                    self._policy.max_retries, delay,
                )
                await asyncio.sleep(delay)
                attempt += 1
