"""
nebula_core/document.py — Document data model

The structures exchanged with the notary and attached to requests:

- Document:          a component (the content) plus its parameters
- DocumentParameters: tag, version, permissions and previous-version citation
- Signature:         Ed25519 signature over the canonical document
- NotarizedDocument: a document sealed by a notary; a request credential
                     is one of these

Canonical formatting is RFC 8785 JSON over model_dump(mode="json"), so a
document always formats identically regardless of field order.
"""

# NOTE: `from __future__ import annotations` is intentionally omitted,
# pydantic resolves field annotations at class creation.

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator

from .canonical import canonical_text, canonicalize
from .tokens import is_version


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

PUBLIC = "$Public"
PRIVATE = "$Private"

PROTOCOL_VERSION = "v1"


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------

class DocumentParameters(BaseModel):
    """Structured parameters attached to every document."""

    tag: str = Field(
        ...,
        min_length=1,
        description="Unique identifier shared by all versions of a document.",
    )
    version: str = Field(
        ...,
        description="Version token, e.g. v1 or v2.3.",
    )
    permissions: str = Field(
        default=PUBLIC,
        description="Permission marker, e.g. $Public or $Private.",
        pattern=r"^\$",
    )
    previous: Optional[str] = Field(
        default=None,
        description="Citation of the previous version. None for a first version.",
    )

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        if not is_version(v):
            raise ValueError(f"Invalid version token: {v!r}")
        return v


class Document(BaseModel):
    """A component plus its parameters."""

    component: Dict[str, Any] = Field(
        default_factory=dict,
        description="Document content. JSON-safe values only.",
    )
    parameters: DocumentParameters

    def get_parameter(self, name: str) -> Any:
        return getattr(self.parameters, name)

    def set_parameter(self, name: str, value: Any) -> None:
        """Replace one parameter, re-validating the parameter set."""
        values = self.parameters.model_dump()
        if name not in values:
            raise KeyError(f"Unknown document parameter: {name}")
        values[name] = value
        self.parameters = DocumentParameters(**values)


class Signature(BaseModel):
    """Signature over the canonical bytes of a document."""

    algorithm: str = Field(default="Ed25519")
    signer: str = Field(
        ...,
        description="Account (did:key) of the signing notary.",
        pattern=r"^did:",
    )
    value: str = Field(
        ...,
        description="Hex-encoded signature bytes.",
        pattern=r"^[0-9a-f]+$",
    )


class NotarizedDocument(BaseModel):
    """A document sealed by a notary.

    certificate is the citation of the notary certificate whose key made
    the signature; verifiers use it to look the public key up.
    """

    document: Document
    certificate: Document
    signature: Signature

    def signed_bytes(self) -> bytes:
        """The bytes the signature covers."""
        return signing_payload(self.document, self.certificate)


# ---------------------------------------------------------------------------
# Framework helpers
# ---------------------------------------------------------------------------

def signing_payload(document: Document, certificate: Document) -> bytes:
    """Canonical bytes of a document together with the certificate citation."""
    return canonicalize({
        "certificate": certificate.model_dump(mode="json"),
        "document": document.model_dump(mode="json"),
    })


def duplicate(document: Document) -> Document:
    """Deep copy, so the original is never mutated."""
    return document.model_copy(deep=True)


def format_document(document: BaseModel) -> str:
    """Canonical string form of a document (or notarized document)."""
    return canonical_text(document.model_dump(mode="json"))


def parse_notarized(text: str) -> NotarizedDocument:
    """Inverse of format_document for notarized documents."""
    return NotarizedDocument.model_validate_json(text)
