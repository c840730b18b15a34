"""
nebula_core/notary.py — Notary contract and local Ed25519 notary

Notarize: canonicalize (certificate citation + document) → Ed25519 sign
Verify:   check the citation digest against the certificate, then the
          signature against the certificate's public key

The repository client only depends on the Notary protocol.  LocalNotary
is an in-process implementation holding its own key; a hardware or
remote notary can replace it as long as it satisfies the protocol.
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
)

from .canonical import canonicalize
from .crypto import (
    generate_keypair,
    public_key_from_hex,
    public_key_to_did_key,
    public_key_to_raw,
    sha256_hex,
    sign_bytes,
    verify_signature,
)
from .document import (
    PROTOCOL_VERSION,
    PUBLIC,
    Document,
    DocumentParameters,
    NotarizedDocument,
    Signature,
    duplicate,
    signing_payload,
)
from .tokens import new_tag, new_version


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------

@runtime_checkable
class Notary(Protocol):
    """What the repository client needs from a digital notary."""

    def get_account(self) -> str: ...

    async def get_citation(self) -> Document: ...

    async def notarize_document(self, document: Document) -> NotarizedDocument: ...


# ---------------------------------------------------------------------------
# Citations
# ---------------------------------------------------------------------------

def cite_document(document: Document) -> Document:
    """Build a citation referencing a specific version of a document.

    The citation is itself a document, so it can be duplicated and
    re-parameterized (which is how credentials are derived from it).
    """
    return Document(
        component={
            "protocol": PROTOCOL_VERSION,
            "tag": document.parameters.tag,
            "version": document.parameters.version,
            "digest": sha256_hex(canonicalize(document.model_dump(mode="json"))),
        },
        parameters=DocumentParameters(
            tag=new_tag(),
            version=new_version(),
            permissions=PUBLIC,
        ),
    )


def citation_matches(citation: Document, document: Document) -> bool:
    component = citation.component
    return (
        component.get("tag") == document.parameters.tag
        and component.get("version") == document.parameters.version
        and component.get("digest")
        == sha256_hex(canonicalize(document.model_dump(mode="json")))
    )


# ---------------------------------------------------------------------------
# Local notary
# ---------------------------------------------------------------------------

class LocalNotary:
    """In-process notary backed by one Ed25519 key.

    On construction a self-describing certificate document is built for
    the public key; get_citation() cites that certificate.

    Args:
        private_key: Ed25519 signing key.  A new key is generated if None.
    """

    def __init__(self, private_key: Optional[Ed25519PrivateKey] = None) -> None:
        if private_key is None:
            private_key, _ = generate_keypair()
        self._private_key = private_key
        public_key = private_key.public_key()
        self._account = public_key_to_did_key(public_key)

        self._certificate = Document(
            component={
                "account": self._account,
                "algorithm": "Ed25519",
                "publicKey": public_key_to_raw(public_key).hex(),
            },
            parameters=DocumentParameters(
                tag=new_tag(),
                version=new_version(),
                permissions=PUBLIC,
            ),
        )
        self._citation = cite_document(self._certificate)

    @property
    def certificate(self) -> Document:
        return duplicate(self._certificate)

    def get_account(self) -> str:
        return self._account

    async def get_citation(self) -> Document:
        return duplicate(self._citation)

    async def notarize_document(self, document: Document) -> NotarizedDocument:
        """Seal a document.  The input document is not mutated."""
        document = duplicate(document)
        certificate = duplicate(self._citation)
        value = sign_bytes(self._private_key, signing_payload(document, certificate))
        return NotarizedDocument(
            document=document,
            certificate=certificate,
            signature=Signature(signer=self._account, value=value),
        )


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------

def verify_notarized(notarized: NotarizedDocument, certificate: Document) -> dict:
    """Verify a notarized document against the notary certificate it cites.

    Returns dict with verification results, errors listed in "errors".
    """
    result = {
        "citation_valid": False,
        "signer_match": False,
        "signature_valid": False,
        "errors": [],
    }

    if citation_matches(notarized.certificate, certificate):
        result["citation_valid"] = True
    else:
        result["errors"].append("Certificate citation does not match certificate")

    account = certificate.component.get("account")
    if notarized.signature.signer == account:
        result["signer_match"] = True
    else:
        result["errors"].append(
            f"Signer mismatch: signature says {notarized.signature.signer}, "
            f"certificate says {account}"
        )

    try:
        public_key = public_key_from_hex(certificate.component["publicKey"])
    except (KeyError, ValueError) as e:
        result["errors"].append(f"Unusable certificate public key: {e}")
        return result

    if verify_signature(public_key, notarized.signed_bytes(), notarized.signature.value):
        result["signature_valid"] = True
    else:
        result["errors"].append("Signature verification failed")

    return result
