"""
Nebula Core — authenticated request protocol for the cloud document repository.

__version__ is the SDK version.  The credential and citation formats carry
their own protocol version (document.PROTOCOL_VERSION).
"""

__version__ = "0.1.0"

from .tokens import new_tag, new_version, is_version
from .canonical import canonicalize, canonical_text
from .crypto import (
    sha256_hex,
    generate_keypair,
    sign_bytes,
    verify_signature,
    public_key_to_did_key,
)
from .document import (
    PRIVATE,
    PUBLIC,
    Document,
    DocumentParameters,
    NotarizedDocument,
    Signature,
    duplicate,
    format_document,
    parse_notarized,
)
from .notary import Notary, LocalNotary, cite_document, verify_notarized
from .errors import ErrorContext, ExceptionKind, RepositoryError
from .config import RepositorySettings, RequestPolicy
from .credentials import generate_credentials
from .resources import (
    ALLOWED_METHODS,
    HttpMethod,
    RequestDescriptor,
    ResourceKind,
    make_identifier,
    validate_request,
)
from .transport import (
    CREDENTIALS_HEADER,
    interpret_response,
    send_request,
    translate_error,
)
