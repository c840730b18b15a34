"""
nebula_core/credentials.py — Per-request credentials

A credential is the notary's current citation, re-parameterized with a
single-use identity and notarized:

    get_citation → duplicate → tag/version/permissions/previous → notarize

A credential is minted for every outbound request and never reused.
Notary failures propagate unchanged.
"""

from __future__ import annotations

from .document import PRIVATE, NotarizedDocument, duplicate
from .notary import Notary
from .tokens import new_tag, new_version


async def generate_credentials(notary: Notary) -> NotarizedDocument:
    citation = await notary.get_citation()
    document = duplicate(citation)
    document.set_parameter("tag", new_tag())
    document.set_parameter("version", new_version())
    document.set_parameter("permissions", PRIVATE)
    document.set_parameter("previous", None)
    return await notary.notarize_document(document)
