"""
Deterministic identifier derivation.

Welkin external-id records need a GUID-shaped ``external_id``, but the value
we want to point at is an Outlook iCalUId, which is not a GUID. We derive a
name-based (version 3, MD5) UUID from it under a fixed namespace so the same
iCalUId always maps to the same identifier on every machine.
"""

import uuid

SYNC_NAMESPACE = uuid.UUID("0b0bc2a4-a46a-4479-98b3-d66b58fe732b")


def from_namespace_and_name(namespace: uuid.UUID, name: str) -> uuid.UUID:
    """RFC 4122 name-based UUID: MD5 over namespace bytes + UTF-8 name, version 3."""
    return uuid.uuid3(namespace, name)


def derive_guid(text: str) -> str:
    """Return the canonical string form of the identifier derived from ``text``."""
    return str(from_namespace_and_name(SYNC_NAMESPACE, text))
