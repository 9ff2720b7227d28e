"""Content hash used to skip redundant session writes."""

from __future__ import annotations

import hashlib


def fingerprint(payload: str | bytes) -> str:
    """Return the MD5 hex digest of a serialized session payload.

    Not a security control: it only answers "did the data change since it
    was read".
    """
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    return hashlib.md5(payload, usedforsecurity=False).hexdigest()


EMPTY_FINGERPRINT = fingerprint(b"")
