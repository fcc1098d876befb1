from __future__ import annotations

import hashlib
import hmac


def sign_payload(payload: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 over the exact bytes that go on the wire."""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_signature(payload: bytes, candidate: str | bytes, secret: str) -> bool:
    """
    Constant-time check of a received signature.

    A candidate whose length differs from the expected digest is rejected
    without raising, and the comparison still runs over a full-length value,
    so the time taken does not depend on the candidate's length.
    """
    expected = sign_payload(payload, secret).encode("ascii")

    if isinstance(candidate, str):
        try:
            candidate_bytes = candidate.encode("ascii")
        except UnicodeEncodeError:
            candidate_bytes = b""
    else:
        candidate_bytes = bytes(candidate)

    if len(candidate_bytes) != len(expected):
        hmac.compare_digest(expected, expected)
        return False

    return hmac.compare_digest(expected, candidate_bytes)
