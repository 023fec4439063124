"""Webhook signature verification (X-Hub-Signature-256)."""

from __future__ import annotations

import hashlib
import hmac

from .errors import AuthenticationError

SIGNATURE_PREFIX = "sha256="


def compute_signature(body: bytes, secret: str) -> str:
    """Return the header value GitHub would send for this body."""
    digest = hmac.new(secret.encode("utf-8"), msg=body, digestmod=hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(body: bytes, signature_header: str | None, secret: str) -> bool:
    """Verify a webhook body against its X-Hub-Signature-256 header.

    Accepts ``sha256=<hex>`` and a bare hex digest. The comparison is
    constant-time. An empty secret never validates.
    """
    if not secret or not signature_header:
        return False

    provided = signature_header.strip()
    if provided.startswith(SIGNATURE_PREFIX):
        provided = provided[len(SIGNATURE_PREFIX) :]

    expected = hmac.new(secret.encode("utf-8"), msg=body, digestmod=hashlib.sha256).hexdigest()
    provided_bytes = provided.lower().encode("ascii", "replace")
    return hmac.compare_digest(provided_bytes, expected.encode("ascii"))


def require_signature(body: bytes, signature_header: str | None, secret: str) -> None:
    """Raise AuthenticationError unless the body carries a valid signature."""
    if not signature_header:
        raise AuthenticationError("Missing X-Hub-Signature-256 header")
    if not verify_signature(body, signature_header, secret):
        raise AuthenticationError("Signature does not match the request body")
