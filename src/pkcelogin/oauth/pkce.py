"""PKCE verifier/challenge and CSRF state generation (:rfc:`7636`)."""

from __future__ import annotations

import base64
import hashlib
import secrets

CHALLENGE_METHOD = "S256"

_MIN_VERIFIER_LENGTH = 43
_MAX_VERIFIER_LENGTH = 128


def compute_challenge(code_verifier: str) -> str:
    """Return the S256 ``code_challenge`` for *code_verifier*.

    ``BASE64URL(SHA256(ASCII(code_verifier)))`` with the padding stripped.
    """
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def generate_pkce_pair(num_bytes: int = 64) -> tuple[str, str]:
    """Generate a PKCE code_verifier and code_challenge (S256).

    Args:
        num_bytes: Random bytes behind the verifier. 64 bytes encode to 86
            characters; the result is clamped to the 43-128 characters
            :rfc:`7636` allows.

    Returns:
        A tuple of ``(code_verifier, code_challenge)``.

    Raises:
        ValueError: If *num_bytes* cannot produce a 43-character verifier.
    """
    if num_bytes < 32:
        raise ValueError("num_bytes must be at least 32")
    # RFC 7636: 43-128 characters from unreserved character set
    code_verifier = secrets.token_urlsafe(num_bytes)[:_MAX_VERIFIER_LENGTH]
    assert len(code_verifier) >= _MIN_VERIFIER_LENGTH
    return code_verifier, compute_challenge(code_verifier)


def generate_state(num_bytes: int = 32) -> str:
    """Generate an opaque, URL-safe CSRF state token."""
    return secrets.token_urlsafe(num_bytes)
