"""PKCE (RFC 7636) helpers for the customer account OAuth flow."""

from __future__ import annotations

import base64
import hashlib
import secrets


def _base64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def generate_code_verifier() -> str:
    """Return a random code verifier (32 random bytes, base64url, no padding)."""
    return _base64url(secrets.token_bytes(32))


def generate_code_challenge(verifier: str) -> str:
    """Return the S256 challenge for a verifier."""
    return _base64url(hashlib.sha256(verifier.encode("ascii")).digest())
