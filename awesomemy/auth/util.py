from __future__ import annotations

import base64
import secrets


def b64url(data: bytes) -> str:
    """Unpadded base64url, as used by PKCE challenges."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def random_token(nbytes: int = 32) -> str:
    # 32 bytes -> 43 URL-safe characters.
    return secrets.token_urlsafe(nbytes)


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()
