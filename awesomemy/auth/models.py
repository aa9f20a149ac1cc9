from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

# One nullable email slot per supported provider. Adding a provider adds a slot
# here and a matching `<provider>_email` column (with a UNIQUE constraint).
PROVIDER_EMAIL_SLOTS: Tuple[str, ...] = ("github", "google", "oidc")


def email_column(provider: str) -> str:
    if provider not in PROVIDER_EMAIL_SLOTS:
        raise ValueError(f"Unknown provider slot: {provider}")
    return f"{provider}_email"


@dataclass(frozen=True)
class User:
    """Internal user record. `user_id` is the ownership key and is never exposed."""

    user_id: int
    uuid: uuid.UUID
    created_at: datetime
    emails: Dict[str, Optional[str]] = field(default_factory=dict)

    def email_for(self, provider: str) -> Optional[str]:
        return self.emails.get(provider)

    def to_public(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"uuid": str(self.uuid)}
        for slot in PROVIDER_EMAIL_SLOTS:
            out[email_column(slot)] = self.emails.get(slot)
        out["created_at"] = self.created_at.isoformat()
        return out


@dataclass(frozen=True)
class AccessToken:
    """Provider access token. Kept in memory for the duration of one callback only."""

    access_token: str
    token_type: str = "bearer"
    id_token: Optional[str] = None
    scope: Optional[str] = None
