"""Domain models for the starter kit."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional


@dataclass(frozen=True)
class User:
    """Represents a user account stored in the application database.

    Secrets (password hash, two-factor secret and recovery codes) never leave
    the :class:`~app.database.Database`; only their presence is exposed here.
    """

    id: int
    name: str
    email: str
    email_verified_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime
    has_two_factor_secret: bool = False
    two_factor_confirmed_at: Optional[datetime] = None

    @property
    def has_verified_email(self) -> bool:
        return self.email_verified_at is not None

    @property
    def two_factor_enabled(self) -> bool:
        """Two-factor is only enforced once the user has confirmed a code."""
        return self.has_two_factor_secret and self.two_factor_confirmed_at is not None

    def to_props(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "email_verified_at": self.email_verified_at.isoformat() if self.email_verified_at else None,
            "two_factor_enabled": self.two_factor_enabled,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


__all__ = ["User"]
