"""TOTP secrets, QR codes and recovery codes for two-factor authentication."""
from __future__ import annotations

import secrets
import string
import threading
import time
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

import pyotp
import qrcode
from qrcode.image.svg import SvgPathImage

RECOVERY_CODE_COUNT = 8
_RECOVERY_ALPHABET = string.ascii_letters + string.digits


def generate_recovery_code() -> str:
    left = "".join(secrets.choice(_RECOVERY_ALPHABET) for _ in range(10))
    right = "".join(secrets.choice(_RECOVERY_ALPHABET) for _ in range(10))
    return f"{left}-{right}"


def generate_recovery_codes(count: int = RECOVERY_CODE_COUNT) -> List[str]:
    return [generate_recovery_code() for _ in range(count)]


class TwoFactorProvider:
    """Wraps :mod:`pyotp` with a one-step verification window and replay protection.

    A time step that has already been accepted for a user is rejected on a
    second attempt, so an intercepted code cannot be reused within its
    validity window.
    """

    def __init__(self, issuer: str, *, interval: int = 30, digits: int = 6, window: int = 1) -> None:
        self._issuer = issuer
        self._interval = interval
        self._digits = digits
        self._window = window
        self._last_used: Dict[int, int] = {}
        self._lock = threading.Lock()

    def generate_secret(self) -> str:
        return pyotp.random_base32()

    def _totp(self, secret: str) -> pyotp.TOTP:
        return pyotp.TOTP(secret, digits=self._digits, interval=self._interval)

    def provisioning_uri(self, secret: str, email: str) -> str:
        return self._totp(secret).provisioning_uri(name=email, issuer_name=self._issuer)

    def qr_code_svg(self, secret: str, email: str) -> Tuple[str, str]:
        """Return ``(svg, url)`` for the authenticator app enrolment QR code."""

        url = self.provisioning_uri(secret, email)
        image = qrcode.make(url, image_factory=SvgPathImage, box_size=8, border=2)
        return image.to_string(encoding="unicode"), url

    def current_code(self, secret: str, *, at: Optional[float] = None) -> str:
        totp = self._totp(secret)
        return totp.at(at if at is not None else time.time())

    def verify(self, secret: str, code: str, *, user_id: Optional[int] = None, at: Optional[float] = None) -> bool:
        cleaned = (code or "").strip().replace(" ", "")
        if not cleaned.isdigit() or len(cleaned) != self._digits:
            return False

        totp = self._totp(secret)
        now = at if at is not None else time.time()
        current_step = totp.timecode(datetime.fromtimestamp(now, tz=timezone.utc))

        for offset in range(-self._window, self._window + 1):
            step = current_step + offset
            candidate = totp.generate_otp(step)
            if not secrets.compare_digest(candidate, cleaned):
                continue
            if user_id is None:
                return True
            with self._lock:
                last = self._last_used.get(user_id)
                if last is not None and step <= last:
                    return False
                self._last_used[user_id] = step
            return True
        return False

    def forget(self, user_id: int) -> None:
        with self._lock:
            self._last_used.pop(user_id, None)


__all__ = [
    "RECOVERY_CODE_COUNT",
    "TwoFactorProvider",
    "generate_recovery_code",
    "generate_recovery_codes",
]
