"""Password hashing and signed-token helpers."""
from __future__ import annotations

import hashlib
import hmac
import secrets
from typing import Optional, Tuple

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from passlib.context import CryptContext


_pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    if not password:
        raise ValueError("Password must not be empty")
    return _pwd_context.hash(password)


def verify_password(password: str, hashed: Optional[str]) -> bool:
    if not hashed or not password:
        return False
    try:
        return _pwd_context.verify(password, hashed)
    except ValueError:
        return False


def generate_token(nbytes: int = 32) -> str:
    return secrets.token_urlsafe(nbytes)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def tokens_match(token: str, hashed: str) -> bool:
    return hmac.compare_digest(hash_token(token), hashed)


def email_hash(email: str) -> str:
    """Digest used in email verification links."""
    return hashlib.sha1(email.encode("utf-8")).hexdigest()


class URLSigner:
    """Sign and verify short payloads for links and cookies."""

    def __init__(self, secret: str) -> None:
        if not secret:
            raise ValueError("A secret is required to sign URLs")
        self._serializer = URLSafeTimedSerializer(secret)

    def sign(self, payload: object, *, salt: str) -> str:
        return self._serializer.dumps(payload, salt=salt)

    def unsign(self, token: str, *, salt: str, max_age: Optional[int] = None) -> Tuple[Optional[object], bool]:
        """Return ``(payload, expired)``; payload is ``None`` when invalid."""

        try:
            return self._serializer.loads(token, salt=salt, max_age=max_age), False
        except SignatureExpired:
            return None, True
        except BadSignature:
            return None, False


__all__ = [
    "URLSigner",
    "email_hash",
    "generate_token",
    "hash_password",
    "hash_token",
    "tokens_match",
    "verify_password",
]
