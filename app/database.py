"""SQLite-backed persistence for users and password reset tokens."""
from __future__ import annotations

import base64
import hashlib
import json
import os
import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional

from cryptography.fernet import Fernet, InvalidToken

from .models import User
from .security import generate_token, hash_password, hash_token, tokens_match, verify_password


DUPLICATE_EMAIL_MESSAGE = "The email has already been taken."


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def resolve_database_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the application database."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "starter.sqlite3").resolve(strict=False)


def _serialize_datetime(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(str(value))


def _normalize_email(email: str) -> str:
    return email.strip().lower()


class Database:
    """Simple wrapper around SQLite for persisting user accounts."""

    def __init__(self, path: Path, *, encryption_secret: Optional[str] = None) -> None:
        _ensure_directory(path)
        self._path = path
        if encryption_secret is None:
            encryption_secret = os.getenv("STARTER_SESSION_SECRET")
        self._cipher = self._build_cipher(encryption_secret)

    @property
    def path(self) -> Path:
        return self._path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    def initialize(self) -> None:
        """Create the required tables if they do not already exist."""

        with self._connect() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    email TEXT NOT NULL UNIQUE,
                    email_verified_at TEXT,
                    password_hash TEXT NOT NULL,
                    two_factor_secret TEXT,
                    two_factor_recovery_codes TEXT,
                    two_factor_confirmed_at TEXT,
                    remember_token TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS password_reset_tokens (
                    email TEXT PRIMARY KEY,
                    token_hash TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );
                """
            )

            columns = {
                row["name"]
                for row in conn.execute("PRAGMA table_info(users)").fetchall()
            }
            if "two_factor_confirmed_at" not in columns:
                conn.execute("ALTER TABLE users ADD COLUMN two_factor_confirmed_at TEXT")
            if "remember_token" not in columns:
                conn.execute("ALTER TABLE users ADD COLUMN remember_token TEXT")

    # ------------------------------------------------------------------
    # User management
    # ------------------------------------------------------------------
    def create_user(
        self,
        name: str,
        email: str,
        password: str,
        *,
        email_verified: bool = False,
    ) -> User:
        """Create a new user account."""

        normalized_name = name.strip()
        if not normalized_name:
            raise ValueError("Name must not be empty")
        normalized_email = _normalize_email(email)
        if not normalized_email:
            raise ValueError("Email must not be empty")

        password_hash = hash_password(password)
        now = self._now()
        serialized_now = _serialize_datetime(now)
        verified_at = serialized_now if email_verified else None

        with self._connect() as conn:
            try:
                cursor = conn.execute(
                    """
                    INSERT INTO users (
                        name, email, email_verified_at, password_hash, created_at, updated_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (normalized_name, normalized_email, verified_at, password_hash, serialized_now, serialized_now),
                )
            except sqlite3.IntegrityError as exc:
                raise ValueError(DUPLICATE_EMAIL_MESSAGE) from exc
            user_id = cursor.lastrowid

        user = self.get_user(user_id)
        if user is None:
            raise RuntimeError("Failed to load user after creation")
        return user

    def get_user(self, user_id: int) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE email = ?",
                (_normalize_email(email),),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def list_users(self) -> List[User]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM users ORDER BY id").fetchall()
        return [self._row_to_user(row) for row in rows]

    def authenticate_user(self, email: str, password: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE email = ?",
                (_normalize_email(email),),
            ).fetchone()
        if row is None:
            return None
        if not verify_password(password, row["password_hash"]):
            return None
        return self._row_to_user(row)

    def verify_user_password(self, user_id: int, password: str) -> bool:
        """Return ``True`` if the supplied password matches the stored hash."""

        with self._connect() as conn:
            row = conn.execute(
                "SELECT password_hash FROM users WHERE id = ?",
                (user_id,),
            ).fetchone()

        if row is None:
            return False
        return verify_password(password, row["password_hash"])

    def update_user_profile(self, user_id: int, *, name: str, email: str) -> User:
        """Update the display name/email address for an existing user.

        Changing the email address clears the verification timestamp.
        """

        normalized_name = name.strip()
        if not normalized_name:
            raise ValueError("Name must not be empty")
        normalized_email = _normalize_email(email)
        if not normalized_email:
            raise ValueError("Email must not be empty")

        current = self.get_user(user_id)
        if current is None:
            raise ValueError("User not found")

        email_changed = current.email != normalized_email
        now = _serialize_datetime(self._now())

        with self._connect() as conn:
            try:
                if email_changed:
                    conn.execute(
                        """
                        UPDATE users
                           SET name = ?, email = ?, email_verified_at = NULL, updated_at = ?
                         WHERE id = ?
                        """,
                        (normalized_name, normalized_email, now, user_id),
                    )
                else:
                    conn.execute(
                        "UPDATE users SET name = ?, updated_at = ? WHERE id = ?",
                        (normalized_name, now, user_id),
                    )
            except sqlite3.IntegrityError as exc:
                raise ValueError(DUPLICATE_EMAIL_MESSAGE) from exc

        refreshed = self.get_user(user_id)
        if refreshed is None:
            raise ValueError("User not found")
        return refreshed

    def set_user_password(self, user_id: int, password: str) -> None:
        password_hash = hash_password(password)
        with self._connect() as conn:
            conn.execute(
                "UPDATE users SET password_hash = ?, updated_at = ? WHERE id = ?",
                (password_hash, _serialize_datetime(self._now()), user_id),
            )

    def mark_email_verified(self, user_id: int) -> bool:
        """Stamp the verification time; returns ``False`` if already verified."""

        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE users SET email_verified_at = ? WHERE id = ? AND email_verified_at IS NULL",
                (_serialize_datetime(self._now()), user_id),
            )
            return cursor.rowcount > 0

    def delete_user(self, user_id: int) -> bool:
        user = self.get_user(user_id)
        if user is None:
            return False
        with self._connect() as conn:
            conn.execute("DELETE FROM password_reset_tokens WHERE email = ?", (user.email,))
            cursor = conn.execute("DELETE FROM users WHERE id = ?", (user_id,))
            return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Remember-me tokens
    # ------------------------------------------------------------------
    def rotate_remember_token(self, user_id: int) -> str:
        token = generate_token(30)
        with self._connect() as conn:
            conn.execute(
                "UPDATE users SET remember_token = ? WHERE id = ?",
                (hash_token(token), user_id),
            )
        return token

    def clear_remember_token(self, user_id: int) -> None:
        with self._connect() as conn:
            conn.execute("UPDATE users SET remember_token = NULL WHERE id = ?", (user_id,))

    def get_user_by_remember_token(self, user_id: int, token: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None or not row["remember_token"]:
            return None
        if not tokens_match(token, row["remember_token"]):
            return None
        return self._row_to_user(row)

    # ------------------------------------------------------------------
    # Two-factor authentication
    # ------------------------------------------------------------------
    def enable_two_factor(self, user_id: int, secret: str, recovery_codes: List[str]) -> None:
        """Store a fresh (unconfirmed) secret together with its recovery codes."""

        if not secret or not recovery_codes:
            raise ValueError("A secret and recovery codes are required together")
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE users
                   SET two_factor_secret = ?,
                       two_factor_recovery_codes = ?,
                       two_factor_confirmed_at = NULL,
                       updated_at = ?
                 WHERE id = ?
                """,
                (
                    self._encrypt(secret),
                    self._encrypt(json.dumps(list(recovery_codes))),
                    _serialize_datetime(self._now()),
                    user_id,
                ),
            )
            if cursor.rowcount == 0:
                raise ValueError("User not found")

    def confirm_two_factor(self, user_id: int) -> None:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE users
                   SET two_factor_confirmed_at = ?, updated_at = ?
                 WHERE id = ?
                   AND two_factor_secret IS NOT NULL
                   AND two_factor_recovery_codes IS NOT NULL
                """,
                (_serialize_datetime(self._now()), _serialize_datetime(self._now()), user_id),
            )
            if cursor.rowcount == 0:
                raise ValueError("Two-factor authentication has not been enabled")

    def disable_two_factor(self, user_id: int) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE users
                   SET two_factor_secret = NULL,
                       two_factor_recovery_codes = NULL,
                       two_factor_confirmed_at = NULL,
                       updated_at = ?
                 WHERE id = ?
                """,
                (_serialize_datetime(self._now()), user_id),
            )

    def get_two_factor_secret(self, user_id: int) -> Optional[str]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT two_factor_secret FROM users WHERE id = ?",
                (user_id,),
            ).fetchone()
        if row is None or not row["two_factor_secret"]:
            return None
        return self._decrypt(str(row["two_factor_secret"]))

    def get_recovery_codes(self, user_id: int) -> List[str]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT two_factor_recovery_codes FROM users WHERE id = ?",
                (user_id,),
            ).fetchone()
        if row is None or not row["two_factor_recovery_codes"]:
            return []
        return list(json.loads(self._decrypt(str(row["two_factor_recovery_codes"]))))

    def set_recovery_codes(self, user_id: int, recovery_codes: List[str]) -> None:
        if not recovery_codes:
            raise ValueError("Recovery codes must not be empty")
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE users
                   SET two_factor_recovery_codes = ?, updated_at = ?
                 WHERE id = ? AND two_factor_secret IS NOT NULL
                """,
                (
                    self._encrypt(json.dumps(list(recovery_codes))),
                    _serialize_datetime(self._now()),
                    user_id,
                ),
            )
            if cursor.rowcount == 0:
                raise ValueError("Two-factor authentication has not been enabled")

    def replace_recovery_code(self, user_id: int, code: str, replacement: str) -> bool:
        """Swap a used recovery code for a new one; ``False`` if not found."""

        codes = self.get_recovery_codes(user_id)
        if code not in codes:
            return False
        codes[codes.index(code)] = replacement
        self.set_recovery_codes(user_id, codes)
        return True

    # ------------------------------------------------------------------
    # Password reset tokens
    # ------------------------------------------------------------------
    def create_password_reset_token(self, email: str) -> str:
        """Issue a reset token, replacing any existing token for ``email``."""

        token = generate_token(48)
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO password_reset_tokens (email, token_hash, created_at)
                VALUES (?, ?, ?)
                ON CONFLICT(email) DO UPDATE SET
                    token_hash = excluded.token_hash,
                    created_at = excluded.created_at
                """,
                (_normalize_email(email), hash_token(token), _serialize_datetime(self._now())),
            )
        return token

    def recently_issued_reset_token(self, email: str, throttle_seconds: int) -> bool:
        if throttle_seconds <= 0:
            return False
        created_at = self._reset_token_created_at(email)
        if created_at is None:
            return False
        return created_at + timedelta(seconds=throttle_seconds) > self._now()

    def verify_password_reset_token(self, email: str, token: str, *, expire_minutes: int) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM password_reset_tokens WHERE email = ?",
                (_normalize_email(email),),
            ).fetchone()
        if row is None:
            return False
        created_at = _parse_datetime(row["created_at"])
        if created_at is None or created_at + timedelta(minutes=expire_minutes) <= self._now():
            return False
        return tokens_match(token, row["token_hash"])

    def delete_password_reset_token(self, email: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "DELETE FROM password_reset_tokens WHERE email = ?",
                (_normalize_email(email),),
            )

    def _reset_token_created_at(self, email: str) -> Optional[datetime]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT created_at FROM password_reset_tokens WHERE email = ?",
                (_normalize_email(email),),
            ).fetchone()
        if row is None:
            return None
        return _parse_datetime(row["created_at"])

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _row_to_user(self, row: sqlite3.Row) -> User:
        has_secret = bool(row["two_factor_secret"]) and bool(row["two_factor_recovery_codes"])
        return User(
            id=int(row["id"]),
            name=str(row["name"]),
            email=str(row["email"]),
            email_verified_at=_parse_datetime(row["email_verified_at"]),
            created_at=_parse_datetime(str(row["created_at"])),
            updated_at=_parse_datetime(str(row["updated_at"])),
            has_two_factor_secret=has_secret,
            two_factor_confirmed_at=_parse_datetime(row["two_factor_confirmed_at"]) if has_secret else None,
        )

    def _build_cipher(self, secret: Optional[str]) -> Optional[Fernet]:
        if not secret:
            return None
        digest = hashlib.sha256(secret.encode("utf-8")).digest()
        key = base64.urlsafe_b64encode(digest)
        return Fernet(key)

    def _require_cipher(self) -> Fernet:
        if self._cipher is None:
            raise RuntimeError(
                "Encryption secret is not configured. Set STARTER_SESSION_SECRET to enable two-factor authentication."
            )
        return self._cipher

    def _encrypt(self, value: str) -> str:
        cipher = self._require_cipher()
        return cipher.encrypt(value.encode("utf-8")).decode("utf-8")

    def _decrypt(self, encrypted: str) -> str:
        cipher = self._require_cipher()
        try:
            plaintext = cipher.decrypt(encrypted.encode("utf-8"))
        except InvalidToken as exc:
            raise ValueError(
                "Stored two-factor data could not be decrypted. Disable and re-enable two-factor authentication."
            ) from exc
        return plaintext.decode("utf-8")


__all__ = ["DUPLICATE_EMAIL_MESSAGE", "Database", "resolve_database_path"]
