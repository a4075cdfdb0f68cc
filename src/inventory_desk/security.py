"""Password hashing and signed session tokens."""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import os
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

_SCHEME = "pbkdf2_sha256"
_ITERATIONS = 390_000
_SALT_BYTES = 16


@dataclass(frozen=True, slots=True)
class SessionInfo:
    """A verified session; expiry is derived from the issue timestamp."""

    username: str
    issued_at: datetime
    expires_at: datetime


def _derive(password: str, salt: bytes, iterations: int) -> bytes:
    return hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)


def hash_password(password: str, *, iterations: int = _ITERATIONS) -> str:
    """Hash *password* as ``pbkdf2_sha256$<iterations>$<salt>$<digest>``."""

    salt = os.urandom(_SALT_BYTES)
    digest = _derive(password, salt, iterations)
    encoded = [base64.b64encode(part).decode("ascii") for part in (salt, digest)]
    return "$".join([_SCHEME, str(iterations), *encoded])


def verify_password(password: str, stored_hash: str) -> bool:
    """Check *password* against a value from :func:`hash_password`; malformed hashes never match."""

    parts = stored_hash.split("$")
    if len(parts) != 4 or parts[0] != _SCHEME:
        return False
    try:
        iterations = int(parts[1])
        salt = base64.b64decode(parts[2], validate=True)
        digest = base64.b64decode(parts[3], validate=True)
    except (binascii.Error, ValueError):
        return False
    if iterations <= 0:
        return False
    return hmac.compare_digest(digest, _derive(password, salt, iterations))


def _signature(payload: str, secret_key: str) -> str:
    digest = hmac.new(secret_key.encode(), payload.encode(), hashlib.sha256).digest()
    return base64.urlsafe_b64encode(digest).decode().rstrip("=")


def issue_session(username: str, secret_key: str, issued_at: Optional[float] = None) -> str:
    """Return a token binding *username* to the moment it was issued."""

    issued = int(issued_at if issued_at is not None else time.time())
    payload = f"{username}:{issued}"
    return f"{payload}.{_signature(payload, secret_key)}"


def read_session(
    token: str, secret_key: str, max_age: int, now: Optional[float] = None
) -> SessionInfo | None:
    """Validate *token* and return its session, or ``None`` when tampered or expired."""

    try:
        payload, signature = token.rsplit(".", 1)
        username, issued_raw = payload.rsplit(":", 1)
        issued = int(issued_raw)
    except ValueError:
        return None

    if not hmac.compare_digest(_signature(payload, secret_key).encode(), signature.encode()):
        return None

    current = now if now is not None else time.time()
    if current - issued >= max_age or issued > current + 60:
        return None

    issued_at = datetime.fromtimestamp(issued, tz=timezone.utc)
    expires_at = datetime.fromtimestamp(issued + max_age, tz=timezone.utc)
    return SessionInfo(username=username, issued_at=issued_at, expires_at=expires_at)
