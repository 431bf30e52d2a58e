"""Password hashing for local-mode accounts (Supabase handles auth otherwise)."""

from __future__ import annotations

import base64
import hashlib
import hmac
import os

HASH_NAME = "sha256"
ITERATIONS = 120_000


def _derive(password: str, salt: bytes, iterations: int) -> bytes:
    return hashlib.pbkdf2_hmac(HASH_NAME, password.encode("utf-8"), salt, iterations)


def hash_password(password: str) -> str:
    if not password:
        raise ValueError("Password cannot be empty.")
    salt = os.urandom(16)
    digest = _derive(password, salt, ITERATIONS)
    return "$".join(
        [
            str(ITERATIONS),
            base64.b64encode(salt).decode("ascii"),
            base64.b64encode(digest).decode("ascii"),
        ]
    )


def verify_password(password: str, stored: str) -> bool:
    try:
        iters_str, salt_b64, digest_b64 = stored.split("$", 2)
        salt = base64.b64decode(salt_b64)
        expected = base64.b64decode(digest_b64)
        iterations = int(iters_str)
    except ValueError:
        return False
    return hmac.compare_digest(_derive(password, salt, iterations), expected)


def parse_bearer(header: str) -> str:
    parts = (header or "").split()
    if len(parts) == 2 and parts[0].lower() == "bearer" and parts[1].strip():
        return parts[1].strip()
    return ""
