from __future__ import annotations

import base64
import hashlib
import os
import secrets

from cryptography.fernet import Fernet, InvalidToken
from flask import current_app
from passlib.context import CryptContext


pwd_context = CryptContext(
    schemes=["argon2"],
    deprecated="auto",
)


def hash_client_key(client_hash: str) -> str:
    """Store an argon2 hash of the client-provided SHA-256(passphrase)."""
    return pwd_context.hash(client_hash)


def verify_client_key(client_hash: str, stored_hash: str) -> bool:
    return pwd_context.verify(client_hash, stored_hash)


def generate_participant_token(num_bytes: int = 24) -> str:
    """URL-safe secret for a participant's questionnaire link."""
    return secrets.token_urlsafe(num_bytes)


# ---------------------------------------------------------------------------
# Assignment encryption-at-rest
#
# Edges are stored as (giver_id, Fernet(recipient_id)) so who-gives-to-whom is
# not readable from the database alone. Anyone holding ASSIGNMENT_ENC_KEY or
# SECRET_KEY can still decrypt.
# ---------------------------------------------------------------------------


def _assignment_fernet() -> Fernet:
    """Returns a Fernet instance keyed by ASSIGNMENT_ENC_KEY or derived from SECRET_KEY."""
    explicit = (current_app.config.get("ASSIGNMENT_ENC_KEY") or os.environ.get("ASSIGNMENT_ENC_KEY") or "").strip()
    if explicit:
        # urlsafe base64-encoded 32-byte key
        return Fernet(explicit.encode("utf-8"))

    secret = (current_app.config.get("SECRET_KEY") or "").encode("utf-8")
    digest = hashlib.sha256(b"shuffler-assignments|" + secret).digest()
    return Fernet(base64.urlsafe_b64encode(digest))


def encrypt_recipient(recipient_id: int) -> str:
    token = _assignment_fernet().encrypt(str(int(recipient_id)).encode("utf-8"))
    return token.decode("utf-8")


def decrypt_recipient(token: str) -> int:
    """Raises ValueError if the token cannot be decrypted with the current key."""
    try:
        raw = _assignment_fernet().decrypt(token.encode("utf-8"))
        return int(raw.decode("utf-8"))
    except (InvalidToken, ValueError, TypeError) as e:
        raise ValueError("Invalid assignment token") from e
