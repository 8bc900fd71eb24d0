"""
API key and password hashing utilities.

Security notes:
  • SHA-256 is used for key hashing — acceptable for API keys because
    they are high-entropy random strings (not low-entropy passwords).
  • Passwords use bcrypt; the hash carries its own salt and cost.
  • generate_api_key() returns the raw key exactly once — the caller
    must display it to the user immediately. It is never stored.
  • fingerprint() is the only form in which a credential may appear in
    logs or in the request log table.
"""

import hashlib
import secrets

import bcrypt

_FINGERPRINT_LENGTH = 10
_PREFIX_LENGTH = 12


def hash_api_key(raw_key: str) -> str:
    """
    Hash a raw API key using SHA-256.

    Returns the hex digest string for storage/lookup.
    """
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


def generate_api_key() -> tuple[str, str, str]:
    """
    Generate a new API key.

    Returns:
        (raw_key, key_hash, prefix) — raw_key is shown once, key_hash is
        stored, prefix identifies the key in the admin UI.
    """
    raw_key = secrets.token_hex(32)  # 64 hex chars = 256 bits
    return raw_key, hash_api_key(raw_key), raw_key[:_PREFIX_LENGTH]


def fingerprint(credential: str | None) -> str | None:
    """Truncate a credential to a short, log-safe prefix."""
    if not credential:
        return None
    return f"{credential[:_FINGERPRINT_LENGTH]}..."


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Constant-time bcrypt check; malformed hashes never match."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False
