"""
Security utilities - password hashing, opaque tokens, fingerprints
"""
import hashlib
import secrets
import uuid
from datetime import datetime, timezone
from typing import Optional

from passlib.context import CryptContext

# Password hashing; bcrypt hashes from older imports still verify and get flagged for rehash
pwd_context = CryptContext(schemes=["argon2", "bcrypt"], deprecated="auto")

_dummy_hash: Optional[str] = None


def hash_password(password: str) -> str:
    """Hash a password using Argon2id."""
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    """Verify a password against its hash."""
    if not hashed_password:
        return False
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        # Unrecognised or malformed hash in storage
        return False


def verify_dummy_password(plain_password: str) -> None:
    """Burn the same hashing cost as a real verification for unknown accounts."""
    global _dummy_hash
    if _dummy_hash is None:
        _dummy_hash = pwd_context.hash(secrets.token_hex(16))
    pwd_context.verify(plain_password, _dummy_hash)


def generate_token() -> str:
    """Generate a high-entropy bearer token (64 hex chars)."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """One-way SHA-256 digest of a bearer token; only this is ever stored."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def device_fingerprint(user_agent: Optional[str], ip_address: Optional[str]) -> str:
    """Derive a client fingerprint from user agent and IP."""
    raw = f"{user_agent or 'Unknown'}|{ip_address or '0.0.0.0'}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def generate_uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)
