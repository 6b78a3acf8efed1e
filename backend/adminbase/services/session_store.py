"""
Session Store Service - database-backed access sessions and refresh tokens.

Only SHA-256 digests of bearer tokens are stored; the plaintext is returned
to the caller once, at creation time.
"""
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Tuple

from adminbase.core.logging import get_logger
from adminbase.core.security import generate_token, generate_uuid, hash_token, utcnow
from adminbase.db.base import format_timestamp
from adminbase.db.database import Database
from adminbase.db.models import AuthSession, RefreshToken

logger = get_logger(__name__)


class SessionStore:
    """Access-token sessions."""

    def __init__(self, db: Database, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    def create(self, user_id: int, ttl: timedelta) -> Tuple[str, AuthSession]:
        """Create a session and return ``(plaintext_token, session)``."""
        token = generate_token()
        now = self.clock()
        session = AuthSession.create(self.db, {
            "user_id": user_id,
            "token_hash": hash_token(token),
            "expires_at": now + ttl,
            "created_at": now,
        })
        return token, session

    def find_valid(self, token: str) -> Optional[AuthSession]:
        """Unexpired session for a plaintext token, if any."""
        if not token:
            return None
        return (
            AuthSession.query(self.db)
            .where("token_hash", hash_token(token))
            .where("expires_at", ">", format_timestamp(self.clock()))
            .first()
        )

    def revoke(self, token: str) -> int:
        """Delete the session for a token; unknown tokens are a no-op."""
        if not token:
            return 0
        return AuthSession.query(self.db).where("token_hash", hash_token(token)).delete()

    def revoke_all_for_user(self, user_id: int) -> int:
        return AuthSession.query(self.db).where("user_id", user_id).delete()

    def list_for_user(self, user_id: int) -> List[AuthSession]:
        return (
            AuthSession.query(self.db)
            .where("user_id", user_id)
            .where("expires_at", ">", format_timestamp(self.clock()))
            .order_by("created_at", "DESC")
            .get()
        )

    def cleanup_expired(self) -> int:
        return AuthSession.query(self.db).where("expires_at", "<=", format_timestamp(self.clock())).delete()


class RefreshTokenStore:
    """Refresh tokens; rotation deactivates rows instead of deleting them."""

    def __init__(self, db: Database, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    def issue(self, user_id: int, ttl: timedelta, fingerprint: Optional[str]) -> Tuple[str, RefreshToken]:
        """Create a refresh token and return ``(plaintext_token, row)``."""
        token = generate_token()
        row = RefreshToken.create(self.db, {
            "id": generate_uuid(),
            "user_id": user_id,
            "token_hash": hash_token(token),
            "expires_at": self.clock() + ttl,
            "is_active": True,
            "device_fingerprint": fingerprint,
        })
        return token, row

    def find_active(self, token: str, for_update: bool = False) -> Optional[RefreshToken]:
        if not token:
            return None
        query = (
            RefreshToken.query(self.db)
            .where("token_hash", hash_token(token))
            .where("is_active", True)
            .where("expires_at", ">", format_timestamp(self.clock()))
        )
        if for_update:
            query.lock_for_update()
        return query.first()

    def deactivate(self, token_id: str) -> bool:
        """Mark one token inactive; False when it was already inactive."""
        affected = (
            RefreshToken.query(self.db)
            .where("id", token_id)
            .where("is_active", True)
            .update({"is_active": False, "updated_at": format_timestamp(self.clock())})
        )
        return affected > 0

    def revoke_all_for_user(self, user_id: int) -> int:
        return (
            RefreshToken.query(self.db)
            .where("user_id", user_id)
            .where("is_active", True)
            .update({"is_active": False, "updated_at": format_timestamp(self.clock())})
        )

    def revoke_device(self, user_id: int, fingerprint: str) -> int:
        """Deactivate every active token a user holds on one device."""
        return (
            RefreshToken.query(self.db)
            .where("user_id", user_id)
            .where("device_fingerprint", fingerprint)
            .where("is_active", True)
            .update({"is_active": False, "updated_at": format_timestamp(self.clock())})
        )

    def active_for_user(self, user_id: int) -> List[RefreshToken]:
        return (
            RefreshToken.query(self.db)
            .where("user_id", user_id)
            .where("is_active", True)
            .where("expires_at", ">", format_timestamp(self.clock()))
            .order_by("created_at", "DESC")
            .get()
        )

    def cleanup_expired(self) -> int:
        removed = (
            RefreshToken.query(self.db)
            .where("expires_at", "<=", format_timestamp(self.clock()))
            .delete()
        )
        if removed:
            logger.info("Removed %d expired refresh tokens", removed)
        return removed
