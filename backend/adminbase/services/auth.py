"""
Authentication lifecycle: registration, login, token validation,
refresh-token rotation, logout and session maintenance.

Expected failures are returned as ``AuthResult(success=False, error=...)``;
storage errors propagate to the caller untouched.
"""
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from email_validator import EmailNotValidError, validate_email

from adminbase.core.config import Settings, settings as default_settings
from adminbase.core.logging import get_logger
from adminbase.core.security import (
    device_fingerprint,
    hash_password,
    utcnow,
    verify_dummy_password,
    verify_password,
)
from adminbase.db.base import format_timestamp
from adminbase.db.database import Database
from adminbase.db.models import PRIVILEGED_ROLES, SystemSetting, User, UserRole
from adminbase.services.audit import AuditService
from adminbase.services.session_store import RefreshTokenStore, SessionStore

logger = get_logger(__name__)

INVALID_CREDENTIALS = "Invalid credentials"
INVALID_REFRESH_TOKEN = "Invalid or expired refresh token"
TOO_MANY_ATTEMPTS = "Too many failed attempts. Please try again later."
MIN_PASSWORD_LENGTH = 7
MAX_USERNAME_LENGTH = 150


@dataclass
class AuthResult:
    """Outcome of an authentication operation. Tokens are plaintext and shown once."""
    success: bool
    error: Optional[str] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    refresh_expires_at: Optional[datetime] = None
    user: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def failure(cls, error: str) -> "AuthResult":
        return cls(success=False, error=error)


@dataclass(frozen=True)
class Actor:
    """The authenticated user, as seen by the rest of the request."""
    id: int
    username: str
    display_name: str
    email: str
    role: str
    timezone: str = "UTC"
    currency: str = "USD"

    @classmethod
    def from_user(cls, user: User) -> "Actor":
        return cls(
            id=int(user.id),
            username=user.username,
            display_name=user.display_name or user.username,
            email=user.email,
            role=user.role,
            timezone=user.timezone or "UTC",
            currency=user.currency or "USD",
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class AuthenticationService:
    """Login, logout, token validation and rotation over the session stores."""

    def __init__(
        self,
        db: Database,
        clock: Callable[[], datetime] = utcnow,
        config: Optional[Settings] = None,
    ):
        self.db = db
        self.clock = clock
        self.config = config or default_settings
        self.sessions = SessionStore(db, clock)
        self.refresh_tokens = RefreshTokenStore(db, clock)
        self.audit = AuditService(db, clock)

    # -- policy -------------------------------------------------------------

    def token_ttls(self, remember_me: bool) -> tuple:
        """``(access_ttl, refresh_ttl)`` for a login."""
        if remember_me:
            return (
                timedelta(days=self.config.REMEMBER_ACCESS_TOKEN_TTL_DAYS),
                timedelta(days=self.config.REMEMBER_REFRESH_TOKEN_TTL_DAYS),
            )
        return (
            timedelta(hours=self.config.ACCESS_TOKEN_TTL_HOURS),
            timedelta(days=self.config.REFRESH_TOKEN_TTL_DAYS),
        )

    def requires_email_verification(self) -> bool:
        return SystemSetting.get_bool(
            self.db, "require_email_verifications", self.config.REQUIRE_EMAIL_VERIFICATION
        )

    def ip_check_enabled(self) -> bool:
        if not self.config.LOGIN_IP_CHECK_ENABLED:
            return False
        return SystemSetting.get_bool(self.db, "enable_ip_check", True)

    def _account_block_reason(self, user: User) -> Optional[str]:
        if not user.is_active:
            return "Account is deactivated"
        if not user.is_approved:
            return "Account is awaiting approval"
        if self.requires_email_verification() and not user.email_verified_at:
            return "Email verification required"
        return None

    # -- registration -------------------------------------------------------

    def register(
        self,
        username: str,
        email: str,
        password: str,
        role: str = UserRole.CLIENT.value,
        allow_privileged: bool = False,
        is_approved: bool = False,
        approved_by: Optional[int] = None,
        email_verified: bool = False,
    ) -> AuthResult:
        """Create a user account; privileged roles need ``allow_privileged``."""
        if len(password or "") < MIN_PASSWORD_LENGTH:
            return AuthResult.failure(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

        username = (username or "").strip()
        email = (email or "").strip().lower()

        if not username or len(username) > MAX_USERNAME_LENGTH:
            return AuthResult.failure("Invalid username")

        try:
            validate_email(email, check_deliverability=False)
        except EmailNotValidError:
            return AuthResult.failure("Invalid email address")

        if role not in {member.value for member in UserRole}:
            return AuthResult.failure("Invalid role")
        if role in PRIVILEGED_ROLES and not allow_privileged:
            return AuthResult.failure("Privileged roles require admin approval")

        if User.username_or_email_taken(self.db, username, email):
            return AuthResult.failure("User already exists")

        now = self.clock()
        with self.db.transaction():
            user = User.create(self.db, {
                "username": username,
                "display_name": username,
                "email": email,
                "password_hash": hash_password(password),
                "role": role,
                "is_active": True,
                "is_approved": is_approved,
                "approved_at": now if is_approved else None,
                "approved_by": approved_by,
                "email_verified_at": now if email_verified else None,
                "timezone": "UTC",
                "currency": "USD",
                "preferences": {},
            })

        self.audit.log_auth(
            AuditService.REGISTER,
            user_id=user.id,
            details={"username": username, "email": email},
        )
        return AuthResult(success=True, user=user.to_dict())

    # -- login / logout -----------------------------------------------------

    def login(self, identifier: str, password: str, remember_me: bool = False) -> AuthResult:
        """Authenticate by username or e-mail and mint an access/refresh token pair."""
        context = self.db.audit_context

        if self.ip_check_enabled() and self.audit.is_suspicious_ip(
            context.ip_address,
            self.config.FAILED_LOGIN_THRESHOLD,
            self.config.FAILED_LOGIN_WINDOW_MINUTES,
        ):
            self.audit.log_auth(AuditService.LOGIN_BLOCKED, details={"identifier": identifier})
            return AuthResult.failure(TOO_MANY_ATTEMPTS)

        user = User.find_by_identifier(self.db, identifier or "")
        if user is None:
            verify_dummy_password(password)
            password_ok = False
        else:
            password_ok = verify_password(password, user.password_hash)

        if not password_ok:
            logger.warning("Failed login attempt from %s", context.ip_address)
            self.audit.log_auth(AuditService.LOGIN_FAILED, details={"identifier": identifier})
            return AuthResult.failure(INVALID_CREDENTIALS)

        context.set_actor(user.id, user.role)

        blocked = self._account_block_reason(user)
        if blocked:
            self.audit.log_auth(AuditService.LOGIN_BLOCKED, user_id=user.id, details={"reason": blocked})
            return AuthResult.failure(INVALID_CREDENTIALS)

        fingerprint = device_fingerprint(context.user_agent, context.ip_address)
        result = self._issue_pair(user, fingerprint, *self.token_ttls(remember_me))

        self.audit.log_auth(AuditService.LOGIN_SUCCESS, user_id=user.id)
        return result

    def _issue_pair(
        self,
        user: User,
        fingerprint: Optional[str],
        access_ttl: timedelta,
        refresh_ttl: timedelta,
    ) -> AuthResult:
        with self.db.transaction():
            access_token, session = self.sessions.create(user.id, access_ttl)
            refresh_token, refresh_row = self.refresh_tokens.issue(user.id, refresh_ttl, fingerprint)

        now = self.clock()
        return AuthResult(
            success=True,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=now + access_ttl,
            refresh_expires_at=now + refresh_ttl,
            user=user.to_dict(),
        )

    def logout(self, token: str) -> bool:
        """Delete the session for ``token``; returns whether one existed."""
        deleted = self.sessions.revoke(token)
        if deleted:
            self.audit.log_auth(AuditService.LOGOUT, user_id=self.db.audit_context.actor_id)
        return deleted > 0

    # -- validation ---------------------------------------------------------

    def validate_token(self, token: str) -> Optional[Actor]:
        """Resolve an access token to its user, re-checking account state every call."""
        session = self.sessions.find_valid(token)
        if session is None:
            return None

        user = User.find(self.db, session.user_id)
        if user is None or self._account_block_reason(user):
            return None

        self.db.audit_context.set_actor(user.id, user.role)
        return Actor.from_user(user)

    # -- rotation -----------------------------------------------------------

    def refresh(self, refresh_token: str) -> AuthResult:
        """Rotate a refresh token: deactivate it and issue a new pair, atomically."""
        # Rotated pairs carry the extended lifetimes
        access_ttl, refresh_ttl = self.token_ttls(remember_me=True)

        with self.db.transaction():
            current = self.refresh_tokens.find_active(refresh_token, for_update=True)
            if current is None:
                return AuthResult.failure(INVALID_REFRESH_TOKEN)

            user = User.find(self.db, current.user_id)
            if user is None:
                return AuthResult.failure(INVALID_REFRESH_TOKEN)

            blocked = self._account_block_reason(user)
            if blocked:
                logger.info("Refresh refused for user %s: %s", user.id, blocked)
                return AuthResult.failure(INVALID_REFRESH_TOKEN)

            self.db.audit_context.set_actor(user.id, user.role)

            if not self.refresh_tokens.deactivate(current.id):
                # Lost a race with a concurrent rotation of the same token
                return AuthResult.failure(INVALID_REFRESH_TOKEN)

            result = self._issue_pair(user, current.device_fingerprint, access_ttl, refresh_ttl)

        self.audit.log_auth(AuditService.REFRESH, user_id=user.id)
        return result

    # -- maintenance --------------------------------------------------------

    def revoke_user_sessions(self, user_id: int) -> int:
        """End every session and refresh token a user holds."""
        with self.db.transaction():
            removed = self.sessions.revoke_all_for_user(user_id)
            removed += self.refresh_tokens.revoke_all_for_user(user_id)
        logger.info("Revoked %d sessions/tokens for user %s", removed, user_id)
        return removed

    def revoke_device(self, user_id: int, user_agent: Optional[str], ip_address: Optional[str]) -> int:
        return self.refresh_tokens.revoke_device(user_id, device_fingerprint(user_agent, ip_address))

    def cleanup_expired_sessions(self) -> int:
        with self.db.transaction():
            removed = self.sessions.cleanup_expired()
            removed += self.refresh_tokens.cleanup_expired()
        return removed

    def active_sessions(self, user_id: int) -> Dict[str, Any]:
        """Live access sessions and refresh tokens, without any token material."""
        return {
            "sessions": [session.to_dict() for session in self.sessions.list_for_user(user_id)],
            "refresh_tokens": [token.to_dict() for token in self.refresh_tokens.active_for_user(user_id)],
            "as_of": format_timestamp(self.clock()),
        }
