"""
API dependencies
"""
from typing import List, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from adminbase.core.errors import AuthenticationFailure
from adminbase.db import Database, get_db
from adminbase.services.auth import Actor, AuthenticationService

security = HTTPBearer(auto_error=False)


def client_ip(request: Request) -> Optional[str]:
    """Client address, honouring the first X-Forwarded-For hop."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def get_request_db(request: Request, db: Database = Depends(get_db)) -> Database:
    """The request's database handle, with audit request metadata filled in."""
    db.audit_context.set_request_meta(
        method=request.method,
        path=request.url.path,
        query=request.url.query or None,
        ip_address=client_ip(request),
        user_agent=request.headers.get("User-Agent"),
    )
    return db


def get_bearer_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> str:
    if credentials is None or not credentials.credentials:
        raise AuthenticationFailure("Not authenticated")
    return credentials.credentials


def get_current_actor(
    token: str = Depends(get_bearer_token),
    db: Database = Depends(get_request_db),
) -> Actor:
    """Resolve the bearer token; later writes in the request are attributed to this actor."""
    actor = AuthenticationService(db).validate_token(token)
    if actor is None:
        raise AuthenticationFailure("Invalid or expired token")
    return actor


def require_role(allowed_roles: List[str]):
    """Dependency factory requiring one of ``allowed_roles``."""
    def role_checker(actor: Actor = Depends(get_current_actor)) -> Actor:
        if actor.role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role '{actor.role}' not authorized. Required: {allowed_roles}",
            )
        return actor
    return role_checker


__all__ = [
    "get_db",
    "get_request_db",
    "get_bearer_token",
    "get_current_actor",
    "require_role",
    "client_ip",
]
