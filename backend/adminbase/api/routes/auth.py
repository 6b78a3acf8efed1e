"""
Authentication API routes
"""
from datetime import datetime
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, EmailStr, Field

from adminbase.api.deps import get_bearer_token, get_current_actor, get_request_db
from adminbase.core.logging import logger
from adminbase.db import Database
from adminbase.services.auth import (
    TOO_MANY_ATTEMPTS,
    Actor,
    AuthenticationService,
    AuthResult,
)

router = APIRouter()


# Request/Response schemas
class RegisterRequest(BaseModel):
    username: str = Field(min_length=1, max_length=150)
    email: EmailStr
    password: str


class LoginRequest(BaseModel):
    identifier: str
    password: str
    remember_me: bool = False


class RefreshRequest(BaseModel):
    refresh_token: str


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_at: datetime
    refresh_expires_at: datetime
    user: Dict[str, Any]


class LogoutResponse(BaseModel):
    logged_out: bool


class UserResponse(BaseModel):
    id: int
    username: str
    display_name: str
    email: str
    role: str
    timezone: str
    currency: str


def _token_response(result: AuthResult) -> TokenResponse:
    return TokenResponse(
        access_token=result.access_token,
        refresh_token=result.refresh_token,
        expires_at=result.expires_at,
        refresh_expires_at=result.refresh_expires_at,
        user=result.user,
    )


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(request: RegisterRequest, db: Database = Depends(get_request_db)):
    """Register a new client account."""
    result = AuthenticationService(db).register(request.username, request.email, request.password)
    if not result.success:
        code = status.HTTP_409_CONFLICT if result.error == "User already exists" else status.HTTP_400_BAD_REQUEST
        raise HTTPException(status_code=code, detail=result.error)

    db.commit()
    logger.info(f"User registered: {request.username}")
    return {"user": result.user}


@router.post("/login", response_model=TokenResponse)
async def login(request: LoginRequest, db: Database = Depends(get_request_db)):
    """Login with username or e-mail."""
    result = AuthenticationService(db).login(request.identifier, request.password, request.remember_me)
    # Auth-log rows are kept whether or not the login succeeded
    db.commit()

    if not result.success:
        if result.error == TOO_MANY_ATTEMPTS:
            code = status.HTTP_429_TOO_MANY_REQUESTS
        else:
            code = status.HTTP_401_UNAUTHORIZED
        raise HTTPException(status_code=code, detail=result.error)

    return _token_response(result)


@router.post("/refresh", response_model=TokenResponse)
async def refresh(request: RefreshRequest, db: Database = Depends(get_request_db)):
    """Rotate a refresh token into a new token pair."""
    result = AuthenticationService(db).refresh(request.refresh_token)
    db.commit()

    if not result.success:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=result.error)

    return _token_response(result)


@router.post("/logout", response_model=LogoutResponse)
async def logout(token: str = Depends(get_bearer_token), db: Database = Depends(get_request_db)):
    """End the current session. Repeating the call is harmless."""
    service = AuthenticationService(db)
    service.validate_token(token)
    logged_out = service.logout(token)
    db.commit()
    return LogoutResponse(logged_out=logged_out)


@router.get("/me", response_model=UserResponse)
async def me(actor: Actor = Depends(get_current_actor)):
    """Current authenticated user."""
    return UserResponse(**actor.to_dict())
