"""
Admin API routes
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from adminbase.api.deps import get_request_db, require_role
from adminbase.core.logging import logger
from adminbase.core.security import utcnow
from adminbase.db import Database
from adminbase.db.models import SystemSetting, User, UserRole
from adminbase.services.audit import AuditService
from adminbase.services.auth import Actor, AuthenticationService

router = APIRouter()

admin_only = require_role([UserRole.ADMIN.value])
staff = require_role([UserRole.ADMIN.value, UserRole.SUPPORT.value])


# Request/Response schemas
class UserUpdateRequest(BaseModel):
    display_name: Optional[str] = None
    role: Optional[UserRole] = None
    is_active: Optional[bool] = None
    is_approved: Optional[bool] = None
    timezone: Optional[str] = None
    currency: Optional[str] = None


class SettingRequest(BaseModel):
    value: Optional[str] = None


class SettingResponse(BaseModel):
    name: str
    value: Optional[str]


@router.get("/audit-logs")
async def list_audit_logs(
    user_id: Optional[int] = None,
    action: Optional[str] = None,
    resource_type: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(staff),
    db: Database = Depends(get_request_db),
) -> List[Dict[str, Any]]:
    """Get recent audit entries, newest first."""
    filters = {"user_id": user_id, "action": action, "resource_type": resource_type}
    logs = AuditService(db).get_recent_logs(filters, limit=limit, offset=offset)
    return [log.to_dict() for log in logs]


@router.get("/audit-logs/{resource_type}/{resource_id}")
async def resource_history(
    resource_type: str,
    resource_id: str,
    actor: Actor = Depends(staff),
    db: Database = Depends(get_request_db),
) -> List[Dict[str, Any]]:
    """Get audit history for a specific record."""
    return [log.to_dict() for log in AuditService(db).get_resource_history(resource_type, resource_id)]


@router.get("/sessions")
async def list_sessions(
    user_id: Optional[int] = None,
    actor: Actor = Depends(admin_only),
    db: Database = Depends(get_request_db),
) -> Dict[str, Any]:
    """Live sessions of a user (the caller by default)."""
    return AuthenticationService(db).active_sessions(user_id or actor.id)


@router.patch("/users/{user_id}")
async def update_user(
    user_id: int,
    request: UserUpdateRequest,
    actor: Actor = Depends(admin_only),
    db: Database = Depends(get_request_db),
) -> Dict[str, Any]:
    """Update a user's profile or status; deactivation ends their sessions."""
    user = User.find(db, user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    changes = request.model_dump(exclude_unset=True, mode="json")
    service = AuthenticationService(db)

    with db.transaction():
        user.fill(changes)
        if changes.get("is_active") is False:
            user.deactivated_at = utcnow()
        elif changes.get("is_active") is True:
            user.deactivated_at = None
        if changes.get("is_approved") is True and not user.approved_at:
            user.approved_at = utcnow()
            user.approved_by = actor.id
        user.save()

        if changes.get("is_active") is False:
            service.revoke_user_sessions(user.id)

    db.commit()
    logger.info(f"User {user_id} updated by {actor.id}: {sorted(changes)}")
    return user.to_dict()


@router.get("/settings/{name}", response_model=SettingResponse)
async def get_setting(
    name: str,
    actor: Actor = Depends(admin_only),
    db: Database = Depends(get_request_db),
):
    """Get a system setting value."""
    return SettingResponse(name=name, value=SystemSetting.get_value(db, name))


@router.put("/settings/{name}", response_model=SettingResponse)
async def put_setting(
    name: str,
    request: SettingRequest,
    actor: Actor = Depends(admin_only),
    db: Database = Depends(get_request_db),
):
    """Set a system setting value."""
    setting = SystemSetting.set_value(db, name, request.value)
    db.commit()
    logger.info(f"Setting {name} updated by {actor.id}")
    return SettingResponse(name=setting.name, value=setting.value)
