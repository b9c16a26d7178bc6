"""
Role management API endpoints.

Admin-only endpoints for editing and deleting roles, protected by the
ROLE_MANAGE capability. System roles are protected: any update or delete
returns 409.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Request, status
from pydantic import BaseModel, Field

from api.errors import to_http_exception
from api.guards import require
from api.middleware.roles import get_current_user
from core.rbac.admin import RoleAdminService
from core.rbac.capabilities import CAP_ROLE_MANAGE
from core.rbac.engine import get_engine
from core.rbac.errors import RbacError


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/roles", tags=["admin", "roles"])


# ============================================================================
# Request/Response Models
# ============================================================================

class RoleUpdateRequest(BaseModel):
    """Partial update of a role."""
    name: Optional[str] = Field(None, min_length=1, description="Canonical role name")
    display_name: Optional[str] = Field(None, min_length=1)
    level: Optional[int] = Field(None, ge=0, le=100, description="Hierarchy level")
    is_active: Optional[bool] = None

    model_config = {
        "json_schema_extra": {
            "example": {
                "display_name": "Division Head",
                "level": 80,
            }
        }
    }


class RoleResponse(BaseModel):
    id: str
    name: str
    display_name: str
    level: int
    is_system: bool = False
    is_active: bool = True


def _role_response(row: dict) -> RoleResponse:
    return RoleResponse(
        id=str(row["id"]),
        name=row["name"],
        display_name=row.get("display_name") or row["name"],
        level=int(row.get("level", 0)),
        is_system=bool(row.get("is_system", False)),
        is_active=bool(row.get("is_active", True)),
    )


# ============================================================================
# Endpoints
# ============================================================================

@router.get("", response_model=List[RoleResponse])
@require(CAP_ROLE_MANAGE)
def list_roles(request: Request):
    """
    List all roles by descending level.

    **Required Capability**: ROLE_MANAGE
    """
    try:
        rows = RoleAdminService(get_engine().repository).list_roles()
    except RbacError as e:
        raise to_http_exception(e)
    return [_role_response(row) for row in rows]


@router.patch("/{role_id}", response_model=RoleResponse)
@require(CAP_ROLE_MANAGE)
def update_role(request: Request, role_id: str, body: RoleUpdateRequest):
    """
    Update a role's name, display name, level or active flag.

    **Required Capability**: ROLE_MANAGE

    Returns 409 for system roles or a name already in use.
    """
    ctx = get_current_user(request)
    engine = get_engine()
    changes = {k: v for k, v in body.model_dump(exclude_unset=True).items() if v is not None}

    try:
        row = RoleAdminService(engine.repository).update_role(role_id, changes)
        engine.reload_roles()
    except RbacError as e:
        raise to_http_exception(e)

    logger.info(f"Role {role_id} updated by {ctx.user_id}: {sorted(changes)}")
    return _role_response(row)


@router.delete("/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
@require(CAP_ROLE_MANAGE)
def delete_role(request: Request, role_id: str):
    """
    Delete a role.

    **Required Capability**: ROLE_MANAGE

    Returns 409 for system roles and for roles still assigned to users.
    """
    ctx = get_current_user(request)
    engine = get_engine()

    try:
        RoleAdminService(engine.repository).delete_role(role_id)
        engine.reload_roles()
    except RbacError as e:
        raise to_http_exception(e)

    logger.info(f"Role {role_id} deleted by {ctx.user_id}")
