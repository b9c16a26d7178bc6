"""
Workflow transition rule management API endpoints.

Admin-only CRUD over transition rules, protected by WORKFLOW_MANAGE or
ADMIN_ACCESS. Every mutation invalidates the transition rule cache before
the response is returned.
"""

import logging
from typing import Annotated, List, Optional

from fastapi import APIRouter, Query, Request, status
from pydantic import AfterValidator, BaseModel, Field

from api.errors import to_http_exception
from api.guards import require_any
from api.middleware.roles import get_current_user
from core.rbac.admin import WorkflowRuleService
from core.rbac.capabilities import CAP_ADMIN_ACCESS, CAP_WORKFLOW_MANAGE
from core.rbac.engine import get_engine
from core.rbac.errors import RbacError
from core.rbac.types import TransitionRule, is_permission_name

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/workflows", tags=["admin", "workflows"])

# Fields an update may explicitly clear
NULLABLE_RULE_FIELDS = ("required_permission", "allowed_by_label")


# ============================================================================
# Request/Response Models
# ============================================================================

def _check_permission_name(v: Optional[str]) -> Optional[str]:
    if v is None or not v.strip():
        return None
    if not is_permission_name(v.strip()):
        raise ValueError(f"required_permission must look like 'module.action', got {v!r}")
    return v.strip()


PermissionName = Annotated[Optional[str], AfterValidator(_check_permission_name)]


class TransitionRuleCreate(BaseModel):
    """Request to create a transition rule."""
    from_status: str = Field(..., min_length=1)
    to_status: str = Field(..., min_length=1)
    min_level: int = Field(..., ge=0, le=100)
    required_permission: PermissionName = None
    description: str = ""
    allowed_by_label: Optional[str] = None
    is_active: bool = True
    sort_order: int = 0

    model_config = {
        "json_schema_extra": {
            "example": {
                "from_status": "DRAFT",
                "to_status": "PENDING_REVIEW",
                "min_level": 50,
                "required_permission": "documents.update",
                "description": "Submit document for review",
                "allowed_by_label": "Editor, Manager, Administrator",
                "is_active": True,
                "sort_order": 1,
            }
        }
    }


class TransitionRuleUpdate(BaseModel):
    """Partial update of a transition rule."""
    from_status: Optional[str] = Field(None, min_length=1)
    to_status: Optional[str] = Field(None, min_length=1)
    min_level: Optional[int] = Field(None, ge=0, le=100)
    required_permission: PermissionName = None
    description: Optional[str] = None
    allowed_by_label: Optional[str] = None
    is_active: Optional[bool] = None
    sort_order: Optional[int] = None


class TransitionRuleResponse(BaseModel):
    id: Optional[str]
    from_status: str
    to_status: str
    min_level: int
    required_permission: Optional[str]
    description: str
    allowed_by_label: Optional[str]
    is_active: bool
    sort_order: int

    @classmethod
    def from_rule(cls, rule: TransitionRule) -> "TransitionRuleResponse":
        return cls(**rule.to_dict())


def _service() -> WorkflowRuleService:
    engine = get_engine()
    return WorkflowRuleService(engine.repository, engine.rule_store)


# ============================================================================
# Endpoints
# ============================================================================

@router.get("", response_model=List[TransitionRuleResponse])
@require_any(CAP_WORKFLOW_MANAGE, CAP_ADMIN_ACCESS)
def list_rules(request: Request, from_status: Optional[str] = Query(None)):
    """
    List transition rules as stored, including inactive ones.

    **Required Capability**: WORKFLOW_MANAGE or ADMIN_ACCESS
    """
    try:
        rules = _service().list_rules(from_status)
    except RbacError as e:
        raise to_http_exception(e)
    return [TransitionRuleResponse.from_rule(rule) for rule in rules]


@router.post("", response_model=TransitionRuleResponse, status_code=status.HTTP_201_CREATED)
@require_any(CAP_WORKFLOW_MANAGE, CAP_ADMIN_ACCESS)
def create_rule(request: Request, body: TransitionRuleCreate):
    """
    Create a transition rule.

    **Required Capability**: WORKFLOW_MANAGE or ADMIN_ACCESS

    Returns 409 if a rule for the same (from_status, to_status) exists.
    """
    ctx = get_current_user(request)
    try:
        rule = _service().create_rule(body.model_dump())
    except RbacError as e:
        raise to_http_exception(e)

    logger.info(f"Transition rule {rule.id} created by {ctx.user_id}")
    return TransitionRuleResponse.from_rule(rule)


@router.put("/{rule_id}", response_model=TransitionRuleResponse)
@require_any(CAP_WORKFLOW_MANAGE, CAP_ADMIN_ACCESS)
def update_rule(request: Request, rule_id: str, body: TransitionRuleUpdate):
    """
    Update a transition rule. Only fields present in the body change.

    **Required Capability**: WORKFLOW_MANAGE or ADMIN_ACCESS
    """
    ctx = get_current_user(request)
    try:
        changes = {
            k: v for k, v in body.model_dump(exclude_unset=True).items()
            if v is not None or k in NULLABLE_RULE_FIELDS
        }
        rule = _service().update_rule(rule_id, changes)
    except RbacError as e:
        raise to_http_exception(e)

    logger.info(f"Transition rule {rule_id} updated by {ctx.user_id}")
    return TransitionRuleResponse.from_rule(rule)


@router.delete("/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
@require_any(CAP_WORKFLOW_MANAGE, CAP_ADMIN_ACCESS)
def delete_rule(request: Request, rule_id: str):
    """
    Delete a transition rule.

    **Required Capability**: WORKFLOW_MANAGE or ADMIN_ACCESS
    """
    ctx = get_current_user(request)
    try:
        _service().delete_rule(rule_id)
    except RbacError as e:
        raise to_http_exception(e)

    logger.info(f"Transition rule {rule_id} deleted by {ctx.user_id}")
