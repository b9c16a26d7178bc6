"""
Authorization decision endpoints.

Lets clients ask what the current caller may do: their effective grants,
whether they may read a document, and which workflow transitions they may
take from a status.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel, Field

from api.errors import to_http_exception
from api.middleware.roles import get_current_user
from core.rbac.engine import get_engine
from core.rbac.errors import RbacError
from core.rbac.types import STATUS_DESCRIPTIONS, TransitionRule

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/authz", tags=["authz"])


# ============================================================================
# Request/Response Models
# ============================================================================

class GrantsResponse(BaseModel):
    user_id: Optional[str]
    email: Optional[str]
    group_id: Optional[str]
    group_name: Optional[str]
    auth_method: str
    roles: List[str]
    role_level: int
    permissions: List[str]
    capabilities: List[str]
    full_document_access: bool


class DocumentAccessResponse(BaseModel):
    document_id: str
    allowed: bool
    reason: Optional[str] = None


class TransitionOption(BaseModel):
    id: Optional[str]
    from_status: str
    to_status: str
    min_level: int
    required_permission: Optional[str]
    description: str
    allowed_by_label: Optional[str]
    sort_order: int

    @classmethod
    def from_rule(cls, rule: TransitionRule) -> "TransitionOption":
        return cls(
            id=rule.id,
            from_status=rule.from_status,
            to_status=rule.to_status,
            min_level=rule.min_level,
            required_permission=rule.required_permission,
            description=rule.description,
            allowed_by_label=rule.allowed_by_label,
            sort_order=rule.sort_order,
        )


class AllowedTransitionsResponse(BaseModel):
    from_status: str
    status_description: Optional[str]
    transitions: List[TransitionOption]


class TransitionCheckRequest(BaseModel):
    from_status: str = Field(..., description="Current document status")
    to_status: str = Field(..., description="Requested document status")

    model_config = {
        "json_schema_extra": {
            "example": {"from_status": "DRAFT", "to_status": "PENDING_REVIEW"}
        }
    }


class TransitionCheckResponse(BaseModel):
    from_status: str
    to_status: str
    allowed: bool
    reason: str
    min_level: Optional[int] = None
    required_permission: Optional[str] = None


# ============================================================================
# Endpoints
# ============================================================================

@router.get("/me", response_model=GrantsResponse)
def get_my_grants(request: Request):
    """Effective roles, permissions and capabilities of the caller."""
    ctx = get_current_user(request)
    grants = ctx.grants
    return GrantsResponse(
        user_id=ctx.user_id,
        email=ctx.email,
        group_id=ctx.group_id,
        group_name=ctx.group_name,
        auth_method=ctx.auth_method,
        roles=list(grants.role_names),
        role_level=grants.role_level,
        permissions=sorted(grants.permissions),
        capabilities=sorted(grants.capabilities),
        full_document_access=grants.full_document_access,
    )


@router.get("/documents/{document_id}/access", response_model=DocumentAccessResponse)
def check_document_access(request: Request, document_id: str):
    """
    Whether the caller may read a document.

    Unknown documents are reported as not allowed rather than 404, so the
    endpoint does not reveal which ids exist.
    """
    ctx = get_current_user(request)
    try:
        reason = get_engine().document_access(
            ctx.grants, document_id, ctx.group_id, ctx.group_name
        )
    except RbacError as e:
        raise to_http_exception(e)

    return DocumentAccessResponse(document_id=document_id, allowed=reason is not None, reason=reason)


@router.get("/transitions", response_model=AllowedTransitionsResponse)
def list_allowed_transitions(request: Request, from_status: str = Query(..., description="Current status")):
    """Transitions the caller may take from a status, by sort order."""
    ctx = get_current_user(request)
    try:
        rules = get_engine().allowed_transitions(ctx.grants, from_status)
    except RbacError as e:
        raise to_http_exception(e)

    source = from_status.strip().upper()
    return AllowedTransitionsResponse(
        from_status=source,
        status_description=STATUS_DESCRIPTIONS.get(source),
        transitions=[TransitionOption.from_rule(rule) for rule in rules],
    )


@router.post("/transitions/check", response_model=TransitionCheckResponse)
def check_transition(request: Request, body: TransitionCheckRequest):
    """Whether the caller may move a document between two statuses, and why."""
    ctx = get_current_user(request)
    try:
        decision = get_engine().check_transition(ctx.grants, body.from_status, body.to_status)
    except RbacError as e:
        raise to_http_exception(e)

    return TransitionCheckResponse(**decision.to_dict())
