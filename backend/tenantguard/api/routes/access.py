"""
Access API routes.

- GET  /api/access/modules  modules the caller can open on their tenant
- POST /api/access/check    decide one feature path, with the action scope
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, model_validator

from tenantguard.access.engine import AccessDecisionEngine
from tenantguard.access.errors import AccessEvaluationError
from tenantguard.api.dependencies.access import (
    RequestSubjects,
    get_access_engine,
    get_request_subjects,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/access", tags=["access"])


class AccessCheckRequest(BaseModel):
    module: str = Field(..., min_length=1, max_length=100)
    sub_module: Optional[str] = Field(None, min_length=1, max_length=100)
    component: Optional[str] = Field(None, min_length=1, max_length=100)
    action: Optional[str] = Field(None, min_length=1, max_length=100)

    @model_validator(mode="after")
    def check_levels(self) -> "AccessCheckRequest":
        if self.component and not self.sub_module:
            raise ValueError("component requires sub_module")
        if self.action and not self.component:
            raise ValueError("action requires component")
        return self


class AccessCheckResponse(BaseModel):
    allowed: bool
    reason: str
    message: str
    level: Optional[str] = None
    scope: Optional[str] = None


class ModuleResponse(BaseModel):
    id: str
    code: str
    name: str


class ModulesResponse(BaseModel):
    modules: List[ModuleResponse]


def _unavailable(e: AccessEvaluationError) -> HTTPException:
    logger.error(
        "Access evaluation failed",
        extra={"tenant_id": e.tenant_id, "error": e.detail},
        exc_info=True,
    )
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.to_dict())


@router.get("/modules", response_model=ModulesResponse)
def list_accessible_modules(
    subjects: RequestSubjects = Depends(get_request_subjects),
    engine: AccessDecisionEngine = Depends(get_access_engine),
):
    try:
        modules = engine.accessible_modules(subjects.user, subjects.tenant)
    except AccessEvaluationError as e:
        raise _unavailable(e)
    return ModulesResponse(
        modules=[ModuleResponse(id=m.id, code=m.code, name=m.name) for m in modules]
    )


@router.post("/check", response_model=AccessCheckResponse)
def check_access(
    body: AccessCheckRequest,
    subjects: RequestSubjects = Depends(get_request_subjects),
    engine: AccessDecisionEngine = Depends(get_access_engine),
):
    try:
        decision = engine.decide(
            subjects.user,
            subjects.tenant,
            body.module,
            body.sub_module,
            body.component,
            body.action,
        )
        scope = None
        if decision.allowed and body.action:
            resolved = engine.resolve_action_scope(
                subjects.user,
                body.module,
                body.sub_module,
                body.component,
                body.action,
                tenant_id=subjects.tenant.id if subjects.tenant else None,
            )
            scope = resolved.value if resolved else None
    except AccessEvaluationError as e:
        raise _unavailable(e)

    return AccessCheckResponse(
        allowed=decision.allowed,
        reason=decision.reason.value,
        message=decision.message,
        level=decision.level.value if decision.level else None,
        scope=scope,
    )
