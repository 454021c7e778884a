from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.dependencies import get_template_service
from app.schemas.templates import (
    HierarchyRuleCreateRequest,
    HierarchyRuleResponse,
    TemplateCreateRequest,
    TemplateResponse,
)
from app.services.templates import TemplateCatalogService


router = APIRouter(prefix="/api", tags=["templates"])


@router.get("/templates", response_model=list[TemplateResponse])
def get_templates(
    include_inactive: bool = False,
    db: Session = Depends(get_db),
    template_service: TemplateCatalogService = Depends(get_template_service),
) -> list[TemplateResponse]:
    templates = template_service.list_templates(db, include_inactive=include_inactive)
    return [TemplateResponse.model_validate(template) for template in templates]


@router.post("/templates", response_model=TemplateResponse, status_code=status.HTTP_201_CREATED)
def post_template(
    payload: TemplateCreateRequest,
    db: Session = Depends(get_db),
    template_service: TemplateCatalogService = Depends(get_template_service),
) -> TemplateResponse:
    template = template_service.create_template(
        db,
        shortform=payload.shortform,
        name=payload.name,
        device_type=payload.device_type,
        manufacturer=payload.manufacturer,
        model=payload.model,
        description=payload.description,
        tags=[tag.model_dump() for tag in payload.tags],
    )
    return TemplateResponse.model_validate(template)


@router.get("/templates/{template_id}", response_model=TemplateResponse)
def get_template(
    template_id: int,
    db: Session = Depends(get_db),
    template_service: TemplateCatalogService = Depends(get_template_service),
) -> TemplateResponse:
    return TemplateResponse.model_validate(template_service.get_template(db, template_id))


@router.get("/hierarchy-rules", response_model=list[HierarchyRuleResponse])
def get_hierarchy_rules(
    child_template_id: int | None = None,
    db: Session = Depends(get_db),
    template_service: TemplateCatalogService = Depends(get_template_service),
) -> list[HierarchyRuleResponse]:
    rules = template_service.list_hierarchy_rules(db, child_template_id=child_template_id)
    return [HierarchyRuleResponse.model_validate(rule) for rule in rules]


@router.post(
    "/hierarchy-rules",
    response_model=HierarchyRuleResponse,
    status_code=status.HTTP_201_CREATED,
)
def post_hierarchy_rule(
    payload: HierarchyRuleCreateRequest,
    db: Session = Depends(get_db),
    template_service: TemplateCatalogService = Depends(get_template_service),
) -> HierarchyRuleResponse:
    rule = template_service.create_hierarchy_rule(
        db,
        parent_template_id=payload.parent_template_id,
        child_template_id=payload.child_template_id,
        is_allowed=payload.is_allowed,
    )
    return HierarchyRuleResponse.model_validate(rule)
