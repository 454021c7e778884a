from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.db.models import DeviceTemplate, HierarchyRule
from app.repositories.templates import (
    create_hierarchy_rule,
    create_template,
    get_hierarchy_rule,
    get_template_by_id,
    get_template_by_shortform,
    list_hierarchy_rules,
    list_templates,
)
from app.services.naming import normalize_shortform


class TemplateCatalogService:
    def __init__(self) -> None:
        self._logger = logging.getLogger("app.templates")

    def list_templates(self, db: Session, *, include_inactive: bool = False) -> list[DeviceTemplate]:
        return list_templates(db, include_inactive=include_inactive)

    def get_template(self, db: Session, template_id: int) -> DeviceTemplate:
        template = get_template_by_id(db, template_id)
        if template is None:
            raise NotFoundError(f"Device template {template_id} not found")
        return template

    def create_template(
        self,
        db: Session,
        *,
        shortform: str,
        name: str,
        device_type: str,
        manufacturer: str | None = None,
        model: str | None = None,
        description: str | None = None,
        tags: list[dict[str, Any]] | None = None,
    ) -> DeviceTemplate:
        normalized = normalize_shortform(shortform)
        if get_template_by_shortform(db, normalized) is not None:
            raise ConflictError(f"Template shortform {normalized} already exists")

        cleaned_tags = [
            {**tag, "tag_name": str(tag.get("tag_name") or "").strip()} for tag in tags or []
        ]
        tag_names = [tag["tag_name"] for tag in cleaned_tags]
        if any(not tag_name for tag_name in tag_names):
            raise ValidationError("Every template tag needs a tag_name")
        if len(set(tag_names)) != len(tag_names):
            raise ValidationError("Template tag names must be unique")

        try:
            template = create_template(
                db,
                shortform=normalized,
                name=name,
                device_type=device_type,
                manufacturer=manufacturer,
                model=model,
                description=description,
                tags=cleaned_tags,
            )
        except IntegrityError as exc:
            db.rollback()
            raise ConflictError(f"Template shortform {normalized} already exists") from exc
        self._logger.info("device template created template_id=%s shortform=%s", template.id, normalized)
        return template

    def list_hierarchy_rules(self, db: Session, *, child_template_id: int | None = None) -> list[HierarchyRule]:
        return list_hierarchy_rules(db, child_template_id=child_template_id)

    def create_hierarchy_rule(
        self,
        db: Session,
        *,
        parent_template_id: int | None,
        child_template_id: int,
        is_allowed: bool = True,
    ) -> HierarchyRule:
        self.get_template(db, child_template_id)
        if parent_template_id is not None:
            self.get_template(db, parent_template_id)
        existing = get_hierarchy_rule(
            db,
            parent_template_id=parent_template_id,
            child_template_id=child_template_id,
        )
        if existing is not None:
            raise ConflictError(
                f"Hierarchy rule for parent {parent_template_id} and child {child_template_id} already exists"
            )
        try:
            return create_hierarchy_rule(
                db,
                parent_template_id=parent_template_id,
                child_template_id=child_template_id,
                is_allowed=is_allowed,
            )
        except IntegrityError as exc:
            db.rollback()
            raise ConflictError("Hierarchy rule already exists") from exc
