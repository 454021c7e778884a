from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from app.db.models import DeviceTemplate, HierarchyRule, TemplateTag


def list_templates(db: Session, *, include_inactive: bool = False) -> list[DeviceTemplate]:
    statement = select(DeviceTemplate).options(selectinload(DeviceTemplate.tags))
    if not include_inactive:
        statement = statement.where(DeviceTemplate.is_active.is_(True))
    statement = statement.order_by(DeviceTemplate.device_type.asc(), DeviceTemplate.shortform.asc())
    return list(db.scalars(statement))


def get_template_by_id(db: Session, template_id: int) -> DeviceTemplate | None:
    return db.get(DeviceTemplate, template_id)


def get_template_by_shortform(db: Session, shortform: str) -> DeviceTemplate | None:
    return db.scalars(
        select(DeviceTemplate).where(DeviceTemplate.shortform == shortform)
    ).first()


def create_template(
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
    template = DeviceTemplate(
        shortform=shortform,
        name=name,
        device_type=device_type,
        manufacturer=manufacturer,
        model=model,
        description=description,
        is_active=True,
    )
    for index, tag in enumerate(tags or []):
        template.tags.append(
            TemplateTag(
                tag_name=tag["tag_name"],
                display_name=tag.get("display_name"),
                unit=tag.get("unit"),
                data_type=tag.get("data_type") or "FLOAT",
                min_value=tag.get("min_value"),
                max_value=tag.get("max_value"),
                description=tag.get("description"),
                display_order=index if tag.get("display_order") is None else tag["display_order"],
            )
        )
    db.add(template)
    db.commit()
    db.refresh(template)
    return template


def list_template_tags(
    db: Session,
    template_id: int,
    *,
    tag_ids: list[int] | None = None,
) -> list[TemplateTag]:
    statement = select(TemplateTag).where(TemplateTag.template_id == template_id)
    if tag_ids is not None:
        statement = statement.where(TemplateTag.id.in_(tag_ids))
    statement = statement.order_by(TemplateTag.display_order.asc(), TemplateTag.id.asc())
    return list(db.scalars(statement))


def get_hierarchy_rule(
    db: Session,
    *,
    parent_template_id: int | None,
    child_template_id: int,
) -> HierarchyRule | None:
    statement = select(HierarchyRule).where(HierarchyRule.child_template_id == child_template_id)
    if parent_template_id is None:
        statement = statement.where(HierarchyRule.parent_template_id.is_(None))
    else:
        statement = statement.where(HierarchyRule.parent_template_id == parent_template_id)
    return db.scalars(statement).first()


def list_hierarchy_rules(db: Session, *, child_template_id: int | None = None) -> list[HierarchyRule]:
    statement = select(HierarchyRule)
    if child_template_id is not None:
        statement = statement.where(HierarchyRule.child_template_id == child_template_id)
    statement = statement.order_by(HierarchyRule.child_template_id.asc(), HierarchyRule.id.asc())
    return list(db.scalars(statement))


def list_allowed_attachments(db: Session) -> set[tuple[int | None, int]]:
    rows = db.execute(
        select(HierarchyRule.parent_template_id, HierarchyRule.child_template_id).where(
            HierarchyRule.is_allowed.is_(True)
        )
    )
    return {(row.parent_template_id, row.child_template_id) for row in rows}


def create_hierarchy_rule(
    db: Session,
    *,
    parent_template_id: int | None,
    child_template_id: int,
    is_allowed: bool = True,
) -> HierarchyRule:
    rule = HierarchyRule(
        parent_template_id=parent_template_id,
        child_template_id=child_template_id,
        is_allowed=is_allowed,
    )
    db.add(rule)
    db.commit()
    db.refresh(rule)
    return rule
