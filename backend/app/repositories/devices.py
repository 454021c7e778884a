from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from app.db.models import Device, DeviceHierarchyHistory, DeviceTag, TemplateTag


@dataclass(frozen=True)
class DeviceLink:
    id: int
    plant_id: int
    parent_device_id: int | None
    template_id: int
    device_identifier: str
    mqtt_topic: str
    name: str
    device_type: str
    status: str
    hierarchy_version: int


def get_device_by_id(db: Session, device_id: int) -> Device | None:
    return db.get(Device, device_id)


def list_plant_devices(
    db: Session,
    plant_id: int,
    *,
    device_type: str | None = None,
    status: str | None = None,
) -> list[Device]:
    statement = select(Device).where(Device.plant_id == plant_id)
    if device_type is not None:
        statement = statement.where(Device.device_type == device_type)
    if status is not None:
        statement = statement.where(Device.status == status)
    statement = statement.order_by(Device.id.asc())
    return list(db.scalars(statement))


def list_device_links(db: Session, plant_id: int) -> list[DeviceLink]:
    rows = db.execute(
        select(
            Device.id,
            Device.plant_id,
            Device.parent_device_id,
            Device.template_id,
            Device.device_identifier,
            Device.mqtt_topic,
            Device.name,
            Device.device_type,
            Device.status,
            Device.hierarchy_version,
        )
        .where(Device.plant_id == plant_id)
        .order_by(Device.id.asc())
    )
    return [
        DeviceLink(
            id=int(row.id),
            plant_id=int(row.plant_id),
            parent_device_id=int(row.parent_device_id) if row.parent_device_id is not None else None,
            template_id=int(row.template_id),
            device_identifier=row.device_identifier,
            mqtt_topic=row.mqtt_topic,
            name=row.name,
            device_type=row.device_type,
            status=row.status,
            hierarchy_version=int(row.hierarchy_version),
        )
        for row in rows
    ]


def list_children(db: Session, device_id: int) -> list[Device]:
    return list(
        db.scalars(
            select(Device).where(Device.parent_device_id == device_id).order_by(Device.id.asc())
        )
    )


def count_children(db: Session, device_id: int) -> int:
    return int(
        db.scalar(select(func.count(Device.id)).where(Device.parent_device_id == device_id)) or 0
    )


def add_device(
    db: Session,
    *,
    plant_id: int,
    template_id: int,
    parent_device_id: int | None,
    device_identifier: str,
    mqtt_topic: str,
    name: str,
    device_type: str,
    status: str = "OFFLINE",
    manufacturer: str | None = None,
    model: str | None = None,
    serial_number: str | None = None,
    installation_date: datetime | None = None,
    metadata_json: dict[str, Any] | None = None,
) -> Device:
    device = Device(
        plant_id=plant_id,
        template_id=template_id,
        parent_device_id=parent_device_id,
        device_identifier=device_identifier,
        mqtt_topic=mqtt_topic,
        name=name,
        device_type=device_type,
        status=status,
        manufacturer=manufacturer,
        model=model,
        serial_number=serial_number,
        installation_date=installation_date,
        metadata_json=metadata_json,
        hierarchy_version=1,
    )
    db.add(device)
    db.flush()
    return device


def clone_template_tags(db: Session, device: Device, blueprints: list[TemplateTag]) -> list[DeviceTag]:
    tags = [
        DeviceTag(
            device_id=device.id,
            template_tag_id=blueprint.id,
            name=blueprint.tag_name,
            display_name=blueprint.display_name,
            unit=blueprint.unit,
            data_type=blueprint.data_type,
            min_value=blueprint.min_value,
            max_value=blueprint.max_value,
            description=blueprint.description,
        )
        for blueprint in blueprints
    ]
    db.add_all(tags)
    db.flush()
    return tags


def append_hierarchy_history(
    db: Session,
    *,
    device_id: int,
    parent_device_id: int | None,
    hierarchy_version: int,
    effective_from: datetime,
    changed_by: str | None,
    change_reason: str | None,
) -> DeviceHierarchyHistory:
    entry = DeviceHierarchyHistory(
        device_id=device_id,
        parent_device_id=parent_device_id,
        hierarchy_version=hierarchy_version,
        effective_from=effective_from,
        changed_by=changed_by,
        change_reason=change_reason,
    )
    db.add(entry)
    db.flush()
    return entry


def list_device_history(db: Session, device_id: int) -> list[DeviceHierarchyHistory]:
    return list(
        db.scalars(
            select(DeviceHierarchyHistory)
            .where(DeviceHierarchyHistory.device_id == device_id)
            .order_by(DeviceHierarchyHistory.hierarchy_version.asc())
        )
    )


def reparent_device_guarded(
    db: Session,
    *,
    device_id: int,
    new_parent_id: int | None,
    expected_version: int,
) -> int:
    result = db.execute(
        update(Device)
        .where(
            Device.id == device_id,
            Device.hierarchy_version == expected_version,
        )
        .values(
            parent_device_id=new_parent_id,
            hierarchy_version=expected_version + 1,
            updated_at=func.now(),
        )
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount or 0)


def delete_device(db: Session, device: Device) -> None:
    db.delete(device)
    db.commit()
