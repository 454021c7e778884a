from __future__ import annotations

from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from app.db.models import (
    Device,
    DeviceHierarchyHistory,
    DeviceSequence,
    DeviceTag,
    Plant,
)


IOT_REFERENCE_FIELDS = (
    "iot_thing_name",
    "iot_thing_arn",
    "iot_certificate_id",
    "iot_certificate_arn",
    "iot_policy_name",
    "iot_policy_arn",
    "iot_rule_name",
    "iot_rule_arn",
    "iot_data_topic",
    "iot_command_topic",
    "encrypted_certificate_pem",
    "encrypted_private_key",
)


def list_plants(db: Session) -> list[Plant]:
    return list(db.scalars(select(Plant).order_by(Plant.code.asc())))


def get_plant_by_id(db: Session, plant_id: int) -> Plant | None:
    return db.get(Plant, plant_id)


def get_plant_by_code(db: Session, code: str) -> Plant | None:
    return db.scalars(select(Plant).where(Plant.code == code)).first()


def lock_plant(db: Session, plant_id: int) -> Plant | None:
    return db.scalars(
        select(Plant).where(Plant.id == plant_id).with_for_update()
    ).first()


def count_plant_devices(db: Session, plant_id: int) -> int:
    return int(db.scalar(select(func.count(Device.id)).where(Device.plant_id == plant_id)) or 0)


def create_plant(
    db: Session,
    *,
    code: str,
    name: str,
    mqtt_base_topic: str,
    capacity_kw: float | None = None,
    location_json: dict[str, Any] | None = None,
    created_by: str | None = None,
) -> Plant:
    plant = Plant(
        code=code,
        name=name,
        mqtt_base_topic=mqtt_base_topic,
        capacity_kw=capacity_kw,
        location_json=location_json,
        created_by=created_by,
        iot_provisioning_status="not_provisioned",
    )
    db.add(plant)
    db.commit()
    db.refresh(plant)
    return plant


def update_plant(
    db: Session,
    plant: Plant,
    *,
    name: str | None = None,
    mqtt_base_topic: str | None = None,
    capacity_kw: float | None = None,
    location_json: dict[str, Any] | None = None,
) -> Plant:
    if name is not None:
        plant.name = name
    if mqtt_base_topic is not None:
        plant.mqtt_base_topic = mqtt_base_topic
    if capacity_kw is not None:
        plant.capacity_kw = capacity_kw
    if location_json is not None:
        plant.location_json = location_json

    db.add(plant)
    db.commit()
    db.refresh(plant)
    return plant


def store_iot_references(
    db: Session,
    plant: Plant,
    *,
    references: dict[str, str | None],
    status: str,
) -> Plant:
    for field, value in references.items():
        if field not in IOT_REFERENCE_FIELDS:
            raise KeyError(field)
        setattr(plant, field, value)
    plant.iot_provisioning_status = status
    plant.iot_last_error = None
    db.add(plant)
    db.commit()
    db.refresh(plant)
    return plant


def mark_provisioning_failed(db: Session, plant: Plant, *, error_text: str) -> Plant:
    for field in IOT_REFERENCE_FIELDS:
        setattr(plant, field, None)
    plant.iot_provisioning_status = "failed"
    plant.iot_last_error = error_text[:2000]
    db.add(plant)
    db.commit()
    db.refresh(plant)
    return plant


def delete_plant_cascade(db: Session, plant_id: int) -> dict[str, int]:
    device_ids = select(Device.id).where(Device.plant_id == plant_id).scalar_subquery()
    history_deleted = db.execute(
        delete(DeviceHierarchyHistory).where(DeviceHierarchyHistory.device_id.in_(device_ids))
    ).rowcount
    tags_deleted = db.execute(delete(DeviceTag).where(DeviceTag.device_id.in_(device_ids))).rowcount
    devices_deleted = db.execute(delete(Device).where(Device.plant_id == plant_id)).rowcount
    sequences_deleted = db.execute(
        delete(DeviceSequence).where(DeviceSequence.plant_id == plant_id)
    ).rowcount
    plants_deleted = db.execute(delete(Plant).where(Plant.id == plant_id)).rowcount
    db.commit()
    return {
        "device_hierarchy_history": int(history_deleted or 0),
        "device_tags": int(tags_deleted or 0),
        "devices": int(devices_deleted or 0),
        "device_sequences": int(sequences_deleted or 0),
        "plants": int(plants_deleted or 0),
    }
