from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import (
    ConflictError,
    DeviceHasChildrenError,
    HierarchyViolation,
    NotFoundError,
    ValidationError,
)
from app.db.models import Device
from app.repositories.devices import (
    add_device,
    append_hierarchy_history,
    clone_template_tags,
    count_children,
    delete_device,
    get_device_by_id,
    list_children,
    list_plant_devices,
)
from app.repositories.plants import get_plant_by_id
from app.repositories.templates import get_template_by_id, list_template_tags
from app.services.device_sequencer import DeviceSequencer
from app.services.hierarchy import HierarchyService


@dataclass(frozen=True)
class DeviceDeleteResult:
    device_id: int
    device_identifier: str
    deleted_tags: int


class DeviceService:
    def __init__(
        self,
        *,
        sequencer: DeviceSequencer,
        hierarchy_service: HierarchyService,
    ) -> None:
        self._sequencer = sequencer
        self._hierarchy = hierarchy_service
        self._logger = logging.getLogger("app.devices")

    def create_device_from_template(
        self,
        db: Session,
        *,
        plant_id: int,
        template_id: int,
        parent_device_id: int | None = None,
        name: str | None = None,
        selected_tag_ids: list[int] | None = None,
        serial_number: str | None = None,
        installation_date: datetime | None = None,
        metadata_json: dict[str, Any] | None = None,
        changed_by: str | None = None,
    ) -> Device:
        try:
            device = self._create_device(
                db,
                plant_id=plant_id,
                template_id=template_id,
                parent_device_id=parent_device_id,
                name=name,
                selected_tag_ids=selected_tag_ids,
                serial_number=serial_number,
                installation_date=installation_date,
                metadata_json=metadata_json,
                changed_by=changed_by,
            )
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            raise ConflictError(f"Device identity conflict: {exc.orig}") from exc
        except Exception:
            db.rollback()
            raise

        db.refresh(device)
        self._logger.info(
            "device created plant_id=%s device_id=%s identifier=%s topic=%s parent=%s",
            plant_id,
            device.id,
            device.device_identifier,
            device.mqtt_topic,
            parent_device_id,
        )
        return device

    def _create_device(
        self,
        db: Session,
        *,
        plant_id: int,
        template_id: int,
        parent_device_id: int | None,
        name: str | None,
        selected_tag_ids: list[int] | None,
        serial_number: str | None,
        installation_date: datetime | None,
        metadata_json: dict[str, Any] | None,
        changed_by: str | None,
    ) -> Device:
        plant = get_plant_by_id(db, plant_id)
        if plant is None:
            raise NotFoundError(f"Plant {plant_id} not found")
        template = get_template_by_id(db, template_id)
        if template is None:
            raise NotFoundError(f"Device template {template_id} not found")
        if not template.is_active:
            raise ValidationError(f"Device template {template.shortform} is not active")

        parent: Device | None = None
        if parent_device_id is not None:
            parent = get_device_by_id(db, parent_device_id)
            if parent is None:
                raise NotFoundError(f"Parent device {parent_device_id} not found")
            if parent.plant_id != plant.id:
                raise HierarchyViolation(
                    f"Parent device {parent_device_id} belongs to a different plant"
                )

        self._hierarchy.validate_attachment(db, child_template_id=template.id, parent=parent)

        blueprints = list_template_tags(db, template.id, tag_ids=selected_tag_ids)
        if selected_tag_ids is not None and len(blueprints) != len(set(selected_tag_ids)):
            raise ValidationError(
                f"Selected tags do not all belong to template {template.shortform}"
            )

        identity = self._sequencer.allocate(db, plant=plant, template=template)
        device = add_device(
            db,
            plant_id=plant.id,
            template_id=template.id,
            parent_device_id=parent_device_id,
            device_identifier=identity.identifier,
            mqtt_topic=identity.topic,
            name=name or f"{template.name} {identity.sequence}",
            device_type=template.device_type,
            manufacturer=template.manufacturer,
            model=template.model,
            serial_number=serial_number,
            installation_date=installation_date,
            metadata_json=metadata_json,
        )
        clone_template_tags(db, device, blueprints)
        append_hierarchy_history(
            db,
            device_id=device.id,
            parent_device_id=parent_device_id,
            hierarchy_version=1,
            effective_from=datetime.now(timezone.utc),
            changed_by=changed_by,
            change_reason="created",
        )
        return device

    def get_device(self, db: Session, device_id: int) -> Device:
        device = get_device_by_id(db, device_id)
        if device is None:
            raise NotFoundError(f"Device {device_id} not found")
        return device

    def list_plant_devices(
        self,
        db: Session,
        plant_id: int,
        *,
        device_type: str | None = None,
        status: str | None = None,
    ) -> list[Device]:
        if get_plant_by_id(db, plant_id) is None:
            raise NotFoundError(f"Plant {plant_id} not found")
        return list_plant_devices(db, plant_id, device_type=device_type, status=status)

    def get_device_children(self, db: Session, device_id: int) -> list[Device]:
        self.get_device(db, device_id)
        return list_children(db, device_id)

    def delete_device(self, db: Session, device_id: int) -> DeviceDeleteResult:
        device = self.get_device(db, device_id)
        child_count = count_children(db, device_id)
        if child_count > 0:
            raise DeviceHasChildrenError(device_id=device_id, child_count=child_count)

        result = DeviceDeleteResult(
            device_id=device.id,
            device_identifier=device.device_identifier,
            deleted_tags=len(device.tags),
        )
        delete_device(db, device)
        self._logger.info(
            "device deleted device_id=%s identifier=%s", result.device_id, result.device_identifier
        )
        return result
