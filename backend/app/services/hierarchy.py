from __future__ import annotations

import logging
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import (
    CycleError,
    HierarchyViolation,
    NotFoundError,
    StaleHierarchyError,
)
from app.db.models import Device
from app.repositories.devices import (
    DeviceLink,
    append_hierarchy_history,
    get_device_by_id,
    list_device_links,
    reparent_device_guarded,
)
from app.repositories.plants import get_plant_by_id, lock_plant
from app.repositories.templates import get_hierarchy_rule, list_allowed_attachments
from app.services.naming import device_topic


@dataclass(frozen=True)
class HierarchyIssue:
    device_id: int | None
    device_name: str | None
    type: str
    message: str


@dataclass(frozen=True)
class HierarchyReport:
    plant_id: int
    is_valid: bool
    total_devices: int
    issues: list[HierarchyIssue] = field(default_factory=list)

    @property
    def issues_found(self) -> int:
        return len(self.issues)


@dataclass(frozen=True)
class HierarchyStats:
    plant_id: int
    total_devices: int
    root_devices: int
    devices_by_type: dict[str, int]
    devices_by_status: dict[str, int]
    max_depth: int
    avg_children_per_device: float


@dataclass(frozen=True)
class MoveResult:
    device_id: int
    previous_parent_id: int | None
    new_parent_id: int | None
    hierarchy_version: int
    changed: bool


class _DeviceArena:
    """Flat id index plus a parent -> children index for one plant's devices."""

    def __init__(self, links: list[DeviceLink]) -> None:
        self.by_id: dict[int, DeviceLink] = {link.id: link for link in links}
        self.children: dict[int, list[int]] = {}
        for link in links:
            if link.parent_device_id is not None and link.parent_device_id in self.by_id:
                self.children.setdefault(link.parent_device_id, []).append(link.id)

    def get(self, device_id: int) -> DeviceLink | None:
        return self.by_id.get(device_id)

    def is_root(self, link: DeviceLink) -> bool:
        return link.parent_device_id is None or link.parent_device_id not in self.by_id

    def roots(self) -> list[DeviceLink]:
        return [link for link in self.by_id.values() if self.is_root(link)]

    def descendant_ids(self, device_id: int) -> list[int]:
        result: list[int] = []
        seen = {device_id}
        queue = deque(self.children.get(device_id, []))
        while queue:
            current = queue.popleft()
            if current in seen:
                continue
            seen.add(current)
            result.append(current)
            queue.extend(self.children.get(current, []))
        return result

    def path_ids(self, device_id: int) -> list[int]:
        path: list[int] = []
        seen: set[int] = set()
        current = self.by_id.get(device_id)
        while current is not None and current.id not in seen:
            seen.add(current.id)
            path.append(current.id)
            if current.parent_device_id is None:
                break
            current = self.by_id.get(current.parent_device_id)
        path.reverse()
        return path

    def depths(self) -> dict[int, int]:
        depth: dict[int, int] = {}
        queue = deque((root.id, 0) for root in self.roots())
        while queue:
            current, level = queue.popleft()
            if current in depth:
                continue
            depth[current] = level
            for child in self.children.get(current, []):
                queue.append((child, level + 1))
        return depth

    def in_cycle(self, device_id: int) -> bool:
        seen: set[int] = set()
        current = self.by_id.get(device_id)
        while current is not None and current.parent_device_id is not None:
            if current.id in seen:
                return True
            seen.add(current.id)
            current = self.by_id.get(current.parent_device_id)
        return False


class HierarchyService:
    def __init__(self) -> None:
        self._logger = logging.getLogger("app.hierarchy")

    def validate_attachment(
        self,
        db: Session,
        *,
        child_template_id: int,
        parent: Device | DeviceLink | None,
    ) -> None:
        parent_template_id = parent.template_id if parent is not None else None
        rule = get_hierarchy_rule(
            db,
            parent_template_id=parent_template_id,
            child_template_id=child_template_id,
        )
        if rule is None or not rule.is_allowed:
            where = f"under template {parent_template_id}" if parent is not None else "at plant root"
            raise HierarchyViolation(
                f"Template {child_template_id} may not be attached {where}: no allowing hierarchy rule"
            )

    def move_device(
        self,
        db: Session,
        *,
        device_id: int,
        new_parent_id: int | None,
        changed_by: str | None = None,
        reason: str | None = None,
    ) -> MoveResult:
        try:
            result = self._move_device(
                db,
                device_id=device_id,
                new_parent_id=new_parent_id,
                changed_by=changed_by,
                reason=reason,
            )
        except Exception:
            db.rollback()
            raise
        db.commit()
        if result.changed:
            self._logger.info(
                "device moved device_id=%s from_parent=%s to_parent=%s version=%s changed_by=%s",
                result.device_id,
                result.previous_parent_id,
                result.new_parent_id,
                result.hierarchy_version,
                changed_by,
            )
        return result

    def _move_device(
        self,
        db: Session,
        *,
        device_id: int,
        new_parent_id: int | None,
        changed_by: str | None,
        reason: str | None,
    ) -> MoveResult:
        device = get_device_by_id(db, device_id)
        if device is None:
            raise NotFoundError(f"Device {device_id} not found")
        plant_id = device.plant_id

        # Serializes concurrent moves within one plant until commit.
        if lock_plant(db, plant_id) is None:
            raise NotFoundError(f"Plant {plant_id} not found")

        arena = _DeviceArena(list_device_links(db, plant_id))
        current = arena.get(device_id)
        if current is None:
            raise NotFoundError(f"Device {device_id} not found")

        parent: DeviceLink | None = None
        if new_parent_id is not None:
            parent = arena.get(new_parent_id)
            if parent is None:
                if get_device_by_id(db, new_parent_id) is not None:
                    raise HierarchyViolation(
                        f"Parent device {new_parent_id} belongs to a different plant"
                    )
                raise NotFoundError(f"Parent device {new_parent_id} not found")

        if new_parent_id is not None and (
            new_parent_id == device_id or new_parent_id in arena.descendant_ids(device_id)
        ):
            raise CycleError(
                f"Moving device {device_id} under {new_parent_id} would create a circular reference"
            )

        self.validate_attachment(db, child_template_id=current.template_id, parent=parent)

        if current.parent_device_id == new_parent_id:
            return MoveResult(
                device_id=device_id,
                previous_parent_id=current.parent_device_id,
                new_parent_id=new_parent_id,
                hierarchy_version=current.hierarchy_version,
                changed=False,
            )

        updated = reparent_device_guarded(
            db,
            device_id=device_id,
            new_parent_id=new_parent_id,
            expected_version=current.hierarchy_version,
        )
        if updated != 1:
            raise StaleHierarchyError(
                f"Device {device_id} was moved concurrently; reload and retry"
            )

        new_version = current.hierarchy_version + 1
        append_hierarchy_history(
            db,
            device_id=device_id,
            parent_device_id=new_parent_id,
            hierarchy_version=new_version,
            effective_from=datetime.now(timezone.utc),
            changed_by=changed_by,
            change_reason=reason,
        )
        db.expire(device)
        return MoveResult(
            device_id=device_id,
            previous_parent_id=current.parent_device_id,
            new_parent_id=new_parent_id,
            hierarchy_version=new_version,
            changed=True,
        )

    def get_descendants(self, db: Session, device_id: int) -> list[DeviceLink]:
        arena = self._arena_for_device(db, device_id)
        return [arena.by_id[item] for item in arena.descendant_ids(device_id)]

    def get_path(self, db: Session, device_id: int) -> list[DeviceLink]:
        arena = self._arena_for_device(db, device_id)
        return [arena.by_id[item] for item in arena.path_ids(device_id)]

    def get_device_siblings(self, db: Session, device_id: int) -> list[DeviceLink]:
        arena = self._arena_for_device(db, device_id)
        device = arena.by_id[device_id]
        if arena.is_root(device):
            candidates = arena.roots()
        else:
            candidates = [arena.by_id[item] for item in arena.children.get(device.parent_device_id, [])]
        return [link for link in candidates if link.id != device_id]

    def get_plant_hierarchy_tree(self, db: Session, plant_id: int) -> list[dict[str, Any]]:
        self._require_plant(db, plant_id)
        arena = _DeviceArena(list_device_links(db, plant_id))
        emitted: set[int] = set()

        def build(device_id: int) -> dict[str, Any]:
            emitted.add(device_id)
            link = arena.by_id[device_id]
            return {
                "id": link.id,
                "device_identifier": link.device_identifier,
                "name": link.name,
                "device_type": link.device_type,
                "status": link.status,
                "mqtt_topic": link.mqtt_topic,
                "parent_device_id": link.parent_device_id,
                "children": [
                    build(child) for child in arena.children.get(device_id, []) if child not in emitted
                ],
            }

        return [build(root.id) for root in arena.roots()]

    def validate_hierarchy(self, db: Session, plant_id: int) -> HierarchyReport:
        try:
            plant = get_plant_by_id(db, plant_id)
            if plant is None:
                return HierarchyReport(
                    plant_id=plant_id,
                    is_valid=False,
                    total_devices=0,
                    issues=[
                        HierarchyIssue(
                            device_id=None,
                            device_name=None,
                            type="PLANT_NOT_FOUND",
                            message=f"Plant {plant_id} not found",
                        )
                    ],
                )
            links = list_device_links(db, plant_id)
            allowed = list_allowed_attachments(db)
        except SQLAlchemyError as exc:
            self._logger.exception("hierarchy scan failed plant_id=%s", plant_id)
            return HierarchyReport(
                plant_id=plant_id,
                is_valid=False,
                total_devices=0,
                issues=[
                    HierarchyIssue(
                        device_id=None,
                        device_name=None,
                        type="SCAN_FAILED",
                        message=f"Hierarchy scan could not read plant devices: {exc}",
                    )
                ],
            )

        arena = _DeviceArena(links)
        issues: list[HierarchyIssue] = []
        for link in links:
            if link.parent_device_id is not None and link.parent_device_id not in arena.by_id:
                issues.append(
                    HierarchyIssue(
                        device_id=link.id,
                        device_name=link.name,
                        type="ORPHANED",
                        message=(
                            f"Device has parent ID {link.parent_device_id} "
                            "which doesn't exist in this plant"
                        ),
                    )
                )
        for link in links:
            if arena.in_cycle(link.id):
                issues.append(
                    HierarchyIssue(
                        device_id=link.id,
                        device_name=link.name,
                        type="CIRCULAR_REFERENCE",
                        message="Device is part of a circular reference",
                    )
                )
        for link in links:
            parent = arena.get(link.parent_device_id) if link.parent_device_id is not None else None
            if link.parent_device_id is not None and parent is None:
                continue
            parent_template_id = parent.template_id if parent is not None else None
            if (parent_template_id, link.template_id) not in allowed:
                issues.append(
                    HierarchyIssue(
                        device_id=link.id,
                        device_name=link.name,
                        type="UNSANCTIONED_ATTACHMENT",
                        message=(
                            f"No allowing hierarchy rule for template {link.template_id} "
                            + (f"under template {parent_template_id}" if parent else "at plant root")
                        ),
                    )
                )
        if plant.mqtt_base_topic:
            for link in links:
                expected = device_topic(plant.mqtt_base_topic, link.device_identifier)
                if link.mqtt_topic != expected:
                    issues.append(
                        HierarchyIssue(
                            device_id=link.id,
                            device_name=link.name,
                            type="TOPIC_MISMATCH",
                            message=f"Device topic {link.mqtt_topic!r} differs from expected {expected!r}",
                        )
                    )

        if issues:
            self._logger.warning(
                "hierarchy drift detected plant_id=%s issues=%s", plant_id, len(issues)
            )
        return HierarchyReport(
            plant_id=plant_id,
            is_valid=not issues,
            total_devices=len(links),
            issues=issues,
        )

    def get_hierarchy_stats(self, db: Session, plant_id: int) -> HierarchyStats:
        self._require_plant(db, plant_id)
        links = list_device_links(db, plant_id)
        arena = _DeviceArena(links)
        depths = arena.depths()
        child_links = sum(len(children) for children in arena.children.values())
        return HierarchyStats(
            plant_id=plant_id,
            total_devices=len(links),
            root_devices=len(arena.roots()),
            devices_by_type=dict(Counter(link.device_type for link in links)),
            devices_by_status=dict(Counter(link.status for link in links)),
            max_depth=max(depths.values(), default=0),
            avg_children_per_device=round(child_links / len(links), 2) if links else 0.0,
        )

    def _arena_for_device(self, db: Session, device_id: int) -> _DeviceArena:
        device = get_device_by_id(db, device_id)
        if device is None:
            raise NotFoundError(f"Device {device_id} not found")
        return _DeviceArena(list_device_links(db, device.plant_id))

    def _require_plant(self, db: Session, plant_id: int) -> None:
        if get_plant_by_id(db, plant_id) is None:
            raise NotFoundError(f"Plant {plant_id} not found")
