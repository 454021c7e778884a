from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class DeviceMoveRequest(BaseModel):
    new_parent_id: int | None = Field(default=None, ge=1)
    changed_by: str | None = Field(default=None, max_length=128)
    reason: str | None = Field(default=None, max_length=1000)


class DeviceMoveResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    device_id: int
    previous_parent_id: int | None
    new_parent_id: int | None
    hierarchy_version: int
    changed: bool


class DeviceLinkResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    parent_device_id: int | None
    template_id: int
    device_identifier: str
    mqtt_topic: str
    name: str
    device_type: str
    status: str
    hierarchy_version: int


class HierarchyIssueResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    device_id: int | None
    device_name: str | None
    type: str
    message: str


class HierarchyReportResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    plant_id: int
    is_valid: bool
    total_devices: int
    issues_found: int
    issues: list[HierarchyIssueResponse]


class HierarchyStatsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    plant_id: int
    total_devices: int
    root_devices: int
    devices_by_type: dict[str, int]
    devices_by_status: dict[str, int]
    max_depth: int
    avg_children_per_device: float


class HierarchyTreeResponse(BaseModel):
    plant_id: int
    roots: list[dict[str, Any]]
