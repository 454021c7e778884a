from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class DeviceCreateRequest(BaseModel):
    template_id: int = Field(ge=1)
    parent_device_id: int | None = Field(default=None, ge=1)
    name: str | None = Field(default=None, max_length=128)
    selected_tag_ids: list[int] | None = None
    serial_number: str | None = Field(default=None, max_length=128)
    installation_date: datetime | None = None
    metadata_json: dict[str, Any] | None = None
    changed_by: str | None = Field(default=None, max_length=128)

    @field_validator("name", mode="before")
    @classmethod
    def _trim_optional_name(cls, value: str | None) -> str | None:
        if value is None:
            return None
        trimmed = value.strip()
        return trimmed or None


class DeviceTagResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    template_tag_id: int | None
    name: str
    display_name: str | None
    unit: str | None
    data_type: str
    min_value: float | None
    max_value: float | None


class DeviceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    plant_id: int
    template_id: int
    parent_device_id: int | None
    device_identifier: str
    mqtt_topic: str
    name: str
    device_type: str
    status: str
    manufacturer: str | None
    model: str | None
    serial_number: str | None
    installation_date: datetime | None
    metadata_json: dict[str, Any] | None
    hierarchy_version: int
    created_at: datetime
    updated_at: datetime


class DeviceDetailResponse(DeviceResponse):
    tags: list[DeviceTagResponse] = Field(default_factory=list)


class DeviceHistoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    hierarchy_version: int
    parent_device_id: int | None
    effective_from: datetime
    changed_by: str | None
    change_reason: str | None


class DeviceDeleteResponse(BaseModel):
    device_id: int
    device_identifier: str
    deleted_tags: int
