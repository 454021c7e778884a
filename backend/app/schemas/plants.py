from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

ProvisioningStatus = Literal["not_provisioned", "provisioned", "simulated", "failed"]


class PlantCreateRequest(BaseModel):
    code: str = Field(min_length=3, max_length=20)
    name: str = Field(min_length=1, max_length=128)
    mqtt_base_topic: str = Field(min_length=1, max_length=255)
    capacity_kw: float | None = Field(default=None, ge=0)
    location_json: dict[str, Any] | None = None

    @field_validator("code", "name", "mqtt_base_topic", mode="before")
    @classmethod
    def _trim_text(cls, value: str) -> str:
        trimmed = value.strip()
        if trimmed == "":
            raise ValueError("value must not be empty")
        return trimmed


class PlantUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=128)
    mqtt_base_topic: str | None = Field(default=None, min_length=1, max_length=255)
    capacity_kw: float | None = Field(default=None, ge=0)
    location_json: dict[str, Any] | None = None

    @field_validator("name", "mqtt_base_topic", mode="before")
    @classmethod
    def _trim_optional_text(cls, value: str | None) -> str | None:
        if value is None:
            return None
        trimmed = value.strip()
        return trimmed or None


class PlantResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    code: str
    name: str
    mqtt_base_topic: str | None
    capacity_kw: float | None
    location_json: dict[str, Any] | None
    iot_thing_name: str | None
    iot_thing_arn: str | None
    iot_certificate_id: str | None
    iot_certificate_arn: str | None
    iot_policy_name: str | None
    iot_policy_arn: str | None
    iot_rule_name: str | None
    iot_rule_arn: str | None
    iot_data_topic: str | None
    iot_command_topic: str | None
    iot_provisioning_status: ProvisioningStatus
    iot_last_error: str | None
    created_by: str | None
    created_at: datetime
    updated_at: datetime


class PlantProvisioningResponse(BaseModel):
    plant: PlantResponse
    provisioning_mode: str
    provisioned: bool
    failed_step: str | None = None
    error: str | None = None


class PlantCredentialsResponse(BaseModel):
    plant_id: int
    thing_name: str | None
    data_topic: str | None
    command_topic: str | None
    certificate_pem: str
    private_key: str


class DeprovisioningFailureItem(BaseModel):
    step: str
    error: str


class PlantDeleteResponse(BaseModel):
    plant_id: int
    code: str
    deleted_rows: dict[str, int]
    deprovisioning_skipped: bool
    deprovisioning_attempted_steps: list[str] = Field(default_factory=list)
    deprovisioning_failures: list[DeprovisioningFailureItem] = Field(default_factory=list)


class ShadowDesiredStateRequest(BaseModel):
    desired: dict[str, Any] = Field(default_factory=dict)
