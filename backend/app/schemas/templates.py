from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TemplateTagRequest(BaseModel):
    tag_name: str = Field(min_length=1, max_length=128)
    display_name: str | None = Field(default=None, max_length=128)
    unit: str | None = Field(default=None, max_length=32)
    data_type: str = Field(default="FLOAT", max_length=32)
    min_value: float | None = None
    max_value: float | None = None
    description: str | None = None
    display_order: int | None = Field(default=None, ge=0)


class TemplateCreateRequest(BaseModel):
    shortform: str = Field(min_length=2, max_length=6)
    name: str = Field(min_length=1, max_length=128)
    device_type: str = Field(min_length=1, max_length=64)
    manufacturer: str | None = Field(default=None, max_length=128)
    model: str | None = Field(default=None, max_length=128)
    description: str | None = None
    tags: list[TemplateTagRequest] = Field(default_factory=list)

    @field_validator("shortform", "name", "device_type", mode="before")
    @classmethod
    def _trim_text(cls, value: str) -> str:
        trimmed = value.strip()
        if trimmed == "":
            raise ValueError("value must not be empty")
        return trimmed


class TemplateTagResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    tag_name: str
    display_name: str | None
    unit: str | None
    data_type: str
    min_value: float | None
    max_value: float | None
    description: str | None
    display_order: int


class TemplateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    shortform: str
    name: str
    device_type: str
    manufacturer: str | None
    model: str | None
    description: str | None
    is_active: bool
    tags: list[TemplateTagResponse]
    created_at: datetime
    updated_at: datetime


class HierarchyRuleCreateRequest(BaseModel):
    parent_template_id: int | None = Field(default=None, ge=1)
    child_template_id: int = Field(ge=1)
    is_allowed: bool = True


class HierarchyRuleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    parent_template_id: int | None
    child_template_id: int
    is_allowed: bool
