from datetime import datetime

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Identity,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base

# SQLite only autoincrements INTEGER PRIMARY KEY columns.
IdType = BigInteger().with_variant(Integer(), "sqlite")
JsonType = JSON().with_variant(JSONB(), "postgresql")


class Plant(Base):
    __tablename__ = "plants"
    __table_args__ = (
        UniqueConstraint("code", name="uq_plants_code"),
        CheckConstraint(
            "iot_provisioning_status IN ('not_provisioned','provisioned','simulated','failed')",
            name="ck_plants_iot_provisioning_status",
        ),
    )

    id: Mapped[int] = mapped_column(IdType, Identity(always=False), primary_key=True)
    code: Mapped[str] = mapped_column(String(20), nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    mqtt_base_topic: Mapped[str | None] = mapped_column(String(255), nullable=True)
    capacity_kw: Mapped[float | None] = mapped_column(Float, nullable=True)
    location_json: Mapped[dict | None] = mapped_column(JsonType, nullable=True)
    iot_thing_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    iot_thing_arn: Mapped[str | None] = mapped_column(String(255), nullable=True)
    iot_certificate_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    iot_certificate_arn: Mapped[str | None] = mapped_column(String(255), nullable=True)
    iot_policy_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    iot_policy_arn: Mapped[str | None] = mapped_column(String(255), nullable=True)
    iot_rule_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    iot_rule_arn: Mapped[str | None] = mapped_column(String(255), nullable=True)
    iot_data_topic: Mapped[str | None] = mapped_column(String(255), nullable=True)
    iot_command_topic: Mapped[str | None] = mapped_column(String(255), nullable=True)
    encrypted_certificate_pem: Mapped[str | None] = mapped_column(Text, nullable=True)
    encrypted_private_key: Mapped[str | None] = mapped_column(Text, nullable=True)
    iot_provisioning_status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default="not_provisioned",
        server_default="not_provisioned",
    )
    iot_last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )


class DeviceTemplate(Base):
    __tablename__ = "device_templates"
    __table_args__ = (UniqueConstraint("shortform", name="uq_device_templates_shortform"),)

    id: Mapped[int] = mapped_column(IdType, Identity(always=False), primary_key=True)
    shortform: Mapped[str] = mapped_column(String(6), nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    device_type: Mapped[str] = mapped_column(String(64), nullable=False)
    manufacturer: Mapped[str | None] = mapped_column(String(128), nullable=True)
    model: Mapped[str | None] = mapped_column(String(128), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    tags: Mapped[list["TemplateTag"]] = relationship(
        back_populates="template",
        cascade="all, delete-orphan",
        order_by="TemplateTag.display_order",
    )


class TemplateTag(Base):
    __tablename__ = "template_tags"
    __table_args__ = (
        UniqueConstraint("template_id", "tag_name", name="uq_template_tags_template_tag_name"),
    )

    id: Mapped[int] = mapped_column(IdType, Identity(always=False), primary_key=True)
    template_id: Mapped[int] = mapped_column(
        IdType,
        ForeignKey("device_templates.id", ondelete="CASCADE"),
        nullable=False,
    )
    tag_name: Mapped[str] = mapped_column(String(128), nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    unit: Mapped[str | None] = mapped_column(String(32), nullable=True)
    data_type: Mapped[str] = mapped_column(String(32), nullable=False, default="FLOAT", server_default="FLOAT")
    min_value: Mapped[float | None] = mapped_column(Float, nullable=True)
    max_value: Mapped[float | None] = mapped_column(Float, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    template: Mapped[DeviceTemplate] = relationship(back_populates="tags")


class HierarchyRule(Base):
    __tablename__ = "hierarchy_rules"
    __table_args__ = (
        UniqueConstraint(
            "parent_template_id",
            "child_template_id",
            name="uq_hierarchy_rules_parent_child",
        ),
        Index(
            "uq_hierarchy_rules_root_child",
            "child_template_id",
            unique=True,
            postgresql_where=text("parent_template_id IS NULL"),
            sqlite_where=text("parent_template_id IS NULL"),
        ),
    )

    id: Mapped[int] = mapped_column(IdType, Identity(always=False), primary_key=True)
    parent_template_id: Mapped[int | None] = mapped_column(
        IdType,
        ForeignKey("device_templates.id", ondelete="CASCADE"),
        nullable=True,
    )
    child_template_id: Mapped[int] = mapped_column(
        IdType,
        ForeignKey("device_templates.id", ondelete="CASCADE"),
        nullable=False,
    )
    is_allowed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


class DeviceSequence(Base):
    __tablename__ = "device_sequences"
    __table_args__ = (
        UniqueConstraint("plant_id", "template_id", name="uq_device_sequences_plant_template"),
        CheckConstraint("last_sequence >= 1", name="ck_device_sequences_positive"),
    )

    id: Mapped[int] = mapped_column(IdType, Identity(always=False), primary_key=True)
    plant_id: Mapped[int] = mapped_column(
        IdType,
        ForeignKey("plants.id", ondelete="CASCADE"),
        nullable=False,
    )
    template_id: Mapped[int] = mapped_column(
        IdType,
        ForeignKey("device_templates.id", ondelete="RESTRICT"),
        nullable=False,
    )
    shortform: Mapped[str] = mapped_column(String(6), nullable=False)
    last_sequence: Mapped[int] = mapped_column(BigInteger, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )


class Device(Base):
    __tablename__ = "devices"
    __table_args__ = (
        UniqueConstraint("plant_id", "device_identifier", name="uq_devices_plant_identifier"),
        UniqueConstraint("plant_id", "mqtt_topic", name="uq_devices_plant_topic"),
        CheckConstraint(
            "parent_device_id IS NULL OR parent_device_id <> id",
            name="ck_devices_not_own_parent",
        ),
        Index("ix_devices_plant_parent", "plant_id", "parent_device_id"),
    )

    id: Mapped[int] = mapped_column(IdType, Identity(always=False), primary_key=True)
    plant_id: Mapped[int] = mapped_column(
        IdType,
        ForeignKey("plants.id", ondelete="CASCADE"),
        nullable=False,
    )
    template_id: Mapped[int] = mapped_column(
        IdType,
        ForeignKey("device_templates.id", ondelete="RESTRICT"),
        nullable=False,
    )
    # Tree links are parent back-pointers only; children are derived per traversal.
    parent_device_id: Mapped[int | None] = mapped_column(
        IdType,
        ForeignKey("devices.id"),
        nullable=True,
    )
    device_identifier: Mapped[str] = mapped_column(String(64), nullable=False)
    mqtt_topic: Mapped[str] = mapped_column(String(320), nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    device_type: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="OFFLINE", server_default="OFFLINE")
    manufacturer: Mapped[str | None] = mapped_column(String(128), nullable=True)
    model: Mapped[str | None] = mapped_column(String(128), nullable=True)
    serial_number: Mapped[str | None] = mapped_column(String(128), nullable=True)
    installation_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    metadata_json: Mapped[dict | None] = mapped_column(JsonType, nullable=True)
    hierarchy_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    tags: Mapped[list["DeviceTag"]] = relationship(
        back_populates="device",
        cascade="all, delete-orphan",
        order_by="DeviceTag.id",
    )
    history: Mapped[list["DeviceHierarchyHistory"]] = relationship(
        back_populates="device",
        cascade="all, delete-orphan",
        order_by="DeviceHierarchyHistory.hierarchy_version",
    )


class DeviceTag(Base):
    __tablename__ = "device_tags"
    __table_args__ = (UniqueConstraint("device_id", "name", name="uq_device_tags_device_name"),)

    id: Mapped[int] = mapped_column(IdType, Identity(always=False), primary_key=True)
    device_id: Mapped[int] = mapped_column(
        IdType,
        ForeignKey("devices.id", ondelete="CASCADE"),
        nullable=False,
    )
    template_tag_id: Mapped[int | None] = mapped_column(
        IdType,
        ForeignKey("template_tags.id", ondelete="SET NULL"),
        nullable=True,
    )
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    unit: Mapped[str | None] = mapped_column(String(32), nullable=True)
    data_type: Mapped[str] = mapped_column(String(32), nullable=False)
    min_value: Mapped[float | None] = mapped_column(Float, nullable=True)
    max_value: Mapped[float | None] = mapped_column(Float, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    device: Mapped[Device] = relationship(back_populates="tags")


class DeviceHierarchyHistory(Base):
    __tablename__ = "device_hierarchy_history"
    __table_args__ = (
        UniqueConstraint(
            "device_id",
            "hierarchy_version",
            name="uq_device_hierarchy_history_device_version",
        ),
    )

    id: Mapped[int] = mapped_column(IdType, Identity(always=False), primary_key=True)
    device_id: Mapped[int] = mapped_column(
        IdType,
        ForeignKey("devices.id", ondelete="CASCADE"),
        nullable=False,
    )
    parent_device_id: Mapped[int | None] = mapped_column(IdType, nullable=True)
    hierarchy_version: Mapped[int] = mapped_column(Integer, nullable=False)
    effective_from: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    changed_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    change_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    device: Mapped[Device] = relationship(back_populates="history")
