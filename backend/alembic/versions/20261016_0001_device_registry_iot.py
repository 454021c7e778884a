"""device registry and plant iot identity

Revision ID: 20261016_0001
Revises:
Create Date: 2026-10-16 09:30:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "20261016_0001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "plants",
        sa.Column("id", sa.BigInteger(), sa.Identity(always=False), nullable=False),
        sa.Column("code", sa.String(length=20), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("mqtt_base_topic", sa.String(length=255), nullable=True),
        sa.Column("capacity_kw", sa.Float(), nullable=True),
        sa.Column("location_json", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("iot_thing_name", sa.String(length=128), nullable=True),
        sa.Column("iot_thing_arn", sa.String(length=255), nullable=True),
        sa.Column("iot_certificate_id", sa.String(length=128), nullable=True),
        sa.Column("iot_certificate_arn", sa.String(length=255), nullable=True),
        sa.Column("iot_policy_name", sa.String(length=128), nullable=True),
        sa.Column("iot_policy_arn", sa.String(length=255), nullable=True),
        sa.Column("iot_rule_name", sa.String(length=128), nullable=True),
        sa.Column("iot_rule_arn", sa.String(length=255), nullable=True),
        sa.Column("iot_data_topic", sa.String(length=255), nullable=True),
        sa.Column("iot_command_topic", sa.String(length=255), nullable=True),
        sa.Column("encrypted_certificate_pem", sa.Text(), nullable=True),
        sa.Column("encrypted_private_key", sa.Text(), nullable=True),
        sa.Column(
            "iot_provisioning_status",
            sa.String(length=32),
            server_default="not_provisioned",
            nullable=False,
        ),
        sa.Column("iot_last_error", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(length=128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint(
            "iot_provisioning_status IN ('not_provisioned','provisioned','simulated','failed')",
            name="ck_plants_iot_provisioning_status",
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code", name="uq_plants_code"),
    )

    op.create_table(
        "device_templates",
        sa.Column("id", sa.BigInteger(), sa.Identity(always=False), nullable=False),
        sa.Column("shortform", sa.String(length=6), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("device_type", sa.String(length=64), nullable=False),
        sa.Column("manufacturer", sa.String(length=128), nullable=True),
        sa.Column("model", sa.String(length=128), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("shortform", name="uq_device_templates_shortform"),
    )

    op.create_table(
        "template_tags",
        sa.Column("id", sa.BigInteger(), sa.Identity(always=False), nullable=False),
        sa.Column("template_id", sa.BigInteger(), nullable=False),
        sa.Column("tag_name", sa.String(length=128), nullable=False),
        sa.Column("display_name", sa.String(length=128), nullable=True),
        sa.Column("unit", sa.String(length=32), nullable=True),
        sa.Column("data_type", sa.String(length=32), server_default="FLOAT", nullable=False),
        sa.Column("min_value", sa.Float(), nullable=True),
        sa.Column("max_value", sa.Float(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("display_order", sa.Integer(), server_default="0", nullable=False),
        sa.ForeignKeyConstraint(["template_id"], ["device_templates.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("template_id", "tag_name", name="uq_template_tags_template_tag_name"),
    )

    op.create_table(
        "hierarchy_rules",
        sa.Column("id", sa.BigInteger(), sa.Identity(always=False), nullable=False),
        sa.Column("parent_template_id", sa.BigInteger(), nullable=True),
        sa.Column("child_template_id", sa.BigInteger(), nullable=False),
        sa.Column("is_allowed", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["parent_template_id"], ["device_templates.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["child_template_id"], ["device_templates.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "parent_template_id",
            "child_template_id",
            name="uq_hierarchy_rules_parent_child",
        ),
    )
    op.create_index(
        "uq_hierarchy_rules_root_child",
        "hierarchy_rules",
        ["child_template_id"],
        unique=True,
        postgresql_where=sa.text("parent_template_id IS NULL"),
    )

    op.create_table(
        "device_sequences",
        sa.Column("id", sa.BigInteger(), sa.Identity(always=False), nullable=False),
        sa.Column("plant_id", sa.BigInteger(), nullable=False),
        sa.Column("template_id", sa.BigInteger(), nullable=False),
        sa.Column("shortform", sa.String(length=6), nullable=False),
        sa.Column("last_sequence", sa.BigInteger(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("last_sequence >= 1", name="ck_device_sequences_positive"),
        sa.ForeignKeyConstraint(["plant_id"], ["plants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["template_id"], ["device_templates.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("plant_id", "template_id", name="uq_device_sequences_plant_template"),
    )

    op.create_table(
        "devices",
        sa.Column("id", sa.BigInteger(), sa.Identity(always=False), nullable=False),
        sa.Column("plant_id", sa.BigInteger(), nullable=False),
        sa.Column("template_id", sa.BigInteger(), nullable=False),
        sa.Column("parent_device_id", sa.BigInteger(), nullable=True),
        sa.Column("device_identifier", sa.String(length=64), nullable=False),
        sa.Column("mqtt_topic", sa.String(length=320), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("device_type", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=32), server_default="OFFLINE", nullable=False),
        sa.Column("manufacturer", sa.String(length=128), nullable=True),
        sa.Column("model", sa.String(length=128), nullable=True),
        sa.Column("serial_number", sa.String(length=128), nullable=True),
        sa.Column("installation_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("metadata_json", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("hierarchy_version", sa.Integer(), server_default="1", nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint(
            "parent_device_id IS NULL OR parent_device_id <> id",
            name="ck_devices_not_own_parent",
        ),
        sa.ForeignKeyConstraint(["plant_id"], ["plants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["template_id"], ["device_templates.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["parent_device_id"], ["devices.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("plant_id", "device_identifier", name="uq_devices_plant_identifier"),
        sa.UniqueConstraint("plant_id", "mqtt_topic", name="uq_devices_plant_topic"),
    )
    op.create_index("ix_devices_plant_parent", "devices", ["plant_id", "parent_device_id"])

    op.create_table(
        "device_tags",
        sa.Column("id", sa.BigInteger(), sa.Identity(always=False), nullable=False),
        sa.Column("device_id", sa.BigInteger(), nullable=False),
        sa.Column("template_tag_id", sa.BigInteger(), nullable=True),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("display_name", sa.String(length=128), nullable=True),
        sa.Column("unit", sa.String(length=32), nullable=True),
        sa.Column("data_type", sa.String(length=32), nullable=False),
        sa.Column("min_value", sa.Float(), nullable=True),
        sa.Column("max_value", sa.Float(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["device_id"], ["devices.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["template_tag_id"], ["template_tags.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("device_id", "name", name="uq_device_tags_device_name"),
    )

    op.create_table(
        "device_hierarchy_history",
        sa.Column("id", sa.BigInteger(), sa.Identity(always=False), nullable=False),
        sa.Column("device_id", sa.BigInteger(), nullable=False),
        sa.Column("parent_device_id", sa.BigInteger(), nullable=True),
        sa.Column("hierarchy_version", sa.Integer(), nullable=False),
        sa.Column("effective_from", sa.DateTime(timezone=True), nullable=False),
        sa.Column("changed_by", sa.String(length=128), nullable=True),
        sa.Column("change_reason", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["device_id"], ["devices.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "device_id",
            "hierarchy_version",
            name="uq_device_hierarchy_history_device_version",
        ),
    )


def downgrade() -> None:
    op.drop_table("device_hierarchy_history")
    op.drop_table("device_tags")
    op.drop_index("ix_devices_plant_parent", table_name="devices")
    op.drop_table("devices")
    op.drop_table("device_sequences")
    op.drop_index("uq_hierarchy_rules_root_child", table_name="hierarchy_rules")
    op.drop_table("hierarchy_rules")
    op.drop_table("template_tags")
    op.drop_table("device_templates")
    op.drop_table("plants")
