from __future__ import annotations

from sqlalchemy import select, text
from sqlalchemy.orm import Session

from app.db.models import DeviceSequence


def next_device_sequence(
    db: Session,
    *,
    plant_id: int,
    template_id: int,
    shortform: str,
) -> int:
    # Single-statement increment; the row lock taken by the upsert is held until the caller commits.
    value = db.execute(
        text(
            """
            INSERT INTO device_sequences
                (plant_id, template_id, shortform, last_sequence, created_at, updated_at)
            VALUES
                (:plant_id, :template_id, :shortform, 1, CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
            ON CONFLICT (plant_id, template_id)
            DO UPDATE SET
                last_sequence = device_sequences.last_sequence + 1,
                updated_at = CURRENT_TIMESTAMP
            RETURNING last_sequence
            """
        ),
        {
            "plant_id": plant_id,
            "template_id": template_id,
            "shortform": shortform,
        },
    ).scalar_one()
    return int(value)


def get_last_sequence(db: Session, *, plant_id: int, template_id: int) -> int | None:
    value = db.scalar(
        select(DeviceSequence.last_sequence).where(
            DeviceSequence.plant_id == plant_id,
            DeviceSequence.template_id == template_id,
        )
    )
    return int(value) if value is not None else None


def list_plant_sequences(db: Session, plant_id: int) -> list[DeviceSequence]:
    return list(
        db.scalars(
            select(DeviceSequence)
            .where(DeviceSequence.plant_id == plant_id)
            .order_by(DeviceSequence.shortform.asc())
        )
    )
