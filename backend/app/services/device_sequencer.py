from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from app.core.errors import ConfigurationError
from app.db.models import DeviceTemplate, Plant
from app.repositories.device_sequences import next_device_sequence
from app.services.naming import device_identifier, device_topic


@dataclass(frozen=True)
class DeviceIdentity:
    sequence: int
    identifier: str
    topic: str


class DeviceSequencer:
    def __init__(self) -> None:
        self._logger = logging.getLogger("app.devices")

    def allocate(self, db: Session, *, plant: Plant, template: DeviceTemplate) -> DeviceIdentity:
        """Reserve the next identifier for a (plant, template) pair inside the caller's transaction."""
        if not plant.code:
            raise ConfigurationError(f"Plant {plant.id} has no code; cannot allocate device identifiers")
        base_topic = plant.mqtt_base_topic
        if not base_topic or not base_topic.strip():
            raise ConfigurationError(
                f"Plant {plant.code} has no mqtt_base_topic; configure it before creating devices"
            )
        if not template.shortform:
            raise ConfigurationError(f"Template {template.id} has no shortform")

        sequence = next_device_sequence(
            db,
            plant_id=plant.id,
            template_id=template.id,
            shortform=template.shortform,
        )
        identifier = device_identifier(template.shortform, sequence)
        topic = device_topic(base_topic, identifier)
        self._logger.debug(
            "allocated device identity plant=%s template=%s sequence=%s identifier=%s",
            plant.code,
            template.shortform,
            sequence,
            identifier,
        )
        return DeviceIdentity(sequence=sequence, identifier=identifier, topic=topic)
