from __future__ import annotations

import re
from dataclasses import dataclass

from app.core.errors import ValidationError


PLANT_CODE_PATTERN = re.compile(r"^[A-Z0-9_-]{3,20}$")
SHORTFORM_PATTERN = re.compile(r"^[A-Z0-9]{2,6}$")

THING_NAME_PREFIX = "solar-plant-"
POLICY_NAME_PREFIX = "solar-plant-policy-"
RULE_NAME_PREFIX = "solar_plant_rule_"
TOPIC_ROOT = "solar"


def validate_plant_code(code: str) -> str:
    if not isinstance(code, str) or not PLANT_CODE_PATTERN.fullmatch(code):
        raise ValidationError(
            f"Invalid plant code {code!r}: expected 3-20 characters of A-Z, 0-9, '_' or '-'"
        )
    return code


def normalize_shortform(shortform: str) -> str:
    normalized = (shortform or "").strip().upper()
    if not SHORTFORM_PATTERN.fullmatch(normalized):
        raise ValidationError(
            f"Invalid template shortform {shortform!r}: expected 2-6 characters of A-Z or 0-9"
        )
    return normalized


def normalize_base_topic(base_topic: str | None) -> str:
    normalized = (base_topic or "").strip().rstrip("/")
    if not normalized:
        raise ValidationError("mqtt_base_topic must be a non-empty topic prefix")
    if "+" in normalized or "#" in normalized:
        raise ValidationError("mqtt_base_topic must not contain MQTT wildcards")
    return normalized


def thing_name(plant_code: str) -> str:
    return f"{THING_NAME_PREFIX}{plant_code}"


def policy_name(plant_code: str) -> str:
    return f"{POLICY_NAME_PREFIX}{plant_code}"


def rule_name(plant_code: str) -> str:
    # Topic rule names only accept [a-zA-Z0-9_].
    return f"{RULE_NAME_PREFIX}{plant_code.replace('-', '_')}"


def data_topic(plant_code: str) -> str:
    return f"{TOPIC_ROOT}/{plant_code}/data"


def command_topic(plant_code: str) -> str:
    return f"{TOPIC_ROOT}/{plant_code}/commands"


def device_identifier(shortform: str, sequence: int) -> str:
    return f"{shortform}_{sequence}"


def device_topic(base_topic: str, identifier: str) -> str:
    return f"{base_topic}/{identifier}"


@dataclass(frozen=True)
class PlantIotNames:
    plant_code: str
    thing_name: str
    policy_name: str
    rule_name: str
    data_topic: str
    command_topic: str

    @classmethod
    def for_plant(cls, plant_code: str) -> "PlantIotNames":
        return cls(
            plant_code=plant_code,
            thing_name=thing_name(plant_code),
            policy_name=policy_name(plant_code),
            rule_name=rule_name(plant_code),
            data_topic=data_topic(plant_code),
            command_topic=command_topic(plant_code),
        )
