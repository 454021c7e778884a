from __future__ import annotations

from typing import Any

from jsonschema import Draft202012Validator

from app.core.errors import ConfigurationError


_ARN_LIST = {
    "type": "array",
    "minItems": 1,
    "items": {"type": "string", "pattern": r"^arn:aws:iot:[a-z0-9-]+:\d{12}:"},
}

POLICY_DOCUMENT_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["Version", "Statement"],
    "additionalProperties": False,
    "properties": {
        "Version": {"const": "2012-10-17"},
        "Statement": {
            "type": "array",
            "minItems": 1,
            "items": {
                "type": "object",
                "required": ["Effect", "Action", "Resource"],
                "additionalProperties": False,
                "properties": {
                    "Effect": {"enum": ["Allow", "Deny"]},
                    "Action": {
                        "type": "array",
                        "minItems": 1,
                        "items": {"type": "string", "pattern": r"^iot:[A-Za-z]+$"},
                    },
                    "Resource": _ARN_LIST,
                },
            },
        },
    },
}

TOPIC_RULE_PAYLOAD_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["sql", "actions", "ruleDisabled", "awsIotSqlVersion"],
    "properties": {
        "sql": {"type": "string", "pattern": r"^SELECT .+ FROM '[^']+'$"},
        "description": {"type": "string", "maxLength": 2028},
        "ruleDisabled": {"type": "boolean"},
        "awsIotSqlVersion": {"type": "string"},
        "actions": {
            "type": "array",
            "minItems": 1,
            "items": {
                "type": "object",
                "required": ["sqs"],
                "properties": {
                    "sqs": {
                        "type": "object",
                        "required": [
                            "queueUrl",
                            "roleArn",
                            "messageDeduplicationId",
                            "messageGroupId",
                        ],
                        "properties": {
                            "queueUrl": {"type": "string", "pattern": r"^https://.+\.fifo$"},
                            "roleArn": {"type": "string", "pattern": r"^arn:aws:iam::\d{12}:role/.+"},
                            "useBase64": {"type": "boolean"},
                            "messageDeduplicationId": {"type": "string", "minLength": 1},
                            "messageGroupId": {"type": "string", "minLength": 1},
                        },
                    }
                },
            },
        },
        "errorAction": {"type": "object"},
    },
}

_POLICY_VALIDATOR = Draft202012Validator(POLICY_DOCUMENT_SCHEMA)
_RULE_VALIDATOR = Draft202012Validator(TOPIC_RULE_PAYLOAD_SCHEMA)


def schema_errors(validator: Draft202012Validator, document: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    for schema_error in sorted(validator.iter_errors(document), key=lambda item: list(item.path)):
        path = ".".join(str(part) for part in schema_error.path)
        errors.append(f"{path or '$'}: {schema_error.message}")
    return errors


def ensure_policy_document(document: dict[str, Any]) -> None:
    errors = schema_errors(_POLICY_VALIDATOR, document)
    if errors:
        raise ConfigurationError("IoT policy document is invalid: " + "; ".join(errors))


def ensure_topic_rule_payload(payload: dict[str, Any]) -> None:
    # The queue must be FIFO; dedup id and message group are rejected by standard queues.
    errors = schema_errors(_RULE_VALIDATOR, payload)
    if errors:
        raise ConfigurationError("IoT topic rule payload is invalid: " + "; ".join(errors))
