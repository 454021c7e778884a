from __future__ import annotations

import json
from typing import Any

from app.services.naming import PlantIotNames


POLICY_VERSION = "2012-10-17"


def build_policy_document(
    names: PlantIotNames,
    *,
    region: str,
    account_id: str,
) -> dict[str, Any]:
    prefix = f"arn:aws:iot:{region}:{account_id}"
    return {
        "Version": POLICY_VERSION,
        "Statement": [
            {
                "Effect": "Allow",
                "Action": ["iot:Connect"],
                "Resource": [f"{prefix}:client/{names.thing_name}"],
            },
            {
                "Effect": "Allow",
                "Action": ["iot:Publish"],
                "Resource": [
                    f"{prefix}:topic/{names.data_topic}",
                    f"{prefix}:topic/{names.data_topic}/*",
                ],
            },
            {
                "Effect": "Allow",
                "Action": ["iot:Subscribe"],
                "Resource": [
                    f"{prefix}:topicfilter/{names.command_topic}",
                    f"{prefix}:topicfilter/{names.command_topic}/*",
                ],
            },
            {
                "Effect": "Allow",
                "Action": ["iot:Receive"],
                "Resource": [
                    f"{prefix}:topic/{names.command_topic}",
                    f"{prefix}:topic/{names.command_topic}/*",
                ],
            },
            {
                "Effect": "Allow",
                "Action": [
                    "iot:UpdateThingShadow",
                    "iot:GetThingShadow",
                    "iot:DeleteThingShadow",
                ],
                "Resource": [f"{prefix}:thing/{names.thing_name}"],
            },
        ],
    }


def render_policy_document(document: dict[str, Any]) -> str:
    return json.dumps(document, separators=(",", ":"), sort_keys=False)
