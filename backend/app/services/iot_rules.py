from __future__ import annotations

from typing import Any

from app.services.naming import PlantIotNames


IOT_SQL_VERSION = "2016-03-23"

# Evaluated by the rules engine per message; a redelivery of the same reading
# inside the FIFO dedup window yields the same id and collapses to one message.
DEDUPLICATION_ID_TEMPLATE = "${md5(topic())}-${md5(timestamp)}-${md5(deviceId)}"


def build_rule_sql(names: PlantIotNames) -> str:
    return (
        "SELECT *, topic() as topic, timestamp() as aws_timestamp "
        f"FROM '{names.data_topic}/#'"
    )


def build_sqs_action(
    names: PlantIotNames,
    *,
    queue_url: str,
    role_arn: str,
    message_group_id: str,
) -> dict[str, Any]:
    return {
        "sqs": {
            "queueUrl": queue_url,
            "roleArn": role_arn,
            "useBase64": False,
            "messageDeduplicationId": DEDUPLICATION_ID_TEMPLATE,
            # One group per plant: a plant's readings stay ordered, plants drain independently.
            "messageGroupId": message_group_id,
        }
    }


def build_topic_rule_payload(
    names: PlantIotNames,
    *,
    queue_url: str,
    role_arn: str,
    message_group_id: str,
    description: str | None = None,
) -> dict[str, Any]:
    return {
        "sql": build_rule_sql(names),
        "description": description or f"Data ingestion rule for solar plant {names.plant_code}",
        "actions": [
            build_sqs_action(
                names,
                queue_url=queue_url,
                role_arn=role_arn,
                message_group_id=message_group_id,
            )
        ],
        "ruleDisabled": False,
        "awsIotSqlVersion": IOT_SQL_VERSION,
        "errorAction": {
            "cloudwatchLogs": {
                "logGroupName": f"/aws/iot/rules/{names.rule_name}",
                "roleArn": role_arn,
            }
        },
    }
