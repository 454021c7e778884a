from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from botocore.exceptions import ClientError

from app.core.errors import ConfigurationError
from app.services.iot_client import IotClientFactory
from app.services.iot_policy import build_policy_document, render_policy_document
from app.services.iot_rules import build_topic_rule_payload
from app.services.iot_schemas import ensure_policy_document, ensure_topic_rule_payload
from app.services.naming import PlantIotNames


_MISSING_CODES = {"ResourceNotFoundException", "NotFoundException"}


@dataclass(frozen=True)
class ThingRef:
    thing_name: str
    thing_arn: str
    thing_id: str | None


@dataclass(frozen=True)
class CertificateRef:
    certificate_id: str
    certificate_arn: str
    public_key: str | None = field(default=None, repr=False)
    certificate_pem: str = field(default="", repr=False)
    private_key: str = field(default="", repr=False)


@dataclass(frozen=True)
class PolicyRef:
    policy_name: str
    policy_arn: str


@dataclass(frozen=True)
class RuleRef:
    rule_name: str
    rule_arn: str


def account_from_arn(arn: str | None) -> str | None:
    if not arn:
        return None
    parts = arn.split(":")
    if len(parts) < 6 or not parts[4]:
        return None
    return parts[4]


def _is_missing(exc: ClientError) -> bool:
    return exc.response.get("Error", {}).get("Code") in _MISSING_CODES


class IotResourceManager:
    def __init__(
        self,
        *,
        client_factory: IotClientFactory,
        sqs_queue_url: str | None,
        iot_role_arn: str | None,
        account_id: str | None,
    ) -> None:
        self._factory = client_factory
        self._sqs_queue_url = sqs_queue_url
        self._iot_role_arn = iot_role_arn
        self._account_id = account_id
        self._logger = logging.getLogger("app.iot")

    @property
    def region(self) -> str:
        return self._factory.region

    def remember_account(self, arn: str | None) -> None:
        if self._account_id is None:
            self._account_id = account_from_arn(arn)

    def create_thing(self, names: PlantIotNames, *, plant_name: str) -> ThingRef:
        response = self._factory.iot().create_thing(
            thingName=names.thing_name,
            attributePayload={
                "attributes": {
                    "plantCode": names.plant_code,
                    "plantName": _attribute_value(plant_name),
                }
            },
        )
        thing = ThingRef(
            thing_name=response.get("thingName", names.thing_name),
            thing_arn=response["thingArn"],
            thing_id=response.get("thingId"),
        )
        self.remember_account(thing.thing_arn)
        self._logger.info("iot thing created thing=%s arn=%s", thing.thing_name, thing.thing_arn)
        return thing

    def delete_thing(self, thing_name: str) -> None:
        try:
            self._factory.iot().delete_thing(thingName=thing_name)
        except ClientError as exc:
            if not _is_missing(exc):
                raise
            self._logger.info("iot thing already absent thing=%s", thing_name)
            return
        self._logger.info("iot thing deleted thing=%s", thing_name)

    def create_certificate(self) -> CertificateRef:
        response = self._factory.iot().create_keys_and_certificate(setAsActive=True)
        key_pair = response.get("keyPair") or {}
        certificate = CertificateRef(
            certificate_id=response["certificateId"],
            certificate_arn=response["certificateArn"],
            public_key=key_pair.get("PublicKey"),
            certificate_pem=response["certificatePem"],
            private_key=key_pair["PrivateKey"],
        )
        self.remember_account(certificate.certificate_arn)
        self._logger.info("iot certificate created certificate_id=%s", certificate.certificate_id)
        return certificate

    def delete_certificate(self, certificate_id: str) -> None:
        client = self._factory.iot()
        try:
            client.update_certificate(certificateId=certificate_id, newStatus="INACTIVE")
            client.delete_certificate(certificateId=certificate_id, forceDelete=False)
        except ClientError as exc:
            if not _is_missing(exc):
                raise
            self._logger.info("iot certificate already absent certificate_id=%s", certificate_id)
            return
        self._logger.info("iot certificate deleted certificate_id=%s", certificate_id)

    def create_policy(self, names: PlantIotNames) -> PolicyRef:
        if not self._account_id:
            raise ConfigurationError("AWS account id is unknown; set AWS_ACCOUNT_ID")
        document = build_policy_document(names, region=self.region, account_id=self._account_id)
        ensure_policy_document(document)
        response = self._factory.iot().create_policy(
            policyName=names.policy_name,
            policyDocument=render_policy_document(document),
        )
        policy = PolicyRef(
            policy_name=response.get("policyName", names.policy_name),
            policy_arn=response["policyArn"],
        )
        self._logger.info("iot policy created policy=%s", policy.policy_name)
        return policy

    def delete_policy(self, policy_name: str) -> None:
        client = self._factory.iot()
        try:
            versions = client.list_policy_versions(policyName=policy_name).get("policyVersions", [])
            for version in versions:
                if version.get("isDefaultVersion"):
                    continue
                client.delete_policy_version(
                    policyName=policy_name,
                    policyVersionId=version["versionId"],
                )
            client.delete_policy(policyName=policy_name)
        except ClientError as exc:
            if not _is_missing(exc):
                raise
            self._logger.info("iot policy already absent policy=%s", policy_name)
            return
        self._logger.info("iot policy deleted policy=%s", policy_name)

    def attach_policy(self, policy_name: str, certificate_arn: str) -> None:
        self._factory.iot().attach_policy(policyName=policy_name, target=certificate_arn)

    def detach_policy(self, policy_name: str, certificate_arn: str) -> None:
        try:
            self._factory.iot().detach_policy(policyName=policy_name, target=certificate_arn)
        except ClientError as exc:
            if not _is_missing(exc):
                raise

    def attach_certificate(self, thing_name: str, certificate_arn: str) -> None:
        self._factory.iot().attach_thing_principal(thingName=thing_name, principal=certificate_arn)

    def detach_certificate(self, thing_name: str, certificate_arn: str) -> None:
        try:
            self._factory.iot().detach_thing_principal(thingName=thing_name, principal=certificate_arn)
        except ClientError as exc:
            if not _is_missing(exc):
                raise

    def create_rule(
        self,
        names: PlantIotNames,
        *,
        message_group_id: str,
        description: str | None = None,
    ) -> RuleRef:
        if not self._sqs_queue_url or not self._iot_role_arn:
            raise ConfigurationError(
                "AWS_SQS_QUEUE_URL and AWS_IOT_ROLE_ARN are required for rule creation"
            )
        if not self._account_id:
            raise ConfigurationError("AWS account id is unknown; set AWS_ACCOUNT_ID")
        payload = build_topic_rule_payload(
            names,
            queue_url=self._sqs_queue_url,
            role_arn=self._iot_role_arn,
            message_group_id=message_group_id,
            description=description,
        )
        ensure_topic_rule_payload(payload)
        self._factory.iot().create_topic_rule(ruleName=names.rule_name, topicRulePayload=payload)
        rule = RuleRef(
            rule_name=names.rule_name,
            rule_arn=f"arn:aws:iot:{self.region}:{self._account_id}:rule/{names.rule_name}",
        )
        self._logger.info("iot rule created rule=%s", rule.rule_name)
        return rule

    def delete_rule(self, rule_name: str) -> None:
        try:
            self._factory.iot().delete_topic_rule(ruleName=rule_name)
        except ClientError as exc:
            if not _is_missing(exc):
                raise
            self._logger.info("iot rule already absent rule=%s", rule_name)
            return
        self._logger.info("iot rule deleted rule=%s", rule_name)

    def get_thing_shadow(self, thing_name: str) -> dict[str, Any]:
        response = self._factory.iot_data().get_thing_shadow(thingName=thing_name)
        return _read_payload(response)

    def update_desired_state(self, thing_name: str, desired: dict[str, Any]) -> dict[str, Any]:
        response = self._factory.iot_data().update_thing_shadow(
            thingName=thing_name,
            payload=json.dumps({"state": {"desired": desired}}).encode("utf-8"),
        )
        return _read_payload(response)


def _attribute_value(value: str) -> str:
    # Thing attribute values allow [a-zA-Z0-9_.,@/:#-] up to 800 characters.
    cleaned = "".join(ch if ch.isalnum() or ch in "_.,@/:#-" else "_" for ch in value)
    return cleaned[:800] or "_"


def _read_payload(response: dict[str, Any]) -> dict[str, Any]:
    payload = response.get("payload")
    if payload is None:
        return {}
    raw = payload.read() if hasattr(payload, "read") else payload
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    return json.loads(raw) if raw else {}
