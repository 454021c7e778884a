from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import (
    ConflictError,
    DeprovisioningPartialFailure,
    NotFoundError,
    ProvisioningStepError,
    ValidationError,
)
from app.db.models import Plant
from app.repositories.plants import (
    count_plant_devices,
    create_plant,
    delete_plant_cascade,
    get_plant_by_code,
    get_plant_by_id,
    list_plants,
    mark_provisioning_failed,
    store_iot_references,
    update_plant,
)
from app.services.credential_vault import CredentialVault, OpenedCredentials
from app.services.naming import normalize_base_topic, validate_plant_code
from app.services.provisioning import DeprovisioningReport, ProvisioningResult, ProvisioningService


@dataclass(frozen=True)
class PlantProvisioningOutcome:
    plant: Plant
    mode: str
    provisioning: ProvisioningResult | None
    error: ProvisioningStepError | None


@dataclass(frozen=True)
class PlantDeleteReport:
    plant_id: int
    code: str
    deleted_rows: dict[str, int]
    deprovisioning: DeprovisioningReport | None
    deprovisioning_error: DeprovisioningPartialFailure | None


class PlantService:
    def __init__(
        self,
        *,
        provisioning_service: ProvisioningService,
        vault: CredentialVault,
    ) -> None:
        self._provisioning = provisioning_service
        self._vault = vault
        self._logger = logging.getLogger("app.plants")

    def list_plants(self, db: Session) -> list[Plant]:
        return list_plants(db)

    def get_plant(self, db: Session, plant_id: int) -> Plant:
        plant = get_plant_by_id(db, plant_id)
        if plant is None:
            raise NotFoundError(f"Plant {plant_id} not found")
        return plant

    def create_plant(
        self,
        db: Session,
        *,
        code: str,
        name: str,
        mqtt_base_topic: str,
        capacity_kw: float | None = None,
        location_json: dict[str, Any] | None = None,
        created_by: str | None = None,
    ) -> PlantProvisioningOutcome:
        validate_plant_code(code)
        base_topic = normalize_base_topic(mqtt_base_topic)
        if not name or not name.strip():
            raise ValidationError("Plant name must not be empty")
        if get_plant_by_code(db, code) is not None:
            raise ConflictError(f"Plant code {code} already exists")

        try:
            plant = create_plant(
                db,
                code=code,
                name=name.strip(),
                mqtt_base_topic=base_topic,
                capacity_kw=capacity_kw,
                location_json=location_json,
                created_by=created_by,
            )
        except IntegrityError as exc:
            db.rollback()
            raise ConflictError(f"Plant code {code} already exists") from exc

        self._logger.info("plant created plant_id=%s code=%s", plant.id, plant.code)
        return self._provision(db, plant)

    def reprovision_plant(self, db: Session, plant_id: int) -> PlantProvisioningOutcome:
        plant = self.get_plant(db, plant_id)
        if plant.iot_provisioning_status == "provisioned" and plant.iot_thing_name:
            raise ConflictError(
                f"Plant {plant.code} already has IoT identity {plant.iot_thing_name}"
            )
        return self._provision(db, plant)

    def _provision(self, db: Session, plant: Plant) -> PlantProvisioningOutcome:
        try:
            result = self._provisioning.provision(
                plant_id=plant.id, plant_code=plant.code, plant_name=plant.name
            )
        except ProvisioningStepError as exc:
            self._logger.error(
                "plant kept without iot identity plant_id=%s code=%s step=%s",
                plant.id,
                plant.code,
                exc.step,
            )
            plant = mark_provisioning_failed(db, plant, error_text=exc.message)
            return PlantProvisioningOutcome(
                plant=plant, mode=self._provisioning.mode, provisioning=None, error=exc
            )

        references = result.plant_references()
        plant_id, code, name = plant.id, plant.code, plant.name
        try:
            plant = store_iot_references(db, plant, references=references, status=result.plant_status)
        except SQLAlchemyError:
            # Rollback expires the row; only the values captured above are used from here on.
            db.rollback()
            self._logger.exception(
                "storing iot references failed plant_id=%s code=%s; tearing down identity",
                plant_id,
                code,
            )
            self._teardown_unrecorded_identity(plant_id, Plant(code=code, name=name, **references))
            raise
        return PlantProvisioningOutcome(plant=plant, mode=result.mode, provisioning=result, error=None)

    def _teardown_unrecorded_identity(self, plant_id: int, unrecorded: Plant) -> None:
        try:
            self._provisioning.deprovision(unrecorded)
        except DeprovisioningPartialFailure as exc:
            self._logger.error(
                "iot identity left behind plant_id=%s code=%s failed_steps=%s",
                plant_id,
                unrecorded.code,
                [step for step, _ in exc.failed_steps],
            )

    def update_plant(
        self,
        db: Session,
        plant_id: int,
        *,
        name: str | None = None,
        mqtt_base_topic: str | None = None,
        capacity_kw: float | None = None,
        location_json: dict[str, Any] | None = None,
    ) -> Plant:
        plant = self.get_plant(db, plant_id)
        base_topic = None
        if mqtt_base_topic is not None:
            base_topic = normalize_base_topic(mqtt_base_topic)
            if base_topic != plant.mqtt_base_topic and count_plant_devices(db, plant.id) > 0:
                raise ConflictError(
                    f"Plant {plant.code} has devices; their topics derive from mqtt_base_topic"
                )
        if name is not None and not name.strip():
            raise ValidationError("Plant name must not be empty")
        return update_plant(
            db,
            plant,
            name=name.strip() if name is not None else None,
            mqtt_base_topic=base_topic,
            capacity_kw=capacity_kw,
            location_json=location_json,
        )

    def delete_plant(self, db: Session, plant_id: int) -> PlantDeleteReport:
        plant = self.get_plant(db, plant_id)
        code = plant.code
        report: DeprovisioningReport | None = None
        failure: DeprovisioningPartialFailure | None = None
        try:
            report = self._provisioning.deprovision(plant)
        except DeprovisioningPartialFailure as exc:
            failure = exc
            self._logger.warning(
                "deleting plant despite incomplete iot cleanup plant_id=%s code=%s failed_steps=%s",
                plant_id,
                code,
                [step for step, _ in exc.failed_steps],
            )

        deleted_rows = delete_plant_cascade(db, plant_id)
        self._logger.info("plant deleted plant_id=%s code=%s rows=%s", plant_id, code, deleted_rows)
        return PlantDeleteReport(
            plant_id=plant_id,
            code=code,
            deleted_rows=deleted_rows,
            deprovisioning=report,
            deprovisioning_error=failure,
        )

    def get_plant_credentials(self, db: Session, plant_id: int) -> OpenedCredentials:
        plant = self.get_plant(db, plant_id)
        if not plant.encrypted_certificate_pem or not plant.encrypted_private_key:
            raise NotFoundError(f"Plant {plant.code} has no stored IoT credentials")
        self._logger.info("plant credentials opened plant_id=%s code=%s", plant.id, plant.code)
        return self._vault.open(
            certificate_pem=plant.encrypted_certificate_pem,
            private_key=plant.encrypted_private_key,
        )

    def get_thing_shadow(self, db: Session, plant_id: int) -> dict[str, Any]:
        plant = self._require_thing(db, plant_id)
        if self._provisioning.mode != "live":
            return {"state": {}}
        try:
            return self._provisioning.resource_manager().get_thing_shadow(plant.iot_thing_name or "")
        except (ClientError, BotoCoreError) as exc:
            self._logger.warning("thing shadow read failed thing=%s error=%s", plant.iot_thing_name, exc)
            raise ProvisioningStepError(step="get_thing_shadow", cause=exc) from exc

    def update_desired_state(self, db: Session, plant_id: int, desired: dict[str, Any]) -> dict[str, Any]:
        plant = self._require_thing(db, plant_id)
        if self._provisioning.mode != "live":
            return {"state": {"desired": desired}}
        try:
            return self._provisioning.resource_manager().update_desired_state(
                plant.iot_thing_name or "",
                desired,
            )
        except (ClientError, BotoCoreError) as exc:
            self._logger.warning("thing shadow update failed thing=%s error=%s", plant.iot_thing_name, exc)
            raise ProvisioningStepError(step="update_thing_shadow", cause=exc) from exc

    def _require_thing(self, db: Session, plant_id: int) -> Plant:
        plant = self.get_plant(db, plant_id)
        if not plant.iot_thing_name:
            raise NotFoundError(f"Plant {plant.code} has no IoT thing")
        return plant
