from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.dependencies import get_plant_service
from app.schemas.plants import (
    DeprovisioningFailureItem,
    PlantCreateRequest,
    PlantCredentialsResponse,
    PlantDeleteResponse,
    PlantProvisioningResponse,
    PlantResponse,
    PlantUpdateRequest,
    ShadowDesiredStateRequest,
)
from app.services.plants import PlantDeleteReport, PlantProvisioningOutcome, PlantService


router = APIRouter(prefix="/api", tags=["plants"])


@router.get("/plants", response_model=list[PlantResponse])
def get_plants(
    db: Session = Depends(get_db),
    plant_service: PlantService = Depends(get_plant_service),
) -> list[PlantResponse]:
    return [PlantResponse.model_validate(plant) for plant in plant_service.list_plants(db)]


@router.post("/plants", response_model=PlantProvisioningResponse, status_code=status.HTTP_201_CREATED)
def post_plant(
    payload: PlantCreateRequest,
    db: Session = Depends(get_db),
    plant_service: PlantService = Depends(get_plant_service),
) -> PlantProvisioningResponse:
    outcome = plant_service.create_plant(
        db,
        code=payload.code,
        name=payload.name,
        mqtt_base_topic=payload.mqtt_base_topic,
        capacity_kw=payload.capacity_kw,
        location_json=payload.location_json,
    )
    return _to_provisioning_response(outcome)


@router.get("/plants/{plant_id}", response_model=PlantResponse)
def get_plant(
    plant_id: int,
    db: Session = Depends(get_db),
    plant_service: PlantService = Depends(get_plant_service),
) -> PlantResponse:
    return PlantResponse.model_validate(plant_service.get_plant(db, plant_id))


@router.put("/plants/{plant_id}", response_model=PlantResponse)
def put_plant(
    plant_id: int,
    payload: PlantUpdateRequest,
    db: Session = Depends(get_db),
    plant_service: PlantService = Depends(get_plant_service),
) -> PlantResponse:
    plant = plant_service.update_plant(
        db,
        plant_id,
        name=payload.name,
        mqtt_base_topic=payload.mqtt_base_topic,
        capacity_kw=payload.capacity_kw,
        location_json=payload.location_json,
    )
    return PlantResponse.model_validate(plant)


@router.delete("/plants/{plant_id}", response_model=PlantDeleteResponse)
def delete_plant(
    plant_id: int,
    db: Session = Depends(get_db),
    plant_service: PlantService = Depends(get_plant_service),
) -> PlantDeleteResponse:
    return _to_delete_response(plant_service.delete_plant(db, plant_id))


@router.post("/plants/{plant_id}/iot/provision", response_model=PlantProvisioningResponse)
def post_plant_reprovision(
    plant_id: int,
    db: Session = Depends(get_db),
    plant_service: PlantService = Depends(get_plant_service),
) -> PlantProvisioningResponse:
    return _to_provisioning_response(plant_service.reprovision_plant(db, plant_id))


@router.get("/plants/{plant_id}/iot/credentials", response_model=PlantCredentialsResponse)
def get_plant_credentials(
    plant_id: int,
    db: Session = Depends(get_db),
    plant_service: PlantService = Depends(get_plant_service),
) -> PlantCredentialsResponse:
    plant = plant_service.get_plant(db, plant_id)
    credentials = plant_service.get_plant_credentials(db, plant_id)
    return PlantCredentialsResponse(
        plant_id=plant.id,
        thing_name=plant.iot_thing_name,
        data_topic=plant.iot_data_topic,
        command_topic=plant.iot_command_topic,
        certificate_pem=credentials.certificate_pem,
        private_key=credentials.private_key,
    )


@router.get("/plants/{plant_id}/iot/shadow")
def get_plant_shadow(
    plant_id: int,
    db: Session = Depends(get_db),
    plant_service: PlantService = Depends(get_plant_service),
) -> dict[str, object]:
    return plant_service.get_thing_shadow(db, plant_id)


@router.put("/plants/{plant_id}/iot/shadow")
def put_plant_shadow(
    plant_id: int,
    payload: ShadowDesiredStateRequest,
    db: Session = Depends(get_db),
    plant_service: PlantService = Depends(get_plant_service),
) -> dict[str, object]:
    return plant_service.update_desired_state(db, plant_id, payload.desired)


def _to_provisioning_response(outcome: PlantProvisioningOutcome) -> PlantProvisioningResponse:
    return PlantProvisioningResponse(
        plant=PlantResponse.model_validate(outcome.plant),
        provisioning_mode=outcome.mode,
        provisioned=outcome.error is None,
        failed_step=outcome.error.step if outcome.error else None,
        error=outcome.error.message if outcome.error else None,
    )


def _to_delete_response(report: PlantDeleteReport) -> PlantDeleteResponse:
    failures = report.deprovisioning_error.failed_steps if report.deprovisioning_error else []
    return PlantDeleteResponse(
        plant_id=report.plant_id,
        code=report.code,
        deleted_rows=report.deleted_rows,
        deprovisioning_skipped=bool(report.deprovisioning and report.deprovisioning.skipped),
        deprovisioning_attempted_steps=(
            report.deprovisioning.attempted_steps if report.deprovisioning else []
        ),
        deprovisioning_failures=[
            DeprovisioningFailureItem(step=step, error=error) for step, error in failures
        ],
    )
