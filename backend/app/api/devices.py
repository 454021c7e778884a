from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.dependencies import get_device_service
from app.repositories.devices import list_device_history
from app.schemas.devices import (
    DeviceCreateRequest,
    DeviceDeleteResponse,
    DeviceDetailResponse,
    DeviceHistoryResponse,
    DeviceResponse,
)
from app.services.devices import DeviceService


router = APIRouter(prefix="/api", tags=["devices"])


@router.get("/plants/{plant_id}/devices", response_model=list[DeviceResponse])
def get_plant_devices(
    plant_id: int,
    device_type: str | None = None,
    device_status: str | None = None,
    db: Session = Depends(get_db),
    device_service: DeviceService = Depends(get_device_service),
) -> list[DeviceResponse]:
    devices = device_service.list_plant_devices(
        db,
        plant_id,
        device_type=device_type,
        status=device_status,
    )
    return [DeviceResponse.model_validate(device) for device in devices]


@router.post(
    "/plants/{plant_id}/devices",
    response_model=DeviceDetailResponse,
    status_code=status.HTTP_201_CREATED,
)
def post_plant_device(
    plant_id: int,
    payload: DeviceCreateRequest,
    db: Session = Depends(get_db),
    device_service: DeviceService = Depends(get_device_service),
) -> DeviceDetailResponse:
    device = device_service.create_device_from_template(
        db,
        plant_id=plant_id,
        template_id=payload.template_id,
        parent_device_id=payload.parent_device_id,
        name=payload.name,
        selected_tag_ids=payload.selected_tag_ids,
        serial_number=payload.serial_number,
        installation_date=payload.installation_date,
        metadata_json=payload.metadata_json,
        changed_by=payload.changed_by,
    )
    return DeviceDetailResponse.model_validate(device)


@router.get("/devices/{device_id}", response_model=DeviceDetailResponse)
def get_device(
    device_id: int,
    db: Session = Depends(get_db),
    device_service: DeviceService = Depends(get_device_service),
) -> DeviceDetailResponse:
    return DeviceDetailResponse.model_validate(device_service.get_device(db, device_id))


@router.get("/devices/{device_id}/children", response_model=list[DeviceResponse])
def get_device_children(
    device_id: int,
    db: Session = Depends(get_db),
    device_service: DeviceService = Depends(get_device_service),
) -> list[DeviceResponse]:
    return [
        DeviceResponse.model_validate(child)
        for child in device_service.get_device_children(db, device_id)
    ]


@router.get("/devices/{device_id}/history", response_model=list[DeviceHistoryResponse])
def get_device_history(
    device_id: int,
    db: Session = Depends(get_db),
    device_service: DeviceService = Depends(get_device_service),
) -> list[DeviceHistoryResponse]:
    device_service.get_device(db, device_id)
    return [DeviceHistoryResponse.model_validate(entry) for entry in list_device_history(db, device_id)]


@router.delete("/devices/{device_id}", response_model=DeviceDeleteResponse)
def delete_device(
    device_id: int,
    db: Session = Depends(get_db),
    device_service: DeviceService = Depends(get_device_service),
) -> DeviceDeleteResponse:
    result = device_service.delete_device(db, device_id)
    return DeviceDeleteResponse(
        device_id=result.device_id,
        device_identifier=result.device_identifier,
        deleted_tags=result.deleted_tags,
    )
