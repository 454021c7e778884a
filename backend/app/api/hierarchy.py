from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.dependencies import get_hierarchy_service
from app.schemas.hierarchy import (
    DeviceLinkResponse,
    DeviceMoveRequest,
    DeviceMoveResponse,
    HierarchyReportResponse,
    HierarchyStatsResponse,
    HierarchyTreeResponse,
)
from app.services.hierarchy import HierarchyService


router = APIRouter(prefix="/api", tags=["hierarchy"])


@router.get("/plants/{plant_id}/hierarchy", response_model=HierarchyTreeResponse)
def get_plant_hierarchy(
    plant_id: int,
    db: Session = Depends(get_db),
    hierarchy_service: HierarchyService = Depends(get_hierarchy_service),
) -> HierarchyTreeResponse:
    roots = hierarchy_service.get_plant_hierarchy_tree(db, plant_id)
    return HierarchyTreeResponse(plant_id=plant_id, roots=roots)


@router.get("/plants/{plant_id}/hierarchy/stats", response_model=HierarchyStatsResponse)
def get_plant_hierarchy_stats(
    plant_id: int,
    db: Session = Depends(get_db),
    hierarchy_service: HierarchyService = Depends(get_hierarchy_service),
) -> HierarchyStatsResponse:
    return HierarchyStatsResponse.model_validate(hierarchy_service.get_hierarchy_stats(db, plant_id))


@router.get("/plants/{plant_id}/hierarchy/validate", response_model=HierarchyReportResponse)
def get_plant_hierarchy_validation(
    plant_id: int,
    db: Session = Depends(get_db),
    hierarchy_service: HierarchyService = Depends(get_hierarchy_service),
) -> HierarchyReportResponse:
    return HierarchyReportResponse.model_validate(hierarchy_service.validate_hierarchy(db, plant_id))


@router.post("/devices/{device_id}/move", response_model=DeviceMoveResponse)
def post_device_move(
    device_id: int,
    payload: DeviceMoveRequest,
    db: Session = Depends(get_db),
    hierarchy_service: HierarchyService = Depends(get_hierarchy_service),
) -> DeviceMoveResponse:
    result = hierarchy_service.move_device(
        db,
        device_id=device_id,
        new_parent_id=payload.new_parent_id,
        changed_by=payload.changed_by,
        reason=payload.reason,
    )
    return DeviceMoveResponse.model_validate(result)


@router.get("/devices/{device_id}/descendants", response_model=list[DeviceLinkResponse])
def get_device_descendants(
    device_id: int,
    db: Session = Depends(get_db),
    hierarchy_service: HierarchyService = Depends(get_hierarchy_service),
) -> list[DeviceLinkResponse]:
    return [
        DeviceLinkResponse.model_validate(link)
        for link in hierarchy_service.get_descendants(db, device_id)
    ]


@router.get("/devices/{device_id}/path", response_model=list[DeviceLinkResponse])
def get_device_path(
    device_id: int,
    db: Session = Depends(get_db),
    hierarchy_service: HierarchyService = Depends(get_hierarchy_service),
) -> list[DeviceLinkResponse]:
    return [DeviceLinkResponse.model_validate(link) for link in hierarchy_service.get_path(db, device_id)]


@router.get("/devices/{device_id}/siblings", response_model=list[DeviceLinkResponse])
def get_device_siblings(
    device_id: int,
    db: Session = Depends(get_db),
    hierarchy_service: HierarchyService = Depends(get_hierarchy_service),
) -> list[DeviceLinkResponse]:
    return [
        DeviceLinkResponse.model_validate(link)
        for link in hierarchy_service.get_device_siblings(db, device_id)
    ]
