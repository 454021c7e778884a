from typing import TYPE_CHECKING

from fastapi import HTTPException, Request

from app.core.config import Settings

if TYPE_CHECKING:
    from app.services.devices import DeviceService
    from app.services.hierarchy import HierarchyService
    from app.services.plants import PlantService
    from app.services.templates import TemplateCatalogService


def get_settings_from_app(request: Request) -> Settings:
    settings = getattr(request.app.state, "settings", None)
    if settings is None:
        raise HTTPException(status_code=503, detail="Application settings are not initialized")
    return settings


def get_plant_service(request: Request) -> "PlantService":
    service = getattr(request.app.state, "plant_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Plant service is not initialized")
    return service


def get_device_service(request: Request) -> "DeviceService":
    service = getattr(request.app.state, "device_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Device service is not initialized")
    return service


def get_hierarchy_service(request: Request) -> "HierarchyService":
    service = getattr(request.app.state, "hierarchy_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Hierarchy service is not initialized")
    return service


def get_template_service(request: Request) -> "TemplateCatalogService":
    service = getattr(request.app.state, "template_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Template service is not initialized")
    return service
