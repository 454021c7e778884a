import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api.devices import router as devices_router
from app.api.hierarchy import router as hierarchy_router
from app.api.plants import router as plants_router
from app.api.templates import router as templates_router
from app.core.config import Settings, get_settings
from app.core.errors import AppError
from app.core.logging import configure_logging
from app.db.session import check_db_connection, get_db
from app.services.credential_vault import CredentialVault
from app.services.device_sequencer import DeviceSequencer
from app.services.devices import DeviceService
from app.services.hierarchy import HierarchyService
from app.services.iot_client import IotClientFactory
from app.services.plants import PlantService
from app.services.provisioning import ProvisioningService
from app.services.templates import TemplateCatalogService


def install_services(app: FastAPI, *, settings: Settings, client_factory: IotClientFactory) -> None:
    vault = CredentialVault(settings=settings)
    provisioning_service = ProvisioningService(
        settings=settings,
        client_factory=client_factory,
        vault=vault,
    )
    hierarchy_service = HierarchyService()

    app.state.settings = settings
    app.state.iot_client_factory = client_factory
    app.state.credential_vault = vault
    app.state.provisioning_service = provisioning_service
    app.state.hierarchy_service = hierarchy_service
    app.state.template_service = TemplateCatalogService()
    app.state.device_service = DeviceService(
        sequencer=DeviceSequencer(),
        hierarchy_service=hierarchy_service,
    )
    app.state.plant_service = PlantService(
        provisioning_service=provisioning_service,
        vault=vault,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    settings = get_settings()
    install_services(app, settings=settings, client_factory=IotClientFactory(settings=settings))
    logging.getLogger("app.main").info(
        "backend started iot_mode=%s region=%s",
        settings.iot_provisioning_mode,
        settings.aws_region,
    )
    yield


app = FastAPI(title="Solar Fleet Backend", lifespan=lifespan)
app.include_router(plants_router)
app.include_router(devices_router)
app.include_router(hierarchy_router)
app.include_router(templates_router)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_detail())


@app.get("/health")
def health():
    return {"status": "ok", "service": "backend"}


@app.get("/status")
def status(request: Request, db: Session = Depends(get_db)):
    db_ok, db_error = check_db_connection(db)
    settings: Settings | None = getattr(request.app.state, "settings", None)

    db_status: dict[str, object] = {"ok": db_ok}
    if db_error:
        db_status["error"] = db_error

    return {
        "status": "ok" if db_ok else "degraded",
        "database": db_status,
        "iot": {
            "mode": settings.iot_provisioning_mode if settings else None,
            "region": settings.aws_region if settings else None,
            "rule_target_configured": bool(
                settings and settings.aws_sqs_queue_url and settings.aws_iot_role_arn
            ),
            "credential_vault_configured": bool(settings and settings.encryption_key),
        },
    }
