from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from nodectl.api.routes import get_caller, get_services

router = APIRouter()


class ApplicationRequest(BaseModel):
    node_id: str
    app_type: str
    subdomain: str
    version: Optional[str] = None
    name: Optional[str] = None
    description: str = ""


class UpgradeRequest(BaseModel):
    version: str = "latest"


class RotateRequest(BaseModel):
    password: Optional[str] = None


@router.get("/catalog")
def catalog(services=Depends(get_services)):
    return [
        {
            "id": t.app_type,
            "name": t.name,
            "description": t.description,
            "category": t.category,
            "default_port": t.default_port,
        }
        for t in services.catalog.list()
    ]


@router.post("/applications", status_code=202)
def create_application(req: ApplicationRequest, caller=Depends(get_caller), services=Depends(get_services)):
    app = services.apps.create(
        caller,
        node_id=req.node_id,
        app_type=req.app_type,
        subdomain=req.subdomain,
        version=req.version,
        name=req.name,
        description=req.description,
    )
    return app.to_dict()


@router.get("/applications")
def list_applications(caller=Depends(get_caller), services=Depends(get_services)):
    return [app.to_dict() for app in services.apps.list(caller)]


@router.get("/applications/{app_id}")
def get_application(app_id: str, caller=Depends(get_caller), services=Depends(get_services)):
    return services.apps.get(caller, app_id).to_dict()


@router.get("/applications/{app_id}/release")
def release_status(app_id: str, caller=Depends(get_caller), services=Depends(get_services)):
    return {"release_status": services.apps.release_status(caller, app_id)}


@router.post("/applications/{app_id}/upgrade", status_code=202)
def upgrade_application(
    app_id: str, req: UpgradeRequest, caller=Depends(get_caller), services=Depends(get_services)
):
    return services.apps.upgrade(caller, app_id, req.version).to_dict()


@router.delete("/applications/{app_id}", status_code=204)
def delete_application(app_id: str, caller=Depends(get_caller), services=Depends(get_services)):
    services.apps.delete(caller, app_id)


@router.get("/applications/{app_id}/password")
def get_password(app_id: str, caller=Depends(get_caller), services=Depends(get_services)):
    return {"password": services.apps.get_password(caller, app_id)}


@router.post("/applications/{app_id}/password/rotate")
def rotate_password(
    app_id: str, req: RotateRequest, caller=Depends(get_caller), services=Depends(get_services)
):
    return {"password": services.apps.rotate_password(caller, app_id, req.password)}


@router.post("/applications/{app_id}/password/retry")
def retry_password_capture(app_id: str, caller=Depends(get_caller), services=Depends(get_services)):
    return {"captured": services.apps.retry_password_capture(caller, app_id)}
