"""HTTP surface for the fleet manager.

Routes mirror the management UI's expectations; the upload callback under
/api/v1/upload is the only unauthenticated endpoint switches call into.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel
from starlette.datastructures import UploadFile

from .errors import (
    AuthError,
    DeviceConnectionError,
    DeviceNotFound,
    ProtocolError,
    SchemaNotAvailable,
    SwitchFleetError,
    TokenError,
)
from .manager import FleetManager
from .models import DevicePatch, DeviceSpec

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"


class CreateSwitchRequest(BaseModel):
    ip_address: str
    port: int
    use_https: bool = True
    username: str
    password: str


class UpdateSwitchRequest(BaseModel):
    ip_address: Optional[str] = None
    port: Optional[int] = None
    use_https: Optional[bool] = None
    username: Optional[str] = None
    password: Optional[str] = None


class UpdateSystemInfoRequest(BaseModel):
    sysName: str = ""
    sysLocation: str = ""
    sysContact: str = ""


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def get_manager(request: Request) -> FleetManager:
    return request.app.state.manager


router = APIRouter()


@router.get("/switches")
def list_switches(manager: FleetManager = Depends(get_manager)):
    return {"switches": [d.to_dict() for d in manager.list_devices()]}


@router.get("/switches/{switch_id}")
def get_switch(switch_id: int, manager: FleetManager = Depends(get_manager)):
    return {"switch": manager.get_device(switch_id).to_dict()}


@router.post("/switches", status_code=status.HTTP_201_CREATED)
def create_switch(body: CreateSwitchRequest, manager: FleetManager = Depends(get_manager)):
    device = manager.add_device(
        DeviceSpec(
            address=body.ip_address,
            port=body.port,
            use_https=body.use_https,
            username=body.username,
            password=body.password,
        )
    )
    return {"switch": device.to_dict()}


@router.put("/switches/{switch_id}")
def update_switch(switch_id: int, body: UpdateSwitchRequest, manager: FleetManager = Depends(get_manager)):
    device = manager.update_device(
        switch_id,
        DevicePatch(
            address=body.ip_address,
            port=body.port,
            use_https=body.use_https,
            username=body.username,
            password=body.password,
        ),
    )
    return {"switch": device.to_dict()}


@router.delete("/switches/{switch_id}")
def delete_switch(switch_id: int, manager: FleetManager = Depends(get_manager)):
    manager.remove_device(switch_id)
    return {"message": "Switch deleted"}


@router.post("/switches/{switch_id}/sync")
def sync_switch(switch_id: int, manager: FleetManager = Depends(get_manager)):
    manager.request_sync(switch_id)
    return {"message": "Sync triggered"}


@router.put("/switches/{switch_id}/system")
def update_system_info(
    switch_id: int,
    body: UpdateSystemInfoRequest,
    manager: FleetManager = Depends(get_manager),
):
    try:
        device = manager.update_system_info(
            switch_id,
            sys_name=body.sysName,
            sys_location=body.sysLocation,
            sys_contact=body.sysContact,
        )
    except DeviceConnectionError as exc:
        return _error(status.HTTP_502_BAD_GATEWAY, f"Failed to reach switch: {exc}")
    except AuthError as exc:
        return _error(status.HTTP_401_UNAUTHORIZED, f"Authentication failed: {exc}")
    except ProtocolError as exc:
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, f"Failed to update switch: {exc}")
    return {"switch": device.to_dict()}


@router.post("/switches/{switch_id}/fetch-schema")
def fetch_schema(switch_id: int, manager: FleetManager = Depends(get_manager)):
    try:
        token = manager.request_schema(switch_id)
    except DeviceNotFound:
        raise
    except SwitchFleetError as exc:
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, f"Failed to request schema: {exc}")
    return {
        "message": "Schema fetch requested. The switch will upload the schema shortly.",
        "token": token,
    }


@router.get("/switches/{switch_id}/schema")
def download_schema(switch_id: int, manager: FleetManager = Depends(get_manager)):
    device = manager.get_device(switch_id)
    schema, _ = manager.get_schema(switch_id)
    return Response(
        content=schema,
        media_type="application/x-yaml",
        headers={
            "Content-Description": "File Transfer",
            "Content-Disposition": f"attachment; filename=openapi-{device.display_name}.yaml",
        },
    )


@router.post("/upload/schema/{token}")
async def upload_schema(token: str, request: Request, manager: FleetManager = Depends(get_manager)):
    """Callback for switches pushing their debug-info bundle. Accepts multipart `file` or a raw body."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("multipart/form-data"):
        form = await request.form()
        upload = form.get("file")
        if not isinstance(upload, UploadFile):
            return _error(status.HTTP_400_BAD_REQUEST, "Failed to read upload")
        payload = await upload.read()
    else:
        payload = await request.body()

    manager.receive_upload(token, payload)
    return {"message": "Schema uploaded successfully"}


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(DeviceNotFound)
    async def _not_found(request: Request, exc: DeviceNotFound):
        return _error(status.HTTP_404_NOT_FOUND, "Switch not found")

    @app.exception_handler(TokenError)
    async def _bad_token(request: Request, exc: TokenError):
        return _error(status.HTTP_404_NOT_FOUND, "Invalid or expired upload token")

    @app.exception_handler(SchemaNotAvailable)
    async def _no_schema(request: Request, exc: SchemaNotAvailable):
        return _error(status.HTTP_404_NOT_FOUND, "No schema available. Please fetch it first.")


def create_app(manager: FleetManager) -> FastAPI:
    """Build the FastAPI app around an existing manager; the app owns its start/stop."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        manager.start()
        yield
        manager.stop()

    app = FastAPI(title="switchfleet", version="0.1.0", lifespan=lifespan)
    app.state.manager = manager

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    @app.get("/health")
    def health():
        return {"status": "healthy", "service": "switchfleet"}

    app.include_router(router, prefix=API_PREFIX)
    _register_error_handlers(app)
    return app
