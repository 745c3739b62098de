from typing import Dict, Type

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from nodectl.api.middleware import AuthMiddleware
from nodectl.api.routes import apps, nodes, terminals
from nodectl.api.services import Services
from nodectl.modules.crypto import DecryptionError
from nodectl.modules.errors import (
    ConnectivityError,
    NodectlError,
    NotFoundError,
    OwnershipError,
    TemplateError,
    TerminalBusyError,
)

ERROR_STATUS: Dict[Type[Exception], int] = {
    NotFoundError: 404,
    OwnershipError: 403,
    TemplateError: 400,
    TerminalBusyError: 409,
    ConnectivityError: 502,
    DecryptionError: 409,
}


def error_status(error: Exception) -> int:
    for error_type, status in ERROR_STATUS.items():
        if isinstance(error, error_type):
            return status
    return 500


def create_app(services: Services) -> FastAPI:
    app = FastAPI(title="nodectl")
    app.state.services = services
    app.add_middleware(AuthMiddleware)

    @app.exception_handler(NodectlError)
    async def nodectl_error(request: Request, exc: NodectlError):
        return JSONResponse(status_code=error_status(exc), content={"detail": str(exc)})

    @app.exception_handler(ValueError)
    async def value_error(request: Request, exc: ValueError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.on_event("shutdown")
    def shutdown():
        services.close()

    app.include_router(nodes.router)
    app.include_router(apps.router)
    app.include_router(terminals.router)
    return app
