import logging
from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from ..modules.crypto import account_key
from ..modules.models import Caller

logger = logging.getLogger("api.auth")

PUBLIC_PATHS = ("/docs", "/openapi.json", "/health")


def resolve_caller(services, token: Optional[str]) -> Optional[Caller]:
    """Validate a bearer token through the identity service, with caching."""
    if not token:
        return None
    account_id = services.identity_cache.get(token)
    if account_id is None:
        try:
            account_id = services.identity.validate(token)
        except Exception as e:
            logger.info(f"Rejected token: {e}")
            return None
        services.identity_cache.set(token, account_id)
    return Caller(
        account_id=account_id,
        token=token,
        key_material=account_key(account_id, services.secret_key),
    )


def bearer_token(header: Optional[str]) -> Optional[str]:
    if header and header.startswith("Bearer "):
        return header[len("Bearer "):].strip()
    return None


class AuthMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        if request.url.path.startswith(PUBLIC_PATHS):
            return await call_next(request)

        token = bearer_token(request.headers.get("Authorization"))
        caller = resolve_caller(request.app.state.services, token)
        if caller is None:
            return JSONResponse(status_code=401, content={"detail": "Unauthorized"})
        request.state.caller = caller
        return await call_next(request)
