"""
Admin access for the backup routes.

Every admin route resolves an AdminContext: the API key is checked and the
actor, client IP and user agent recorded in the audit log are read from
the request.
"""
import secrets
from typing import Callable, Optional

from fastapi import HTTPException, Request, Security, status
from fastapi.security import APIKeyHeader
from pydantic import BaseModel

DEFAULT_ACTOR = "admin"

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


class AdminContext(BaseModel):
    actor: str = DEFAULT_ACTOR
    client_ip: Optional[str] = None
    user_agent: Optional[str] = None

    def audit_fields(self) -> dict:
        return self.model_dump()


def client_ip_from(request: Request) -> Optional[str]:
    """First proxy header wins, then the socket peer"""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.headers.get("x-real-ip") or (request.client.host if request.client else None)


def build_admin_dependency(api_key: str) -> Callable[..., AdminContext]:
    """Create the dependency guarding admin routes with the configured key"""

    async def require_admin(request: Request, provided_key: Optional[str] = Security(api_key_header)) -> AdminContext:
        if not provided_key or not secrets.compare_digest(provided_key, api_key):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid or missing API Key"
            )
        return AdminContext(
            actor=request.headers.get("x-admin-user") or DEFAULT_ACTOR,
            client_ip=client_ip_from(request),
            user_agent=request.headers.get("user-agent"),
        )

    return require_admin
