"""Organization resolution middleware with JWT and header-based modes.

Resolves the organization from:
1. JWT claims in Authorization header (preferred for user requests)
2. X-Organization-ID header (fallback for service-to-service calls)

After resolution, sets TenantContext in contextvars for the request scope.
"""

from __future__ import annotations

import logging

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.app.core.security import verify_token
from src.app.core.tenant import (
    SKIP_TENANT_PATHS,
    TenantContext,
    _tenant_context,
    set_tenant_context,
)
from src.equipment_rag.errors import AuthError

logger = logging.getLogger(__name__)

ORGANIZATION_HEADER = "X-Organization-ID"


class TenantAuthMiddleware(BaseHTTPMiddleware):
    """Middleware that resolves the organization from JWT claims or a header.

    Supports two modes:
    1. JWT mode: ``organization_id`` and ``sub`` from a verified bearer token.
       An invalid token is rejected with 401 rather than falling through.
    2. Header mode: X-Organization-ID for trusted service callers.

    Paths in SKIP_TENANT_PATHS are excluded from tenant resolution.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        # Skip tenant resolution for excluded paths
        path = request.url.path
        if any(path.startswith(skip) for skip in SKIP_TENANT_PATHS):
            return await call_next(request)

        try:
            tenant_ctx = self._resolve_from_jwt(request)
        except AuthError as exc:
            return JSONResponse(
                status_code=401,
                content={"detail": str(exc)},
                headers={"WWW-Authenticate": "Bearer"},
            )

        if not tenant_ctx:
            tenant_ctx = self._resolve_from_header(request)

        if not tenant_ctx:
            return JSONResponse(
                status_code=400,
                content={
                    "detail": "Missing organization context. Provide Authorization header "
                    f"with JWT or {ORGANIZATION_HEADER} header."
                },
            )

        # Set context and process request
        request.state.tenant = tenant_ctx
        token = set_tenant_context(tenant_ctx)
        try:
            response = await call_next(request)
            return response
        finally:
            _tenant_context.reset(token)

    def _resolve_from_jwt(self, request: Request) -> TenantContext | None:
        """Extract the organization from JWT claims in the Authorization header."""
        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            return None

        payload = verify_token(auth_header[7:], token_type="access")
        organization_id = payload.get("organization_id")
        if not organization_id:
            raise AuthError("Token has no organization claim")

        return TenantContext(organization_id=str(organization_id), user_id=str(payload["sub"]))

    def _resolve_from_header(self, request: Request) -> TenantContext | None:
        """Resolve the organization from X-Organization-ID."""
        organization_id = request.headers.get(ORGANIZATION_HEADER)
        if not organization_id:
            return None
        return TenantContext(organization_id=organization_id)
