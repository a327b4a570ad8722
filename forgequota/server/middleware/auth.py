"""Authentication middleware for FastAPI.

The forge front-end authenticates end users itself and calls this service
with a shared service token plus the principal it authenticated.
"""

import logging
from typing import Any, Callable, Optional

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from forgequota.common.constants import AUTH_HEADER, PRINCIPAL_HEADER, TARGET_HEADER
from forgequota.server.quota.models import Principal

logger = logging.getLogger("forgequota.server.auth")


def _parse_principal_header(request: Request, header: str) -> Optional[Principal]:
    value = request.headers.get(header, "").strip()
    if not value:
        return None
    try:
        return Principal.parse(value)
    except ValueError:
        raise HTTPException(400, f"Invalid {header} header: {value!r} (expected user:<id> or org:<id>)") from None


def get_principal(request: Request) -> Optional[Principal]:
    """Principal the forge authenticated for this request, if any."""
    if not hasattr(request.state, "principal"):
        request.state.principal = _parse_principal_header(request, PRINCIPAL_HEADER)
    return request.state.principal  # type: ignore[no-any-return]


def get_target(request: Request) -> Optional[Principal]:
    """Principal that will own the written bytes (defaults to the caller)."""
    return _parse_principal_header(request, TARGET_HEADER) or get_principal(request)


def require_principal(request: Request) -> Principal:
    principal = get_principal(request)
    if principal is None:
        raise HTTPException(401, f"{PRINCIPAL_HEADER} header required")
    return principal


def is_admin(request: Request) -> bool:
    """Whether the request carries an administrator token.

    With authentication disabled every caller is trusted.
    """
    settings = getattr(request.app.state, "settings", None)
    if settings is None or not settings.auth_enabled:
        return True
    api_token = request.headers.get(AUTH_HEADER, "")
    return bool(api_token) and api_token in settings.admin_tokens


def require_admin_access(request: Request) -> None:
    """Check that the request has admin-level access."""
    if not is_admin(request):
        raise HTTPException(403, "Admin access required")


class TokenAuthMiddleware(BaseHTTPMiddleware):
    """Token-based authentication middleware.

    Validates service or admin tokens in the X-API-Token header and
    resolves the X-Forge-Principal header onto ``request.state.principal``.
    """

    def __init__(
        self,
        app: Any,
        valid_tokens: list[str],
        admin_tokens: Optional[list[str]] = None,
        exclude_paths: Optional[list[str]] = None,
    ) -> None:
        super().__init__(app)
        self.valid_tokens = set(valid_tokens) | set(admin_tokens or [])
        self.exclude_paths = exclude_paths or [
            "/api/health",
            "/api/info",
            "/docs",
            "/openapi.json",
            "/redoc",
        ]

    def _active_tokens(self, request: Request) -> set[str]:
        """Current set of accepted tokens.

        Reads from ``app.state.settings`` when available so that
        hot-reloaded tokens take effect immediately.
        """
        settings = getattr(request.app.state, "settings", None)
        if settings is None:
            return self.valid_tokens
        return set(settings.auth_tokens) | set(settings.admin_tokens)

    async def dispatch(self, request: Request, call_next: Callable) -> JSONResponse:  # type: ignore[override]
        """Process request and validate token."""
        path = request.url.path

        # Skip authentication for excluded paths
        for exclude in self.exclude_paths:
            if path.startswith(exclude):
                return await call_next(request)

        # Skip authentication for OPTIONS requests (CORS preflight)
        if request.method == "OPTIONS":
            return await call_next(request)

        active_tokens = self._active_tokens(request)

        # No tokens configured: authentication is effectively off
        if active_tokens:
            api_token = request.headers.get(AUTH_HEADER)
            if not api_token or api_token not in active_tokens:
                logger.debug("Rejected request to %s: missing or unknown token", path)
                return JSONResponse(
                    status_code=401,
                    content={
                        "error": "Unauthorized",
                        "message": f"Provide a valid {AUTH_HEADER} header",
                    },
                )

        try:
            get_principal(request)
        except HTTPException as exc:
            return JSONResponse(
                status_code=exc.status_code,
                content={"error": "BadRequest", "message": exc.detail},
            )

        return await call_next(request)
