"""Quota enforcement middleware.

Gates mutating forge requests: the request is classified to an operation,
the operation to a leaf subject, and the charged principal's rules are
evaluated against its usage before the handler runs.
"""

import logging
from typing import Any, Callable, Optional

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse, Response
from starlette.middleware.base import BaseHTTPMiddleware

from forgequota.common.constants import VISIBILITY_HEADER
from forgequota.common.models import ErrorResponse
from forgequota.server.middleware.auth import get_target
from forgequota.server.quota.enforcement import DEFAULT_GATED_ROUTES, GatedRoute, classify, match_operation
from forgequota.server.quota.errors import QuotaExceededError
from forgequota.server.quota.service import QuotaService

logger = logging.getLogger("forgequota.server.quota")


def quota_exceeded_response(exc: QuotaExceededError) -> JSONResponse:
    body = ErrorResponse(error=exc.error, message=str(exc), details=exc.details())
    return JSONResponse(status_code=exc.status_code, content=body.model_dump())


def quota_check_failed_response(message: str = "quota check failed") -> JSONResponse:
    body = ErrorResponse(error="QuotaCheckFailed", message=message)
    return JSONResponse(status_code=500, content=body.model_dump())


class QuotaEnforcementMiddleware(BaseHTTPMiddleware):
    """Reject writes that would exceed the charged principal's quota with 413.

    Requests that are not in the route table pass through untouched. A
    failure while checking rejects the write with 500, never allows it.
    """

    def __init__(
        self,
        app: Any,
        service: QuotaService,
        routes: Optional[tuple[GatedRoute, ...]] = None,
    ) -> None:
        super().__init__(app)
        self.service = service
        self.routes = routes if routes is not None else DEFAULT_GATED_ROUTES

    async def dispatch(self, request: Request, call_next: Callable) -> Response:  # type: ignore[override]
        if not self.service.enabled:
            return await call_next(request)

        operation = match_operation(request.method, request.url.path, self.routes)
        if operation is None:
            return await call_next(request)

        try:
            principal = get_target(request)
        except HTTPException as exc:
            return JSONResponse(status_code=exc.status_code, content={"error": "BadRequest", "message": exc.detail})
        if principal is None:
            return JSONResponse(
                status_code=401,
                content={"error": "Unauthorized", "message": "No principal to charge for this write"},
            )

        subject = classify(operation, request.headers.get(VISIBILITY_HEADER))
        try:
            await self.service.enforce(principal, subject)
        except QuotaExceededError as exc:
            return quota_exceeded_response(exc)
        except Exception:
            logger.exception("Quota check failed for %s %s (%s)", request.method, request.url.path, principal)
            return quota_check_failed_response()

        return await call_next(request)
