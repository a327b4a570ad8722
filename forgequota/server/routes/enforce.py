"""Service-to-service enforcement endpoint.

For forge handlers running outside this process: they ask before writing
and get 204 (go ahead) or 413 (quota exceeded).
"""

import logging

from fastapi import APIRouter, HTTPException, Response

from forgequota.common.constants import API_PREFIX
from forgequota.server.middleware.quota import quota_check_failed_response
from forgequota.server.quota.enforcement import classify, parse_operation
from forgequota.server.quota.errors import QuotaError
from forgequota.server.quota.models import EnforceRequest, Principal
from forgequota.server.quota.service import QuotaService
from forgequota.server.quota.subjects import LimitSubject, parse_subject

logger = logging.getLogger("forgequota.server.quota")


def _resolve_subject(body: EnforceRequest) -> LimitSubject:
    if body.subject:
        return parse_subject(body.subject)
    if body.operation:
        try:
            operation = parse_operation(body.operation)
        except ValueError as exc:
            raise HTTPException(422, str(exc)) from None
        return classify(operation, body.visibility)
    raise HTTPException(422, "Either 'operation' or 'subject' is required")


def create_enforce_router(service: QuotaService) -> APIRouter:
    router = APIRouter(prefix=f"{API_PREFIX}/quota", tags=["Quota"])

    @router.post("/enforce", status_code=204)
    async def enforce(body: EnforceRequest) -> Response:
        """Check a pending write for the principal in the body.

        Callers are services holding a token, so they may ask for any principal.
        """
        subject = _resolve_subject(body)
        principal = Principal(kind=body.kind, id=body.id)
        try:
            await service.enforce(principal, subject)
        except QuotaError:
            raise
        except Exception:
            logger.exception("Quota check failed for %s on %s", principal, subject.value)
            return quota_check_failed_response()
        return Response(status_code=204)

    return router
