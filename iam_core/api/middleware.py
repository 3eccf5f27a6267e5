"""API middleware: correlation ID and request-scoped logging context."""

import logging
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from iam_core.core.context import actor_id_ctx, correlation_id_ctx, tenant_id_ctx

logger = logging.getLogger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Generate or preserve correlation ID; attach to request.state, response header, and logging context."""

    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        request.state.correlation_id = correlation_id
        correlation_token = correlation_id_ctx.set(correlation_id)
        principal = getattr(request.state, "principal", None)
        actor_token = actor_id_ctx.set(principal.principal_id if principal else None)
        tenant_token = tenant_id_ctx.set(principal.tenant_id if principal else None)
        try:
            response = await call_next(request)
        finally:
            correlation_id_ctx.reset(correlation_token)
            actor_id_ctx.reset(actor_token)
            tenant_id_ctx.reset(tenant_token)
        response.headers[CORRELATION_HEADER] = correlation_id
        logger.info(
            "request_completed",
            extra={
                "correlation_id": correlation_id,
                "path": request.url.path,
                "method": request.method,
                "status_code": response.status_code,
            },
        )
        return response
