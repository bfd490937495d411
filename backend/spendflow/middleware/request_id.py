"""Attach an X-Request-ID to every request and to log records emitted while serving it."""
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from spendflow.core.logging import request_id_ctx

HEADER = "X-Request-ID"


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(HEADER) or uuid.uuid4().hex
        token = request_id_ctx.set(request_id)
        try:
            response = await call_next(request)
        finally:
            request_id_ctx.reset(token)
        response.headers[HEADER] = request_id
        return response
