"""
Request analytics middleware.

Wraps every request under the API prefix:
  - start_timing() before the handler
  - finish() after it, with the principal / credential / rejection that
    the auth dependencies left on request.state

Denied requests (401/403/429/503) are recorded with their status code and
count as failures. RequestAnalytics.finish() never raises, so analytics
cannot change a response.
"""

from collections.abc import Awaitable, Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from aftersales.auth.dependencies import client_ip
from aftersales.services.analytics import RequestAnalytics


def _int_header(value: str | None) -> int | None:
    if value is None or not value.isdigit():
        return None
    return int(value)


class RequestAnalyticsMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp, analytics: RequestAnalytics, prefix: str = "/v1") -> None:
        super().__init__(app)
        self.analytics = analytics
        self.prefix = prefix.rstrip("/")

    def _tracked(self, path: str) -> bool:
        return path == self.prefix or path.startswith(self.prefix + "/")

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        if not self._tracked(request.url.path):
            return await call_next(request)

        timing = self.analytics.start_timing(
            method=request.method,
            path=request.url.path,
            request_size=_int_header(request.headers.get("content-length")),
            client_ip=client_ip(request),
            user_agent=request.headers.get("user-agent"),
            referer=request.headers.get("referer"),
        )

        try:
            response = await call_next(request)
        except Exception as exc:
            await self.analytics.finish(
                timing,
                getattr(request.state, "principal", None),
                500,
                error_message=exc.__class__.__name__,
                credential=getattr(request.state, "credential", None),
            )
            raise

        auth_error = getattr(request.state, "auth_error", None)
        await self.analytics.finish(
            timing,
            getattr(request.state, "principal", None),
            response.status_code,
            response_size=_int_header(response.headers.get("content-length")),
            error_message=auth_error.message if auth_error is not None else None,
            credential=getattr(request.state, "credential", None),
        )
        return response
