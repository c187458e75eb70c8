"""
CORS handling for every response the app produces.
"""

from __future__ import annotations

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp


class CorsHeadersMiddleware(BaseHTTPMiddleware):
    """
    Adds permissive CORS headers to every response and answers any OPTIONS
    request directly with an empty 200.
    """

    def __init__(self, app: ASGIApp, allow_origin: str = "*"):
        super().__init__(app)
        self.cors_headers = {
            "Access-Control-Allow-Origin": allow_origin,
            "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
            "Access-Control-Allow-Headers": "Content-Type",
        }

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.method == "OPTIONS":
            return Response(status_code=200, headers=self.cors_headers)

        response = await call_next(request)
        response.headers.update(self.cors_headers)
        return response
