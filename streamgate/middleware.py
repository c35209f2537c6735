from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from streamgate.configs import settings

DOCS_PATHS = ("/docs", "/redoc", "/openapi")


class DocsAccessControlMiddleware(BaseHTTPMiddleware):
    """Middleware that hides the API documentation when it is disabled in the settings."""

    async def dispatch(self, request: Request, call_next):
        path = request.url.path

        if settings.disable_docs and path.startswith(DOCS_PATHS):
            return JSONResponse(status_code=404, content={"error": "Not Found", "reason": None})

        return await call_next(request)
