import logging

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from .utils import isoformat, utc_now

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


class CORSEnvelopeMiddleware(BaseHTTPMiddleware):
    """
    Outermost request wrapper.

    OPTIONS requests are answered here with 204 and the CORS headers; they
    never reach a route. Every other response gets the allow-origin header,
    and an exception that escaped the handlers becomes a generic 500 envelope.
    """

    async def dispatch(self, request: Request, call_next):
        if request.method == "OPTIONS":
            return Response(status_code=204, headers=CORS_HEADERS)

        try:
            response = await call_next(request)
        except Exception:
            logger.exception(f"Unhandled error on {request.method} {request.url.path}")
            response = JSONResponse(
                status_code=500,
                content={
                    "success": False,
                    "error": "Internal server error",
                    "timestamp": isoformat(utc_now()),
                },
            )

        response.headers["Access-Control-Allow-Origin"] = CORS_HEADERS["Access-Control-Allow-Origin"]
        return response
