"""FastAPI application factory."""

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from roomblock.observability.context import (
    CORRELATION_ID_HEADER,
    generate_correlation_id,
    reset_correlation_id,
    set_correlation_id,
)
from roomblock.observability.logging import get_logger

from .routes import availability, bookings, email_notifications, events, hotels

logger = get_logger(__name__)


def _format_validation_errors(exc: RequestValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(p) for p in error.get("loc", ()) if p != "body")
        message = error.get("msg", "invalid value")
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts) or "Invalid request"


def create_app() -> FastAPI:
    """Create the API app with every router mounted."""
    app = FastAPI(
        title="Roomblock",
        docs_url=None,
        redoc_url=None,
    )

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next) -> Response:
        cid = request.headers.get(CORRELATION_ID_HEADER) or generate_correlation_id()
        token = set_correlation_id(cid)
        try:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = cid
            return response
        finally:
            reset_correlation_id(token)

    # Missing or malformed fields are a 400, as the admin UI expects.
    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        detail = _format_validation_errors(exc)
        logger.info(
            "request rejected",
            extra={"extra_fields": {"path": request.url.path, "errors": len(exc.errors())}},
        )
        return JSONResponse(status_code=400, content={"detail": detail})

    @app.get("/health")
    def health() -> dict:
        """Health check endpoint."""
        return {"status": "ok"}

    app.include_router(availability.router)
    app.include_router(hotels.router)
    app.include_router(bookings.router)
    app.include_router(events.router)
    app.include_router(email_notifications.router)

    return app
