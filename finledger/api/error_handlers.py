"""
Global exception handlers

LedgerError subclasses map to their own HTTP status; request-body validation
failures answer 400; anything else answers an opaque 500.
"""

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..errors import LedgerError
from ..logging_config import get_logger, log_action


logger = get_logger("finledger.api")


def register_error_handlers(app: FastAPI) -> None:
    """Register all global error handlers on the FastAPI app"""

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError):
        log_action(
            logger, "info", f"Request rejected: {exc.message}",
            user_id=request.headers.get("x-user-id"), action=request.url.path,
            extra={"error": exc.code, "category": exc.category.value}
        )
        return JSONResponse(status_code=exc.http_status, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        logger.warning(f"Validation error on {request.url.path}: {exc.errors()}")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "error": "validation_error",
                "category": "validation",
                "message": "Invalid request data",
                "details": {
                    ".".join(str(loc) for loc in e["loc"]): e["msg"]
                    for e in exc.errors()
                }
            }
        )

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "internal_error",
                "category": "internal",
                "message": "An unexpected error occurred",
                "details": {}
            }
        )
