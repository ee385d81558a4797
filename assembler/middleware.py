from fastapi import FastAPI, Request, HTTPException
from fastapi.responses import JSONResponse
import logging
import traceback

from assembler.exceptions import ConfigurationError, StorageIOError, UploadValidationError

logger = logging.getLogger(__name__)


def _error(status_code: int, message: str, hint: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "code": status_code,
            "message": message,
            "hint": hint,
            "retryable": status_code >= 500
        }
    )


def add_error_handling_middleware(app: FastAPI):
    """Add error handling middleware to FastAPI app"""

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """Handle HTTP exceptions with proper error format"""
        logger.error(f"HTTP error {exc.status_code}: {exc.detail}")
        return _error(exc.status_code, exc.detail, "Check the request parameters and try again")

    @app.exception_handler(UploadValidationError)
    async def validation_exception_handler(request: Request, exc: UploadValidationError):
        logger.warning(f"Invalid upload request: {exc}")
        return _error(400, str(exc), "Check the upload parameters and try again")

    @app.exception_handler(StorageIOError)
    async def storage_exception_handler(request: Request, exc: StorageIOError):
        logger.error(f"Storage failure: {exc}")
        return _error(500, "Storage failure", "Retry the chunk; stored chunks are kept")

    @app.exception_handler(ConfigurationError)
    async def configuration_exception_handler(request: Request, exc: ConfigurationError):
        logger.error(f"Server misconfigured: {exc}")
        return _error(503, "Upload service is not configured", "Contact the server administrator")

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle general exceptions"""
        logger.error(f"Unhandled exception: {str(exc)}")
        logger.error(f"Traceback: {traceback.format_exc()}")
        return _error(500, "Internal server error", "Please try again later or contact support")
