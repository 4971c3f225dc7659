from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError, TimeoutError as PoolTimeoutError

from .auth.router_mfa import router as mfa_router
from .core.errors import MFAError, MFAErrorKind, MFAInternalError, MFAInvalidInputError, MFAUnavailableError
from .core.logging import get_logger
from .database import create_tables

logger = get_logger(__name__)

app = FastAPI(
    title="authguard API",
    description="TOTP verification, backup codes and trusted devices",
    version="1.0.0"
)

# Include routers
app.include_router(mfa_router)


def _error_response(error: MFAError) -> JSONResponse:
    # Only the sanitized message and numeric code ever leave the server
    return JSONResponse(
        status_code=error.status_code,
        content={"error": error.public_message, "code": error.status_code},
    )


@app.exception_handler(MFAError)
async def mfa_error_handler(request: Request, exc: MFAError):
    extra = {"kind": exc.kind.value, "path": request.url.path, "detail": exc.detail}
    if exc.kind == MFAErrorKind.INTERNAL:
        logger.exception("MFA request failed", extra=extra, exc=exc)
    else:
        logger.info("MFA request rejected", extra=extra)
    return _error_response(exc)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    logger.info(
        "Malformed MFA request",
        extra={"path": request.url.path, "errors": [err.get("loc") for err in exc.errors()]},
    )
    return _error_response(MFAInvalidInputError())


@app.exception_handler(OperationalError)
@app.exception_handler(PoolTimeoutError)
async def datastore_unavailable_handler(request: Request, exc: Exception):
    logger.error("Datastore unavailable", extra={"path": request.url.path, "error": type(exc).__name__})
    return _error_response(MFAUnavailableError())


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error", extra={"path": request.url.path}, exc=exc)
    return _error_response(MFAInternalError())


# Create database tables on startup
@app.on_event("startup")
async def startup_event():
    create_tables()
    logger.info("Database tables ready")


# Health check endpoint
@app.get("/health", status_code=status.HTTP_200_OK)
async def health_check():
    return {"status": "healthy", "service": "authguard"}
