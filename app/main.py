"""Application entrypoint for the Aarambh authentication service.

This module wires together the FastAPI application with its lifespan hooks,
database metadata, Redis cleanup, logging, error rendering and CORS
configuration. It is the root that other modules depend on when the API
process starts.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from app.api.routes import auth_router
from app.core.config import settings
from app.core.errors import AuthError
from app.core.logging import get_request_id, request_id_var, setup_logging
from app.core.security import ensure_signing_key
from app.db import models  # noqa: F401
from app.db.base import Base
from app.db.session import engine
from app.services.otp import close_redis_client

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Check the signing key, create tables on startup and dispose shared clients on shutdown.

    Dependencies:
    - `ensure_signing_key` aborts startup when tokens could not be signed safely.
    - Uses the async SQLAlchemy engine from `app.db.session` to ensure the
      metadata defined in `app.db.base.Base` (and the imported models) exists.
    - Cleans up the Redis client via `close_redis_client` so connections are
      properly released when the FastAPI app stops.
    """

    ensure_signing_key()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("service started", extra={"otp_backend": settings.OTP_BACKEND})
    yield
    await close_redis_client()
    await engine.dispose()


def _envelope(status_code: int, message: str, error=None, data=None, headers=None) -> JSONResponse:
    body = {"success": False, "message": message, "error": error}
    if data is not None:
        body["data"] = data
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body), headers=headers)


async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()), headers=exc.headers)


async def http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return _envelope(exc.status_code, str(exc.detail), error="HTTPError", headers=getattr(exc, "headers", None))


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    bad_email = any(err.get("loc", ())[-1:] == ("email",) for err in errors)
    if bad_email:
        return _envelope(400, "Invalid email format.", error="InvalidEmail")
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{field}: {first.get('msg')}" if field else "Invalid request."
    return _envelope(400, message, error="ValidationError")


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled error", extra={"path": request.url.path})
    return _envelope(500, "Internal server error", error="InternalError")


def create_application() -> FastAPI:
    """Assemble and configure the FastAPI application instance.

    - Injects the lifespan manager defined above to manage startup/shutdown.
    - Applies CORS settings sourced from environment-driven `settings`.
    - Renders every error into the `{success, message, data?, error?}` envelope.
    - Registers the authentication router that exposes OTP flows.
    """

    setup_logging()

    application = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.PROJECT_VERSION,
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @application.middleware("http")
    async def request_context(request: Request, call_next):
        rid = get_request_id(request)
        token = request_id_var.set(rid)
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)
        response.headers[settings.REQUEST_ID_HEADER] = rid
        return response

    application.add_exception_handler(AuthError, auth_error_handler)
    application.add_exception_handler(HTTPException, http_error_handler)
    application.add_exception_handler(RequestValidationError, validation_error_handler)
    application.add_exception_handler(Exception, unhandled_error_handler)

    application.include_router(auth_router)

    @application.get("/")
    async def healthcheck():
        """Lightweight health endpoint used by uptime monitors."""
        return {"success": True, "message": "Aarambh Auth Service is running!"}

    return application


app = create_application()
