"""
FastAPI entrypoint for the TabTrust backend application.
"""
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tabtrust.core.config import settings
from tabtrust.core.errors import ErrorKind, ServiceError
from tabtrust.core.logging_config import configure_logging
from tabtrust.core.utils import format_error
from tabtrust.api.router import api_router
from tabtrust.db.session import SessionLocal
from tabtrust.services.container import build_services
from tabtrust.services.reminder_service import ReminderScheduler

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    services = build_services()
    app.state.services = services
    scheduler = None
    if settings.SCHEDULER_ENABLED:
        scheduler = ReminderScheduler(
            SessionLocal, services.email_sender, services.notifier, services.otp_service, services.trust
        )
        scheduler.start()
    yield
    if scheduler:
        scheduler.stop()
    services.close()


app = FastAPI(
    title="TabTrust API",
    description="Shared tab settlement and trust score backend",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    """Render service errors as {error, code, details}."""
    if exc.kind == ErrorKind.INTERNAL:
        logger.error(f"Internal error on {request.method} {request.url.path}: {exc.message} {exc.details}")
        body = format_error("Internal server error")
    else:
        body = format_error(exc.message, exc.details)
    body["code"] = exc.kind.value
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(body))


# Include API routes
app.include_router(api_router, prefix="/api")


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"message": "TabTrust API is running"}


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}
