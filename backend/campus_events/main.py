"""FastAPI application entry point."""
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from campus_events.config import settings
from campus_events.database import Base, engine
from campus_events.errors import DomainError, ValidationError

# Import routers
from campus_events.routers import events, registrations, check_in, notifications

# Import all models so Base.metadata knows about them
import campus_events.models  # noqa: F401

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Campus Events",
    description="Campus event approval, capacity-safe registration and gate check-in",
    version="0.1.0",
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(events.router, prefix="/api/events", tags=["Events"])
app.include_router(registrations.router, prefix="/api/registrations", tags=["Registrations"])
app.include_router(check_in.router, prefix="/api/check-in", tags=["CheckIn"])
app.include_router(notifications.router, prefix="/api/notifications", tags=["Notifications"])


@app.exception_handler(DomainError)
def domain_error_handler(request: Request, exc: DomainError):
    """Render every rejected operation as {error, message, retryable}."""
    if exc.retryable:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.info("%s %s rejected: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies, headers or query strings use the same error shape."""
    problems = []
    for err in exc.errors():
        field = ".".join(str(part) for part in err.get("loc", ())[1:])
        problems.append(f"{field}: {err.get('msg')}" if field else str(err.get("msg")))
    error = ValidationError("; ".join(problems) or "invalid request")
    logger.info("%s %s rejected: %s", request.method, request.url.path, error)
    return JSONResponse(status_code=error.http_status, content=error.to_dict())


@app.on_event("startup")
def on_startup():
    """Create database tables on startup (for SQLite dev mode)."""
    if settings.DATABASE_URL.startswith("sqlite"):
        Base.metadata.create_all(bind=engine)


@app.get("/api/health")
def health_check():
    return {"status": "ok"}
