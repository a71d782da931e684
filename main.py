from contextlib import asynccontextmanager
from datetime import datetime
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy import text
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
import logging

from incident_api.core.config import settings
from incident_api.core.database import SessionLocal
from incident_api.core.exceptions import IncidentApiException, InfrastructureError, InternalServerError
from incident_api.core.rate_limit import limiter
from incident_api.core.middleware import (
    SecurityAuditMiddleware,
    SecurityHeadersMiddleware,
    RequestValidationMiddleware,
    TokenBlacklistMiddleware,
)
from incident_api.api.routes.auth import router as auth_router
from incident_api.api.routes.incidents import router as incidents_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

IS_PRODUCTION = settings.ENVIRONMENT == "production"


def run_migrations():
    """Run database migrations on startup."""
    from alembic.config import Config
    from alembic import command

    logger.info("Running database migrations...")
    alembic_cfg = Config("alembic.ini")
    command.upgrade(alembic_cfg, "head")
    logger.info("Database migrations completed successfully")


def seed_reference_data(session_factory):
    from incident_api.services.incident_service import seed_reference_data as seed

    db = session_factory()
    try:
        seed(db)
    except SQLAlchemyError as e:
        # Schema not migrated yet
        db.rollback()
        logger.warning(f"Reference data not seeded: {e}")
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    logger.info("Starting Incident Tracker API...")

    errors = settings.validate_required_secrets()
    if errors:
        for error in errors:
            logger.error(f"Configuration error: {error}")
        raise RuntimeError("Invalid configuration: " + "; ".join(errors))

    if IS_PRODUCTION:
        run_migrations()

    seed_reference_data(app.state.session_factory)

    from incident_api.core.scheduler import start_scheduler, shutdown_scheduler
    if settings.SCHEDULER_ENABLED:
        start_scheduler(app.state.session_factory)

    logger.info("Incident Tracker API started successfully")
    yield
    # Shutdown
    shutdown_scheduler()
    from incident_api.api.deps import get_email_sender
    get_email_sender().close()
    get_email_sender.cache_clear()
    logger.info("Shutting down Incident Tracker API...")


app = FastAPI(
    title="Incident Tracker API",
    description="Incident tracking with JWT authentication and session security",
    version="1.0.0",
    lifespan=lifespan,
    # Disable docs in production
    docs_url=None if IS_PRODUCTION else "/docs",
    redoc_url=None if IS_PRODUCTION else "/redoc",
)

# Sessions for middleware and background jobs; tests swap in their own
app.state.session_factory = SessionLocal

# Add rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# Exception handlers
@app.exception_handler(IncidentApiException)
async def incident_api_exception_handler(request: Request, exc: IncidentApiException):
    """Handle domain exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_content(),
        headers=exc.headers,
    )


@app.exception_handler(SQLAlchemyError)
async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError):
    """Handle database errors."""
    logger.error(f"Database error: {exc}")
    error = InfrastructureError()
    return JSONResponse(status_code=error.status_code, content=error.to_content())


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected errors."""
    logger.error(f"Unexpected error: {exc}", exc_info=True)
    error = InternalServerError()
    return JSONResponse(status_code=error.status_code, content=error.to_content())

# Security middleware (order matters - last added runs first)
app.add_middleware(TokenBlacklistMiddleware)
app.add_middleware(RequestValidationMiddleware)
app.add_middleware(SecurityAuditMiddleware)
app.add_middleware(SecurityHeadersMiddleware)

# Configure CORS with tightened settings
allowed_origins = [settings.FRONTEND_URL]
if not IS_PRODUCTION:
    # Allow localhost variations in development
    allowed_origins.extend([
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:3000",
    ])

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=[
        "Authorization",
        "Content-Type",
        "Accept",
        "Origin",
        "X-Requested-With",
    ],
    expose_headers=["Retry-After"],
    max_age=600,  # Cache preflight requests for 10 minutes
)

# Include routers
app.include_router(auth_router, prefix="/api")
app.include_router(incidents_router, prefix="/api")


@app.get("/")
def root():
    return {"message": "Welcome to the Incident Tracker API"}


@app.get("/health")
def health_check():
    """Health check endpoint for load balancers and monitoring."""
    health_status = {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "version": "1.0.0",
    }

    # Check database connectivity
    db = app.state.session_factory()
    try:
        db.execute(text("SELECT 1"))
        health_status["database"] = "connected"
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        health_status["status"] = "unhealthy"
        health_status["database"] = "disconnected"
    finally:
        db.close()

    return health_status
