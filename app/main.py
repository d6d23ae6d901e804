"""Main FastAPI application for the calendar backend."""
import logging
import os

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

load_dotenv()

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

from app.middleware.cors import add_cors_middleware  # noqa: E402
from app.db.init import init_db  # noqa: E402
from app.routers import auth_router, cache_router, plans_router  # noqa: E402
from app.services.alarm_scheduler import shutdown_alarm_scheduler, start_alarm_scheduler  # noqa: E402
from app.services.errors import PlanServiceError  # noqa: E402
from app.utils.metrics import metrics_collector  # noqa: E402

# Create FastAPI application
app = FastAPI(
    title="Personal Calendar API",
    description="REST API for plans with recurring schedules, month views and alarms",
    version="1.0.0",
)

# Add CORS middleware
add_cors_middleware(app)


@app.exception_handler(PlanServiceError)
async def plan_service_error_handler(request: Request, exc: PlanServiceError):
    logger.warning(f"{request.method} {request.url.path} -> {exc.status_code} {exc.code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.on_event("startup")
async def startup_event():
    """Initialize database and alarm jobs on startup."""
    try:
        init_db()
    except Exception as e:
        logger.error(f"Database initialization failed: {str(e)}")
        logger.warning("Server will continue but database operations may fail. Check DATABASE_URL.")

    start_alarm_scheduler()
    logger.info("Application startup complete.")


@app.on_event("shutdown")
async def shutdown_event():
    shutdown_alarm_scheduler()


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "1.0.0"}


@app.get("/metrics")
async def metrics():
    """In-process counters for plan writes, cache traffic and alarms."""
    return metrics_collector.get_metrics()


@app.get("/")
async def root():
    """Root endpoint - API welcome message."""
    return {
        "message": "Welcome to the Personal Calendar API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
    }


app.include_router(auth_router, prefix="/auth")  # Auth endpoints: /auth/sign-up, /auth/sign-in
app.include_router(plans_router, prefix="/api")  # Plan endpoints: /api/{user_id}/plans
app.include_router(cache_router, prefix="/api")  # Cache endpoints: /api/{user_id}/cache


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=int(os.environ.get("PORT", "8000")),
        reload=os.environ.get("ENVIRONMENT", "development") != "production",
    )
