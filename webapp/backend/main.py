"""
FastAPI main application for the class scheduling and teacher compensation backend.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from app_config.settings import ALLOWED_ORIGINS, ENVIRONMENT, LOG_LEVEL
from exceptions import SchedulingError

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Class Scheduling API",
    description="Timetables, session lifecycle, teacher allowances and monthly payslips",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)


@app.exception_handler(SchedulingError)
async def scheduling_error_handler(request: Request, exc: SchedulingError):
    """Domain errors carry their own status code and structured detail."""
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.info("%s %s rejected: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_detail()})


# Health check endpoint
@app.get("/")
async def root():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": "Class Scheduling API",
        "version": "1.0.0",
        "environment": ENVIRONMENT,
    }


@app.get("/health")
async def health_check():
    """Detailed health check with database status"""
    from database import engine
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        db_status = "connected"
    except Exception as e:
        logger.warning("Database health check failed: %s", e)
        db_status = f"error: {str(e)}"

    return {
        "status": "healthy" if db_status == "connected" else "unhealthy",
        "database": db_status,
        "environment": ENVIRONMENT,
    }


from routers import auth, classes, payslips, sessions, teachers, timetables

# Register routers
app.include_router(auth.router, prefix="/api", tags=["auth"])
app.include_router(teachers.router, prefix="/api", tags=["teachers"])
app.include_router(classes.router, prefix="/api", tags=["classes"])
app.include_router(timetables.router, prefix="/api", tags=["timetables"])
app.include_router(sessions.router, prefix="/api", tags=["sessions"])
app.include_router(payslips.router, prefix="/api", tags=["payslips"])


if __name__ == "__main__":
    import uvicorn
    from database import DATABASE_URL, init_db

    if DATABASE_URL.startswith("sqlite"):
        init_db()
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,  # Auto-reload on code changes (development only)
    )
