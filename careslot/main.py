from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import time
import logging

from .core.config import settings
from .core.database import get_db, init_db

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    description="Slot and appointment scheduling for doctors and patients",
    openapi_url="/api/v1/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

if not settings.TESTING:
    app.add_middleware(
        TrustedHostMiddleware,
        allowed_hosts=["localhost", "127.0.0.1", "*.localhost"]
    )

@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    response.headers["X-Process-Time"] = str(process_time)

    logger.info(f"{request.method} {request.url.path} {response.status_code} {process_time:.4f}s")
    return response

@app.exception_handler(404)
async def not_found_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=404,
        content={
            "error": "Not Found",
            "message": getattr(exc, "detail", None) or "The requested resource was not found",
            "path": str(request.url.path)
        }
    )

@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error(f"Database error on {request.url.path}: {str(exc)}")
    return JSONResponse(
        status_code=503,
        content={"error": "Service Unavailable", "message": "Database unavailable"}
    )

@app.on_event("startup")
async def startup_event():
    db_url = settings.get_database_url
    db_type = "PostgreSQL" if "postgresql" in db_url else "SQLite" if "sqlite" in db_url else "Unknown"
    logger.info(f"Starting {settings.APP_NAME} on {db_type}")

    try:
        init_db()
    except SQLAlchemyError as e:
        logger.error(f"Failed to initialize database: {str(e)}")
        raise

@app.get("/health")
def health_check(db: Session = Depends(get_db)):
    """Liveness plus a round trip to the database."""
    db.execute(text("SELECT 1"))
    return {
        "status": "healthy",
        "database": "ok",
        "timestamp": time.time(),
        "version": settings.VERSION
    }

@app.get("/api/v1/info")
async def api_info():
    return {
        "name": settings.APP_NAME,
        "version": settings.VERSION,
        "scheduling": {
            "default_slot_duration": settings.DEFAULT_SLOT_DURATION,
            "min_slot_duration": settings.MIN_SLOT_DURATION,
            "max_slot_duration": settings.MAX_SLOT_DURATION,
            "public_slot_limit": settings.PUBLIC_SLOT_LIMIT,
            "proposal_expiry_days": settings.PROPOSAL_EXPIRY_DAYS,
            "slot_retention_days": settings.SLOT_RETENTION_DAYS,
        },
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "careslot.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
