from fastapi import FastAPI, Depends
from fastapi.middleware.cors import CORSMiddleware

from app.api.routes import router as api_router
from app.config.settings import get_settings
from app.storage.session_store import SessionStore, get_session_store
from app.utils.logging_config import setup_logging


# Setup logging
logger = setup_logging()
settings = get_settings()

app = FastAPI(
    title=settings.app_name,
    debug=settings.debug,
    description="Tutor assignment service with schedule and branch-travel conflict checks",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.on_event("startup")
async def startup_event():
    logger.info(f"Starting {settings.app_name}...")
    logger.info(f"Backend API: {settings.backend_api_url}")
    logger.info(f"Session backend: {settings.session_backend} (ttl {settings.session_ttl_seconds}s)")
    logger.info(f"Travel buffer: {settings.travel_buffer_minutes} min, timezone {settings.schedule_timezone}")

@app.on_event("shutdown")
async def shutdown_event():
    logger.info(f"Shutting down {settings.app_name}...")

app.include_router(api_router, prefix="/api/v1", tags=["assignments"])


@app.get("/health", tags=["health"])
def health_check(store: SessionStore = Depends(get_session_store)):
    """Health check endpoint for monitoring and load balancers."""
    return {
        "status": "ok",
        "app": settings.app_name,
        "version": "1.0.0",
        "session_store": "ok" if store.health_check() else "unavailable",
    }
