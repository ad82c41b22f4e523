from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
import uuid
from contextlib import asynccontextmanager
from database import database

# Scene Spawner - metered video generation
from scenespawner.routes import scenes_router
from scenespawner.services.scene_service import get_scene_service, close_scene_service

import os
import logging
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Starting Scene Spawner API")
    if os.environ.get("PYTEST_RUNNING"):
        logger.info("PYTEST_RUNNING set; skipping MongoDB connection")
    else:
        await database.connect()

    # Build collaborators once per process (HTTP clients, GridFS bucket)
    service = get_scene_service()
    policy = service.poller.policy
    logger.info(
        "Scene poll policy interval=%ss backoff=%s max_wait=%ss max_attempts=%s",
        policy.interval, policy.backoff, policy.max_wait, policy.max_attempts,
    )

    yield

    # Shutdown
    logger.info("Shutting down Scene Spawner API")
    await close_scene_service()
    await database.close()

# Create FastAPI app
app = FastAPI(
    title="Scene Spawner API",
    description="Credit-metered AI video generation",
    version="1.0.0",
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=os.environ.get('CORS_ORIGINS', '*').split(','),
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(scenes_router)  # Scene Spawner

# Root endpoint
@app.get("/api")
async def root():
    return {
        "service": "Scene Spawner",
        "version": "1.0.0",
        "status": "operational"
    }

# Health check
@app.get("/api/health")
async def health_check():
    return {
        "status": "healthy",
        "environment": os.getenv("ENVIRONMENT", "development")
    }


# Validation error handler: log request_id + full errors (loc path) for generate debugging
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    request_id = str(uuid.uuid4())
    errors = exc.errors()
    path = getattr(request, "url", None) and getattr(request.url, "path", "") or ""
    if path.startswith("/api/scenes"):
        logger.warning(
            "Scene request validation failed request_id=%s path=%s errors=%s",
            request_id,
            path,
            [(e.get("loc"), e.get("msg"), e.get("type")) for e in errors],
        )
    return JSONResponse(
        status_code=422,
        content={"detail": [{"loc": e.get("loc"), "msg": e.get("msg"), "type": e.get("type")} for e in errors],
                 "request_id": request_id},
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "server:app",
        host="0.0.0.0",
        port=8001,
        reload=os.getenv("ENVIRONMENT") == "development"
    )
