from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn
from dotenv import load_dotenv

from shapeup.core.config import settings
from shapeup.core.cache import get_redis_client, is_live_redis
from shapeup.core.exceptions import ShapeUpError
from shapeup.api.v1.router import api_router
from shapeup.services.logger import logger
from shapeup.services.realtime_service import (
    RealtimeConnectionManager,
    event_broadcaster,
    subscription_registry,
)

# Load environment variables
load_dotenv()

# Create FastAPI app
app = FastAPI(
    title="ShapeUp API",
    description="Weight-loss challenge API",
    version="1.0.0",
    docs_url="/docs" if settings.ENVIRONMENT == "development" else None,
    redoc_url="/redoc" if settings.ENVIRONMENT == "development" else None,
    redirect_slashes=False,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API router
app.include_router(api_router, prefix="/api/v1")


@app.exception_handler(ShapeUpError)
async def shapeup_error_handler(request: Request, exc: ShapeUpError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(content=exc.to_dict(), status_code=exc.status_code)


# Health check endpoint
@app.get("/health")
async def health_check():
    redis_client = get_redis_client()
    manager = getattr(app.state, "realtime_manager", None)
    report = {
        "status": "healthy",
        "version": app.version,
        "environment": settings.ENVIRONMENT,
        "storage_backend": settings.STORAGE_BACKEND,
        "redis": "connected" if is_live_redis(redis_client) else "unavailable",
        "realtime": {
            "connections": subscription_registry.connection_count,
            "relay_connected": bool(manager and manager.connected),
        },
    }
    return JSONResponse(content=report, status_code=status.HTTP_200_OK)


# Startup event
@app.on_event("startup")
async def startup_event():
    app.state.realtime_manager = None

    # Cross-process fan-out only makes sense with a real Redis
    if is_live_redis(get_redis_client()):
        manager = RealtimeConnectionManager(event_broadcaster)
        manager.start()
        app.state.realtime_manager = manager
        print("📡 Realtime relay active")
    else:
        print("⚠️ Redis unavailable, realtime events stay in this process")

    print("🚀 ShapeUp API started successfully!")


# Shutdown event
@app.on_event("shutdown")
async def shutdown_event():
    manager = getattr(app.state, "realtime_manager", None)
    if manager is not None:
        await manager.stop()
        print("📡 Realtime relay stopped")

    print("👋 ShapeUp API shutting down...")


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.ENVIRONMENT == "development",
    )
