from fastapi import APIRouter
from shapeup.api.v1.endpoints import challenges, chat, feed, realtime, weights

# Create main API router
api_router = APIRouter(
    redirect_slashes=False
)  # Disable redirects to preserve identity headers

# Include all endpoint routers
api_router.include_router(challenges.router, prefix="/challenges", tags=["Challenges"])
api_router.include_router(weights.router, prefix="/challenges", tags=["Weight Records"])
api_router.include_router(chat.router, prefix="/challenges", tags=["Challenge Chat"])
api_router.include_router(feed.router, prefix="/challenges", tags=["Community Feed"])
api_router.include_router(realtime.router, tags=["Realtime"])
