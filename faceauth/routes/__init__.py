from .face_routes import router as face_router
from .oauth_routes import router as oauth_router

__all__ = ["face_router", "oauth_router"]
