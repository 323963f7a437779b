from .spam import router as spam_router
from .settings import router as settings_router

__all__ = ["spam_router", "settings_router"]
