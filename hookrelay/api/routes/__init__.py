"""
API routes module.
"""

from hookrelay.api.routes.enqueue import router as enqueue_router
from hookrelay.api.routes.health import router as health_router

__all__ = ["enqueue_router", "health_router"]
