"""
app/api/routers package marker.
"""

from app.api.routers.client_import import router as client_import_router
from app.api.routers.webhooks import router as webhooks_router

__all__ = [
    "client_import_router",
    "webhooks_router",
]
