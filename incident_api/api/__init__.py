from incident_api.api.routes.auth import router as auth_router
from incident_api.api.routes.incidents import router as incidents_router

__all__ = ["auth_router", "incidents_router"]
