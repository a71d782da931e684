from incident_api.models.user import User
from incident_api.models.token_blacklist import TokenBlacklist, RefreshToken
from incident_api.models.password_reset_token import PasswordResetToken
from incident_api.models.incident import Incident, IncidentCategory, IncidentStatus, IncidentUpdate

__all__ = [
    "User",
    "TokenBlacklist",
    "RefreshToken",
    "PasswordResetToken",
    "Incident",
    "IncidentCategory",
    "IncidentStatus",
    "IncidentUpdate",
]
