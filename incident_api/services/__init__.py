from incident_api.services.auth_service import AuthService, AuthResult
from incident_api.services.incident_service import IncidentService
from incident_api.services.email_service import (
    EmailSender,
    LoggingEmailSender,
    SmtpEmailSender,
    build_email_sender,
)

__all__ = [
    "AuthService",
    "AuthResult",
    "IncidentService",
    "EmailSender",
    "LoggingEmailSender",
    "SmtpEmailSender",
    "build_email_sender",
]
