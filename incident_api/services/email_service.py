"""
Outgoing notification mail.

``SmtpEmailSender`` delivers through an SMTP relay; ``LoggingEmailSender`` only
logs what would have been sent and is used whenever ``SMTP_HOST`` is unset.
Callers treat every notification as best-effort. SMTP delivery runs on the
sender's own worker threads so a slow relay never holds up a request.
"""

from concurrent.futures import Future, ThreadPoolExecutor
from email.message import EmailMessage
from functools import partial
import logging
import smtplib
import ssl
from typing import Optional, Protocol

from incident_api.core.config import Settings

logger = logging.getLogger(__name__)


class EmailSender(Protocol):
    def send_welcome(self, to_email: str, username: str) -> None: ...

    def send_password_reset(self, to_email: str, username: str, reset_token: str) -> None: ...

    def send_password_changed(self, to_email: str, username: str) -> None: ...

    def send_profile_updated(self, to_email: str, username: str) -> None: ...

    def send_account_locked(self, to_email: str, username: str, locked_until) -> None: ...

    def send_account_deleted(self, to_email: str, username: str) -> None: ...

    def close(self) -> None: ...


def redact_email(email: str) -> str:
    """Redact an email address for logging."""
    if not email or "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class _TemplatedSender:
    """Builds subjects and bodies; subclasses decide how to deliver them."""

    def __init__(self, frontend_url: str, app_name: str):
        self.frontend_url = frontend_url.rstrip("/")
        self.app_name = app_name

    def _deliver(self, to_email: str, subject: str, body: str) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass

    def send_welcome(self, to_email: str, username: str) -> None:
        self._deliver(
            to_email,
            f"Welcome to {self.app_name}",
            f"Hello {username},\n\n"
            f"Your {self.app_name} account has been created. "
            f"You can sign in at {self.frontend_url}/login.\n",
        )

    def send_password_reset(self, to_email: str, username: str, reset_token: str) -> None:
        self._deliver(
            to_email,
            "Reset your password",
            f"Hello {username},\n\n"
            "We received a request to reset your password. Use the link below "
            "within the next hour:\n\n"
            f"{self.frontend_url}/reset-password?token={reset_token}\n\n"
            "If you did not request this, you can ignore this message.\n",
        )

    def send_password_changed(self, to_email: str, username: str) -> None:
        self._deliver(
            to_email,
            "Your password was changed",
            f"Hello {username},\n\n"
            "The password of your account was just changed and every other "
            "session has been signed out. If this was not you, reset your "
            "password immediately.\n",
        )

    def send_profile_updated(self, to_email: str, username: str) -> None:
        self._deliver(
            to_email,
            "Your profile was updated",
            f"Hello {username},\n\nYour profile details were updated.\n",
        )

    def send_account_locked(self, to_email: str, username: str, locked_until) -> None:
        self._deliver(
            to_email,
            "Your account has been temporarily locked",
            f"Hello {username},\n\n"
            "Your account was locked after too many failed sign-in attempts. "
            f"You can try again after {locked_until:%Y-%m-%d %H:%M} UTC.\n",
        )

    def send_account_deleted(self, to_email: str, username: str) -> None:
        self._deliver(
            to_email,
            "Your account has been deleted",
            f"Hello {username},\n\nYour {self.app_name} account has been deleted.\n",
        )


class LoggingEmailSender(_TemplatedSender):
    """Dev mode: log the email instead of sending it."""

    def __init__(self, frontend_url: str = "http://localhost:5173", app_name: str = "Incident Tracker"):
        super().__init__(frontend_url, app_name)
        self.sent: list[tuple[str, str]] = []

    def _deliver(self, to_email: str, subject: str, body: str) -> None:
        self.sent.append((to_email, subject))
        logger.info(f"Email (not sent) to {redact_email(to_email)}: {subject}")


class SmtpEmailSender(_TemplatedSender):
    def __init__(
        self,
        host: str,
        port: int = 587,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
        from_email: str = "no-reply@incident-api.local",
        from_name: str = "Incident Tracker",
        frontend_url: str = "http://localhost:5173",
        timeout: int = 30,
        max_workers: int = 2,
    ):
        super().__init__(frontend_url, from_name)
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.from_email = from_email
        self.from_name = from_name
        self.timeout = timeout
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="smtp")

    def _deliver(self, to_email: str, subject: str, body: str) -> Future:
        future = self._executor.submit(self._send, to_email, subject, body)
        future.add_done_callback(partial(self._log_failure, to_email, subject))
        return future

    def close(self, wait: bool = True) -> None:
        """Stop accepting mail; with ``wait`` the queued messages go out first."""
        self._executor.shutdown(wait=wait)

    @staticmethod
    def _log_failure(to_email: str, subject: str, future: Future) -> None:
        error = future.exception()
        if error is not None:
            logger.error(f"Failed to send '{subject}' to {redact_email(to_email)}: {error}")

    def _send(self, to_email: str, subject: str, body: str) -> None:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to_email
        msg.set_content(body)

        context = ssl.create_default_context()
        if self.use_tls:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                server.starttls(context=context)
                if self.username and self.password:
                    server.login(self.username, self.password)
                server.send_message(msg)
        else:
            with smtplib.SMTP_SSL(self.host, self.port, context=context, timeout=self.timeout) as server:
                if self.username and self.password:
                    server.login(self.username, self.password)
                server.send_message(msg)

        logger.info(f"Email sent to {redact_email(to_email)}: {subject}")


def build_email_sender(settings: Settings) -> EmailSender:
    """SMTP delivery when a relay is configured, logging otherwise."""
    if not settings.SMTP_HOST:
        return LoggingEmailSender(frontend_url=settings.FRONTEND_URL, app_name=settings.EMAIL_FROM_NAME)
    return SmtpEmailSender(
        host=settings.SMTP_HOST,
        port=settings.SMTP_PORT,
        username=settings.SMTP_USERNAME,
        password=settings.SMTP_PASSWORD,
        use_tls=settings.SMTP_USE_TLS,
        from_email=settings.EMAIL_FROM,
        from_name=settings.EMAIL_FROM_NAME,
        frontend_url=settings.FRONTEND_URL,
    )
