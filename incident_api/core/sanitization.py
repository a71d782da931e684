"""Input sanitization and validation utilities."""

import re
from typing import Optional
import bleach


# Maximum lengths for different field types
MAX_LENGTHS = {
    "username": 30,
    "name": 50,
    "email": 254,
    "password": 128,
    "title": 200,
    "description": 5000,
    "comment": 2000,
    "default": 255,
}

MIN_USERNAME_LENGTH = 3
MIN_NAME_LENGTH = 2
MIN_RESET_TOKEN_LENGTH = 20

# Allowed characters patterns
PATTERNS = {
    "email": re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$"),
    "username": re.compile(r"^[a-zA-Z0-9]([a-zA-Z0-9._-]*[a-zA-Z0-9])?$"),
    "name": re.compile(r"^[a-zA-ZÀ-ÿñÑ\s'-]+$"),
    "base64": re.compile(r"^[A-Za-z0-9+/_-]+={0,2}$"),
    "hex": re.compile(r"^[0-9a-fA-F]+$"),
}

RESERVED_USERNAMES = {
    "admin", "administrator", "root", "system", "api", "www", "mail",
    "email", "support", "help", "info", "contact", "service", "user",
    "guest", "anonymous", "null", "undefined", "test", "demo",
}

# Characters that hint at injection attempts inside an address
DANGEROUS_EMAIL_CHARACTERS = ["<", ">", '"', "'", "&", "\\", "/", "?", "#"]

DISPOSABLE_EMAIL_DOMAINS = [
    "10minutemail.com", "guerrillamail.com", "mailinator.com",
    "tempmail.org", "temp-mail.org", "throwawaymails.com",
]


def sanitize_string(
    value: str,
    max_length: int = MAX_LENGTHS["default"],
    strip_html: bool = True,
    allow_newlines: bool = False,
) -> str:
    """
    Sanitize a string input.

    - Strips leading/trailing whitespace
    - Removes or escapes HTML
    - Truncates to max length
    - Optionally removes newlines
    """
    if not value:
        return ""

    # Strip whitespace
    value = value.strip()

    # Remove HTML tags if requested
    if strip_html:
        value = bleach.clean(value, tags=[], strip=True)

    # Remove or normalize newlines
    if not allow_newlines:
        value = " ".join(value.split())

    # Truncate to max length
    if len(value) > max_length:
        value = value[:max_length]

    return value


def sanitize_name(value: str) -> str:
    """Sanitize a person name field."""
    return sanitize_string(value, max_length=MAX_LENGTHS["name"])


def sanitize_email(value: str) -> str:
    """Sanitize and normalize an email address."""
    return sanitize_string(value, max_length=MAX_LENGTHS["email"] + 1).lower()


def sanitize_username(value: str) -> str:
    return (value or "").strip()


def sanitize_title(value: str) -> str:
    return sanitize_string(value, max_length=MAX_LENGTHS["title"])


def sanitize_description(value: str) -> str:
    """Sanitize a description field (allows newlines)."""
    return sanitize_string(
        value,
        max_length=MAX_LENGTHS["description"],
        allow_newlines=True,
    )


def sanitize_comment(value: str) -> str:
    return sanitize_string(
        value,
        max_length=MAX_LENGTHS["comment"],
        allow_newlines=True,
    )


def validate_email(value: str) -> bool:
    """
    Validate email format.
    Rejects addresses longer than the RFC 5321 limit, injection characters
    and known disposable-mail domains.
    """
    if not value or len(value) > MAX_LENGTHS["email"]:
        return False
    if not PATTERNS["email"].match(value):
        return False
    if any(c in value for c in DANGEROUS_EMAIL_CHARACTERS):
        return False
    domain = value.rsplit("@", 1)[1].lower()
    return not any(domain.endswith(d) for d in DISPOSABLE_EMAIL_DOMAINS)


def validate_username(value: str) -> tuple[bool, Optional[str]]:
    """
    Validate a username.
    Returns (is_valid, error_message).
    """
    if not value:
        return False, "Username is required"

    if len(value) < MIN_USERNAME_LENGTH or len(value) > MAX_LENGTHS["username"]:
        return False, (
            f"Username must be between {MIN_USERNAME_LENGTH} and "
            f"{MAX_LENGTHS['username']} characters"
        )

    if not PATTERNS["username"].match(value):
        return False, (
            "Username must start and end with a letter or number and may only "
            "contain letters, numbers, '.', '_' and '-'"
        )

    if value.isdigit():
        return False, "Username cannot contain only numbers"

    if value.lower() in RESERVED_USERNAMES:
        return False, "Username is reserved"

    return True, None


def validate_person_name(value: str) -> tuple[bool, Optional[str]]:
    """
    Validate a first or last name.
    Returns (is_valid, error_message).
    """
    if not value or len(value) < MIN_NAME_LENGTH or len(value) > MAX_LENGTHS["name"]:
        return False, f"Name must be between {MIN_NAME_LENGTH} and {MAX_LENGTHS['name']} characters"

    if not PATTERNS["name"].match(value):
        return False, "Name may only contain letters, spaces, apostrophes and hyphens"

    if "  " in value or value[0] in " '-" or value[-1] in " '-":
        return False, "Name has invalid spacing or punctuation"

    return True, None


def validate_reset_token_format(value: str) -> bool:
    """A reset token must be long enough and base64 or hex shaped."""
    if not value or len(value.strip()) < MIN_RESET_TOKEN_LENGTH:
        return False
    value = value.strip()
    return bool(PATTERNS["base64"].match(value) or PATTERNS["hex"].match(value))
