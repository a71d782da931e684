"""Password strength policy shared by registration, password change and reset."""

from dataclasses import dataclass, field
from enum import IntEnum
import re


MIN_PASSWORD_LENGTH = 8
STRONG_PASSWORD_LENGTH = 12

COMMON_PASSWORDS = {
    "123456", "password", "123456789", "12345678", "12345", "1234567",
    "qwerty", "abc123", "111111", "password1", "admin", "letmein",
    "welcome", "monkey", "dragon", "pass", "master", "hello", "freedom",
    "whatever", "qazwsx", "trustno1", "654321", "jordan23", "harley",
    "robert", "matthew", "jordan", "daniel", "andrew",
}

SPECIAL_CHARACTERS = re.compile(r"""[!@#$%^&*()_+\-=\[\]{};':"\\|,.<>/?]""")

OBVIOUS_PATTERNS = [
    re.compile(r"(012|123|234|345|456|567|678|789|890|987|876|765|654|543|432|321|210)"),
    re.compile(
        r"(abc|bcd|cde|def|efg|fgh|ghi|hij|ijk|jkl|klm|lmn|mno|nop|opq|pqr|qrs|rst"
        r"|stu|tuv|uvw|vwx|wxy|xyz)"
    ),
    re.compile(
        r"(qwer|wert|erty|rtyu|tyui|yuio|uiop|asdf|sdfg|dfgh|fghj|ghjk|hjkl"
        r"|zxcv|xcvb|cvbn|vbnm)"
    ),
    re.compile(r"(.)\1{3,}"),
]


class PasswordStrength(IntEnum):
    VERY_WEAK = 0
    WEAK = 1
    FAIR = 2
    GOOD = 3
    STRONG = 4
    VERY_STRONG = 5


@dataclass
class PasswordValidationResult:
    is_valid: bool
    score: int
    strength: PasswordStrength
    errors: list[str] = field(default_factory=list)


def is_common_password(password: str) -> bool:
    """True if the password is, or is a thin variation of, a well-known password."""
    lowered = password.lower()
    if lowered in COMMON_PASSWORDS:
        return True
    for common in COMMON_PASSWORDS:
        if common in lowered and len(password) <= len(common) + 3:
            return True
    return False


def has_obvious_patterns(password: str) -> bool:
    """Detect sequences (123, abc), keyboard runs (qwer) and repeated characters."""
    lowered = password.lower()
    return any(pattern.search(lowered) for pattern in OBVIOUS_PATTERNS)


def _strength_for(score: int) -> PasswordStrength:
    if score >= 90:
        return PasswordStrength.VERY_STRONG
    if score >= 75:
        return PasswordStrength.STRONG
    if score >= 60:
        return PasswordStrength.GOOD
    if score >= 40:
        return PasswordStrength.FAIR
    if score >= 20:
        return PasswordStrength.WEAK
    return PasswordStrength.VERY_WEAK


def validate_password(password: str) -> PasswordValidationResult:
    """Score a password (0-100) and collect every policy violation."""
    if not password or not password.strip():
        return PasswordValidationResult(
            is_valid=False,
            score=0,
            strength=PasswordStrength.VERY_WEAK,
            errors=["Password is required"],
        )

    errors = []
    score = 0

    if len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    elif len(password) >= STRONG_PASSWORD_LENGTH:
        score += 25
    else:
        score += 15

    if not re.search(r"[a-z]", password):
        errors.append("Password must contain at least one lowercase letter")
    else:
        score += 15

    if not re.search(r"[A-Z]", password):
        errors.append("Password must contain at least one uppercase letter")
    else:
        score += 15

    if not re.search(r"[0-9]", password):
        errors.append("Password must contain at least one number")
    else:
        score += 15

    if not SPECIAL_CHARACTERS.search(password):
        errors.append("Password must contain at least one special character (!@#$%^&* etc.)")
    else:
        score += 20

    if " " in password:
        errors.append("Password must not contain spaces")

    if is_common_password(password):
        errors.append("This password is too common")
        score -= 30

    if has_obvious_patterns(password):
        errors.append("Password must not contain obvious sequences (123, abc, etc.)")
        score -= 15

    # Character diversity bonus
    if len(set(password)) >= len(password) * 0.7:
        score += 10

    score = max(0, min(100, score))

    return PasswordValidationResult(
        is_valid=not errors,
        score=score,
        strength=_strength_for(score),
        errors=errors,
    )


def recommendations_for(result: PasswordValidationResult) -> list[str]:
    """Human-readable hints for the password strength endpoint."""
    if result.score < 60:
        return [
            "Use at least 12 characters",
            "Mix upper and lower case letters, numbers and symbols",
            "Avoid common words and predictable sequences",
        ]
    if result.score < 80:
        return [
            "Make the password longer to strengthen it",
            "Add more special characters",
        ]
    return ["Excellent password"]
