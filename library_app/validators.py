import re
from datetime import date
from typing import Optional

from .errors import ValidationError

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class TextValidator:
    """Basic text checks and sanitization for user-supplied fields."""

    @staticmethod
    def sanitize_text(text: Optional[str]) -> str:
        if text is None:
            return ""
        # strip HTML tags; the values end up rendered by the admin panel
        cleaned = re.sub(r"<[^>]*>", "", text)
        return cleaned.strip()

    @staticmethod
    def require(value: Optional[str], field_name: str) -> str:
        cleaned = TextValidator.sanitize_text(value)
        if not cleaned:
            raise ValidationError(f"{field_name} is required.")
        return cleaned

    @staticmethod
    def optional(value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        cleaned = TextValidator.sanitize_text(value)
        return cleaned or None


class EmailValidator:
    @staticmethod
    def normalize(email: Optional[str]) -> str:
        return (email or "").strip().lower()

    @staticmethod
    def require(email: Optional[str]) -> str:
        normalized = EmailValidator.normalize(email)
        if not normalized:
            raise ValidationError("email is required.")
        if not _EMAIL_RE.match(normalized):
            raise ValidationError("email is not a valid address.")
        return normalized


class PasswordValidator:
    @staticmethod
    def require(password: Optional[str], min_length: int) -> str:
        if not password:
            raise ValidationError("password is required.")
        if len(password) < min_length:
            raise ValidationError(f"password must be at least {min_length} characters.")
        return password


class NumberValidator:
    @staticmethod
    def publication_year(year: Optional[int]) -> int:
        if year is None:
            raise ValidationError("publication_year is required.")
        if year < 0 or year > date.today().year + 1:
            raise ValidationError("publication_year is out of range.")
        return year

    @staticmethod
    def copies(count: Optional[int], field_name: str = "total_copies") -> int:
        if count is None:
            raise ValidationError(f"{field_name} is required.")
        if count < 0:
            raise ValidationError(f"{field_name} cannot be negative.")
        return count
