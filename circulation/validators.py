import re
from typing import Any, Optional


class ValidationError(ValueError):
    """Input rejected at the caller boundary before it reaches a repository."""


class TextValidator:
    """Required-field and email checks shared by the API and the CLI."""

    EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

    @staticmethod
    def require(value: Optional[str], label: str) -> str:
        text = (value or "").strip()
        if not text:
            raise ValidationError(f"{label} cannot be empty")
        return text

    @staticmethod
    def optional(value: Optional[str]) -> str:
        return (value or "").strip()

    @staticmethod
    def validate_email(email: Optional[str]) -> str:
        text = TextValidator.require(email, "Email")
        if not TextValidator.EMAIL_RE.match(text):
            raise ValidationError("Email address is not valid")
        return text


class ISBNValidator:
    @staticmethod
    def normalize_isbn(raw: Optional[str]) -> str:
        if raw is None:
            return ""
        s = re.sub(r"[^0-9Xx]", "", raw)
        return s.upper()

    @staticmethod
    def clean(raw: Optional[str]) -> Optional[str]:
        """Normalized ISBN, or None when blank (the column is unique but nullable)."""
        s = ISBNValidator.normalize_isbn(raw)
        return s or None


class NumberValidator:
    @staticmethod
    def parse_year(value: Any, label: str) -> Optional[int]:
        """Parse an optional year; blank means unknown."""
        if value is None or (isinstance(value, str) and not value.strip()):
            return None
        try:
            return int(str(value).strip())
        except ValueError:
            raise ValidationError(f"{label} must be a number") from None

    @staticmethod
    def parse_copies(value: Any) -> int:
        if value is None or (isinstance(value, str) and not value.strip()):
            return 1
        try:
            copies = int(str(value).strip())
        except ValueError:
            raise ValidationError("Total copies must be a number") from None
        if copies < 1:
            raise ValidationError("Total copies must be at least 1")
        return copies
