"""
Input validation utilities for the TourismIQ community API.
Provides reusable validators for JSON bodies, query parameters and user text.
"""

import re
import bleach
from typing import Tuple, Optional, Any, Iterable
from urllib.parse import urlparse

from error_handlers import ValidationError


class InputValidator:
    """Centralized input validation utilities"""

    # Text constraints
    MAX_NAME_LENGTH = 100
    MAX_TITLE_LENGTH = 200
    MAX_TEXT_LENGTH = 5000
    MAX_CONTENT_LENGTH = 50000
    MAX_URL_LENGTH = 500

    EMAIL_PATTERN = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'

    @staticmethod
    def sanitize_html(text: str, max_length: Optional[int] = None) -> str:
        """
        Sanitize HTML content to prevent XSS

        Args:
            text: Raw HTML text
            max_length: Optional maximum length

        Returns:
            Sanitized text
        """
        if not text:
            return ''

        # Strip all HTML tags
        text = bleach.clean(text, tags=[], attributes={}, strip=True)

        # Limit length if specified
        if max_length and len(text) > max_length:
            text = text[:max_length]

        return text.strip()

    @staticmethod
    def validate_email(email: str) -> Tuple[bool, str]:
        """
        Validate email address format

        Returns:
            Tuple of (is_valid, error_message)
        """
        if not email or not isinstance(email, str):
            return False, "Email cannot be empty"

        email = email.strip().lower()

        # RFC 5322 simplified regex
        if not re.match(InputValidator.EMAIL_PATTERN, email):
            return False, "Invalid email format"

        if len(email) > 254:  # RFC 5321
            return False, "Email too long"

        return True, ""

    @staticmethod
    def validate_name(name: str, min_length: int = 2) -> Tuple[bool, str]:
        """Validate a display name"""
        if not name or not isinstance(name, str) or not name.strip():
            return False, "Name cannot be empty"

        name = name.strip()
        if len(name) < min_length:
            return False, f"Name must be at least {min_length} characters"

        if len(name) > InputValidator.MAX_NAME_LENGTH:
            return False, f"Name too long (max {InputValidator.MAX_NAME_LENGTH} characters)"

        return True, ""

    @staticmethod
    def validate_password(password: str, min_length: int = 6) -> Tuple[bool, str]:
        """Validate password length"""
        if not password or not isinstance(password, str):
            return False, "Password cannot be empty"

        if len(password) < min_length:
            return False, f"Password must be at least {min_length} characters"

        return True, ""

    @staticmethod
    def validate_url(url: str) -> Tuple[bool, str]:
        """
        Validate URL format

        Returns:
            Tuple of (is_valid, error_message)
        """
        if not url or not isinstance(url, str):
            return False, "URL cannot be empty"

        url = url.strip()
        if len(url) > InputValidator.MAX_URL_LENGTH:
            return False, f"URL too long (max {InputValidator.MAX_URL_LENGTH} characters)"

        try:
            result = urlparse(url)
            if not all([result.scheme, result.netloc]):
                return False, "Invalid URL format"

            if result.scheme not in ['http', 'https']:
                return False, "Only HTTP/HTTPS URLs allowed"

            return True, ""
        except ValueError:
            return False, "Invalid URL format"

    @staticmethod
    def validate_choice(value: str, choices: list, field_name: str = "Value") -> Tuple[bool, str]:
        """
        Validate value is in allowed choices

        Returns:
            Tuple of (is_valid, error_message)
        """
        if value not in choices:
            return False, f"{field_name} must be one of: {', '.join(choices)}"

        return True, ""

    @staticmethod
    def validate_limit(value: Any, default: int, maximum: int) -> int:
        """Parse a page size, falling back to default and clamping to [1, maximum]"""
        try:
            limit = int(value) if value not in (None, '') else default
        except (ValueError, TypeError):
            limit = default

        return max(1, min(limit, maximum))


def parse_id(value: Any, field_name: str = 'id') -> int:
    """Parse a positive integer identifier or raise ValidationError"""
    if isinstance(value, bool):
        raise ValidationError(f"Invalid {field_name}")
    try:
        parsed = int(value)
    except (ValueError, TypeError):
        raise ValidationError(f"Invalid {field_name}", details={'field': field_name})
    if parsed <= 0:
        raise ValidationError(f"Invalid {field_name}", details={'field': field_name})
    return parsed


def get_json_body(request_obj) -> dict:
    """
    Return the JSON object sent with the request.

    Raises:
        ValidationError: body is missing, not JSON, or not an object
    """
    data = request_obj.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


def require_fields(data: dict, fields: Iterable[str], message: Optional[str] = None) -> None:
    """Raise ValidationError naming every missing or blank field"""
    missing = []
    for field in fields:
        value = data.get(field)
        if value is None or (isinstance(value, str) and not value.strip()):
            missing.append(field)
    if missing:
        raise ValidationError(message or f"Missing required field: {', '.join(missing)}",
                              details={'missing': missing})


def clean_text(data: dict, field: str, max_length: int, required: bool = False) -> Optional[str]:
    """
    Sanitize a free-text field from a JSON body.

    Returns None when the field is absent and not required.
    """
    value = data.get(field)
    if value is None:
        if required:
            raise ValidationError(f"Missing required field: {field}", details={'missing': [field]})
        return None
    if not isinstance(value, str):
        raise ValidationError(f"Invalid {field}: must be a string", details={'field': field})

    cleaned = InputValidator.sanitize_html(value, max_length=max_length)
    if required and not cleaned:
        raise ValidationError(f"Missing required field: {field}", details={'missing': [field]})
    return cleaned
