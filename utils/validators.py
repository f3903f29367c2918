"""
============================================================================
PULSE ENGINE - VALIDATORS UTILITY
============================================================================
Validation of notification channel configuration and monitor URLs.

Author: Professional Development Team
Version: 1.0.0
License: MIT
============================================================================
"""

import re
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import urlparse

import validators as external_validators

from config.constants import ChannelType


# E.164: leading plus, no leading zero, at most 15 digits.
PHONE_PATTERN = re.compile(r"^\+[1-9]\d{1,14}$")


# ============================================================================
# VALIDATION RESULT CLASS
# ============================================================================

class ValidationResult:
    """
    Class to hold validation results with detailed information.
    """

    def __init__(self, is_valid: bool, message: str = "", errors: Optional[List[str]] = None):
        self.is_valid = is_valid
        self.message = message
        self.errors = errors or []

    def __bool__(self):
        """Allow using result as boolean."""
        return self.is_valid

    def __str__(self):
        if self.is_valid:
            return f"Valid: {self.message}"
        errors_str = ", ".join(self.errors) if self.errors else "Unknown error"
        return f"Invalid: {self.message} - {errors_str}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "is_valid": self.is_valid,
            "message": self.message,
            "errors": self.errors
        }


# ============================================================================
# URL VALIDATORS
# ============================================================================

class URLValidator:
    """
    URL validation for monitor targets and webhook endpoints.
    """

    ALLOWED_SCHEMES = ("http", "https")

    @staticmethod
    def is_valid_url(url: Any) -> bool:
        """
        Check if URL is a well-formed http(s) URL.

        Args:
            url: URL to validate

        Returns:
            True if valid, False otherwise
        """
        if not isinstance(url, str) or not url:
            return False

        if urlparse(url).scheme not in URLValidator.ALLOWED_SCHEMES:
            return False

        # validators.url returns a ValidationError instance (falsy) on failure
        return external_validators.url(url, simple_host=True) is True


# ============================================================================
# CHANNEL CONFIG VALIDATORS
# ============================================================================

class ChannelConfigValidator:
    """
    Per-type validation of NotificationChannel.config.

    email:   {"email": "user@example.com"}
    sms:     {"phone": "+15551234567"}
    webhook: {"webhook_url": "https://example.com/hook", "headers": {...}}
    """

    @staticmethod
    def is_valid_email(email: Any) -> bool:
        if not isinstance(email, str):
            return False
        return external_validators.email(email) is True

    @staticmethod
    def is_valid_phone(phone: Any) -> bool:
        if not isinstance(phone, str):
            return False
        return PHONE_PATTERN.match(phone) is not None

    @classmethod
    def validate(cls, channel_type: Any, config: Optional[Mapping[str, Any]]) -> ValidationResult:
        """
        Validate a channel configuration for its type.

        Args:
            channel_type: ChannelType or its string value
            config: Channel configuration mapping

        Returns:
            ValidationResult instance
        """
        try:
            channel_type = ChannelType(channel_type)
        except ValueError:
            return ValidationResult(
                is_valid=False,
                message="Channel validation failed",
                errors=[f"Unsupported channel type: {channel_type}"]
            )

        if not isinstance(config, Mapping):
            return ValidationResult(
                is_valid=False,
                message="Channel validation failed",
                errors=["Channel config must be an object"]
            )

        errors = []

        if channel_type == ChannelType.EMAIL:
            if not cls.is_valid_email(config.get("email")):
                errors.append("Invalid email address")

        elif channel_type == ChannelType.SMS:
            if not cls.is_valid_phone(config.get("phone")):
                errors.append("Phone number must be in E.164 format")

        elif channel_type == ChannelType.WEBHOOK:
            if not URLValidator.is_valid_url(config.get("webhook_url")):
                errors.append("Webhook URL must be a valid http or https URL")
            headers = config.get("headers")
            if headers is not None and not isinstance(headers, Mapping):
                errors.append("Webhook headers must be an object")
            elif headers and not all(
                isinstance(key, str) and isinstance(value, str)
                for key, value in headers.items()
            ):
                errors.append("Webhook header names and values must be strings")

        if errors:
            return ValidationResult(
                is_valid=False,
                message="Channel validation failed",
                errors=errors
            )

        return ValidationResult(is_valid=True, message="Channel config is valid")


def validate_channel_config(channel_type: Any, config: Optional[Mapping[str, Any]]) -> ValidationResult:
    """Shortcut for ChannelConfigValidator.validate."""
    return ChannelConfigValidator.validate(channel_type, config)


# ============================================================================
# END OF VALIDATORS MODULE
# ============================================================================
