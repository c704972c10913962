"""Credential and PII redaction for safe logging.

Request payloads carry bearer tokens and customer phone numbers (``wa_id``).
Tokens are replaced outright; phone-like values keep their last four digits
so log lines stay correlatable without exposing the customer.
"""

import re

# Substring patterns matched case-insensitively against dict keys
_SECRET_PATTERNS = frozenset({
    "token", "authorization", "password", "secret", "api_key", "credential",
})

# Keys whose values are customer phone numbers / WhatsApp ids
_PHONE_KEYS = frozenset({"wa_id", "telefono", "phone"})

# Keys whose entire value is redacted (regardless of content type)
_CONTAINER_KEYS = frozenset({"headers"})

_REDACTED = "***REDACTED***"

_BEARER_PATTERN = re.compile(r"(?i)Bearer\s+\S+")


def mask_phone(value: object) -> str:
    """Mask all but the last four digits of a phone number or WhatsApp id."""
    digits = re.sub(r"\D", "", str(value))
    if len(digits) <= 4:
        return "*" * len(digits)
    return "*" * (len(digits) - 4) + digits[-4:]


def _is_secret_key(key: str) -> bool:
    key_lower = key.lower()
    return any(pattern in key_lower for pattern in _SECRET_PATTERNS)


def redact_for_logging(obj: dict) -> dict:
    """Redact secrets and mask phone numbers in a payload for logging.

    Args:
        obj: Dict to redact (not mutated; a copy is returned).

    Returns:
        New dict with secrets replaced by '***REDACTED***' and phone values
        masked. Nested dicts and lists of dicts are handled recursively.
    """
    result = {}
    for key, value in obj.items():
        key_lower = key.lower()
        if key_lower in _CONTAINER_KEYS or _is_secret_key(key):
            result[key] = _REDACTED
        elif key_lower in _PHONE_KEYS and value is not None:
            result[key] = mask_phone(value)
        elif isinstance(value, dict):
            result[key] = redact_for_logging(value)
        elif isinstance(value, list):
            result[key] = [
                redact_for_logging(item) if isinstance(item, dict) else item
                for item in value
            ]
        else:
            result[key] = value
    return result


def sanitize_error_message(msg: str | None, max_length: int = 500) -> str | None:
    """Strip bearer tokens from a backend error message and truncate it."""
    if msg is None:
        return None
    sanitized = _BEARER_PATTERN.sub(_REDACTED, msg)
    if len(sanitized) > max_length:
        sanitized = sanitized[:max_length - 3] + "..."
    return sanitized
