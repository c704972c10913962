"""Phone number display formatting for WhatsApp ids."""

import re

DEFAULT_COUNTRY_CODE = "52"
LOCAL_NUMBER_LENGTH = 10


def format_phone_number(phone_number: str | None) -> str:
    """Split a WhatsApp number into country code and local number.

    The last ten digits are the local number; anything before them is the
    country code, defaulting to Mexico (+52) when absent.

    Args:
        phone_number: Raw number, e.g. "521234567890".

    Returns:
        Display string, e.g. "Teléfono: +52 1234567890".

    Example:
        format_phone_number("11234567890") → "Teléfono: +1 1234567890"
    """
    if not phone_number or not isinstance(phone_number, str):
        return "Teléfono: No disponible"

    digits = re.sub(r"\D", "", phone_number)
    if len(digits) < LOCAL_NUMBER_LENGTH:
        return "Teléfono: Formato inválido"

    local = digits[-LOCAL_NUMBER_LENGTH:]
    country = digits[:-LOCAL_NUMBER_LENGTH] or DEFAULT_COUNTRY_CODE
    return f"Teléfono: +{country} {local}"
