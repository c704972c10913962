"""Tests for phone number display formatting."""

from leaddesk.utils.phone import format_phone_number


class TestFormatPhoneNumber:

    def test_mexican_number(self):
        assert format_phone_number("521234567890") == "Teléfono: +52 1234567890"

    def test_other_country_code(self):
        assert format_phone_number("11234567890") == "Teléfono: +1 1234567890"

    def test_defaults_to_mexico_without_country_code(self):
        assert format_phone_number("5512345678") == "Teléfono: +52 5512345678"

    def test_strips_formatting(self):
        assert format_phone_number("+52 (55) 1234-5678") == "Teléfono: +52 5512345678"

    def test_missing(self):
        assert format_phone_number("") == "Teléfono: No disponible"
        assert format_phone_number(None) == "Teléfono: No disponible"

    def test_too_short(self):
        assert format_phone_number("12345") == "Teléfono: Formato inválido"
