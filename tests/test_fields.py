"""
Tests for field definitions, value validation and persisted slots.
"""
import base64

import pytest
from pydantic import ValidationError

from navigator_secure_fields.exceptions import FieldNotFound, InvalidValue
from navigator_secure_fields.fields import (
    FieldDefinition,
    FieldRegistry,
    FieldVault,
    contains_suspicious_content,
    is_valid_api_key_format,
    mask_value,
    validate_value,
)
from navigator_secure_fields.policy import SecurityContext


class TestFieldRegistry:
    """Tests for FieldDefinition and FieldRegistry."""

    def test_lookup(self, registry):
        definition = registry.get("mailchimp_api_key")
        assert definition.security_context is SecurityContext.API_KEY
        assert "phone" in registry
        assert len(registry) == 5

    def test_unknown_field(self, registry):
        with pytest.raises(FieldNotFound) as exc:
            registry.get("nope")
        assert str(exc.value) == "Unknown secure field: nope"
        assert isinstance(exc.value, KeyError)

    def test_duplicate_rejected(self, registry):
        with pytest.raises(ValueError):
            registry.register(FieldDefinition(id="phone"))

    def test_slot_defaults_to_id(self):
        assert FieldDefinition(id="token").slot == "token"
        assert FieldDefinition(id="token", option="plugin_token").slot == "plugin_token"

    def test_invalid_pattern(self):
        with pytest.raises(ValidationError):
            FieldDefinition(id="bad", format_constraint="([unclosed")

    def test_unknown_context_rejected(self):
        with pytest.raises(ValidationError):
            FieldDefinition(id="x", security_context="internal")


class TestValidateValue:
    """Tests for validate_value."""

    def test_strips_whitespace(self):
        assert validate_value("  secret  ") == "secret"

    @pytest.mark.parametrize("value", ["", "   ", "\n\t"])
    def test_empty(self, value):
        with pytest.raises(InvalidValue) as exc:
            validate_value(value)
        assert exc.value.code == "empty"
        assert str(exc.value) == "Please enter a value"

    def test_not_a_string(self):
        with pytest.raises(InvalidValue) as exc:
            validate_value(12345)
        assert exc.value.code == "type"

    def test_too_long(self):
        with pytest.raises(InvalidValue) as exc:
            validate_value("x" * 11, max_length=10)
        assert exc.value.code == "too_long"

    @pytest.mark.parametrize("value", [
        "<script>alert(1)</script>",
        "javascript:alert(1)",
        "x onerror=alert(1)",
        "data: text/html;base64,AAAA",
    ])
    def test_suspicious(self, value):
        with pytest.raises(InvalidValue) as exc:
            validate_value(value)
        assert exc.value.code == "suspicious"

    def test_format_constraint(self, registry):
        phone = registry.get("phone")
        assert validate_value("+1 555 0100", phone) == "+1 555 0100"
        with pytest.raises(InvalidValue) as exc:
            validate_value("call me", phone)
        assert exc.value.code == "format"

    def test_api_key_default_pattern(self, registry):
        api_key = registry.get("mailchimp_api_key")
        assert validate_value("abc123-us21", api_key) == "abc123-us21"
        with pytest.raises(InvalidValue) as exc:
            validate_value("short", api_key)
        assert exc.value.code == "format"

    def test_sensitive_accepts_free_text(self, registry):
        smtp = registry.get("smtp_password")
        assert validate_value("p@ss w0rd!", smtp) == "p@ss w0rd!"


class TestHelpers:
    """Tests for the small validation and display helpers."""

    def test_api_key_format(self):
        assert is_valid_api_key_format("sk_live_1234567890") is True
        assert is_valid_api_key_format("has spaces in it") is False
        assert is_valid_api_key_format("sk-123", pattern=r"sk-\d+") is True

    def test_suspicious_content(self):
        assert contains_suspicious_content("<SCRIPT src=x>") is True
        assert contains_suspicious_content("plain-value") is False

    @pytest.mark.parametrize("value, expected", [
        ("", ""),
        ("abc", "•••"),
        ("abcd", "••••"),
        ("sk-test-123", "•••••••-123"),
        ("x" * 40 + "tail", "•" * 20 + "tail"),
    ])
    def test_mask_value(self, value, expected):
        assert mask_value(value) == expected


class TestFieldVault:
    """Tests for FieldVault."""

    def test_store_value_encrypts(self, vault, store, codec):
        envelope = vault.store_value("smtp_password", "  hunter22  ")
        assert store.get("smtp_password") == envelope
        assert envelope != "hunter22"
        assert codec.decrypt(envelope) == "hunter22"

    def test_store_value_uses_slot(self, store, codec):
        registry = FieldRegistry(FieldDefinition(id="token", option="plugin_token"))
        vault = FieldVault(registry, store, codec)
        vault.store_value("token", "value-1")
        assert store.get("plugin_token")
        assert vault.get_envelope("token") == store.get("plugin_token")

    def test_no_double_encryption(self, vault, codec):
        """An envelope that opens is stored unchanged."""
        envelope = codec.encrypt("already-sealed")
        assert vault.store_value("smtp_password", envelope) == envelope
        assert codec.decrypt(vault.get_envelope("smtp_password")) == "already-sealed"

    def test_corrupted_envelope_rejected(self, vault, codec):
        decoded = bytearray(base64.b64decode(codec.encrypt("sealed")))
        decoded[20] ^= 0x01
        with pytest.raises(InvalidValue) as exc:
            vault.store_value("smtp_password", base64.b64encode(bytes(decoded)).decode())
        assert exc.value.code == "corrupted"
        assert vault.get_envelope("smtp_password") == ""

    def test_damaged_envelope_rejected(self, vault, codec):
        """An envelope with an altered padded tail is not stored as plain text."""
        envelope = codec.encrypt("abc123")
        with pytest.raises(InvalidValue) as exc:
            vault.store_value("smtp_password", envelope[:-1] + "A")
        assert exc.value.code == "corrupted"
        assert vault.get_envelope("smtp_password") == ""

    def test_invalid_value_leaves_slot(self, vault):
        original = vault.store_value("mailchimp_api_key", "abcdefgh-us1")
        with pytest.raises(InvalidValue):
            vault.store_value("mailchimp_api_key", "bad key!")
        assert vault.get_envelope("mailchimp_api_key") == original

    def test_unknown_field(self, vault):
        with pytest.raises(FieldNotFound):
            vault.store_value("nope", "value")

    def test_process_submission(self, vault, codec):
        vault.store_value("smtp_password", "keep-me")
        kept = vault.get_envelope("smtp_password")
        errors = vault.process_submission({
            "mailchimp_api_key": "abcdefgh-us1",
            "smtp_password": "",
            "phone": "not a phone",
        })
        assert errors == {"phone": "Value does not match the expected format"}
        assert vault.get_envelope("smtp_password") == kept
        assert codec.decrypt(vault.get_envelope("mailchimp_api_key")) == "abcdefgh-us1"
        assert vault.get_envelope("phone") == ""

    def test_process_submission_clears_corrupted(self, vault, store, codec):
        decoded = bytearray(base64.b64decode(codec.encrypt("sealed")))
        decoded[-1] ^= 0x01
        store.set("smtp_password", base64.b64encode(bytes(decoded)).decode())
        errors = vault.process_submission({})
        assert "smtp_password" in errors
        assert "corrupted" in errors["smtp_password"]
        assert store.get("smtp_password") == ""

    def test_process_submission_clears_damaged(self, vault, store, codec):
        envelope = codec.encrypt("abc123")
        store.set("smtp_password", envelope[:-1] + "A")
        errors = vault.process_submission({})
        assert "corrupted" in errors["smtp_password"]
        assert store.get("smtp_password") == ""
