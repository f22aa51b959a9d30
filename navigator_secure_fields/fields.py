"""
Secure field definitions, value validation and persisted slots.

A field's persisted value is a single string slot in a ConfigStore holding
either a base64 envelope or an empty string.
"""
import re
import logging
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from .exceptions import DecryptionError, FieldNotFound, InvalidValue
from .policy import SecurityContext
from .vault.crypto import Codec, is_damaged_envelope, is_encrypted_value
from .vault.keystore import ConfigStore

logger = logging.getLogger("navigator.secure_fields")

MASK_CHAR = "•"
MAX_MASK_LENGTH = 20
VISIBLE_TAIL = 4

API_KEY_PATTERN = r"^[a-zA-Z0-9_-]{8,100}$"
_CORRUPTED_MESSAGE = "Stored value appears to be corrupted, please enter it again"

_SUSPICIOUS_PATTERNS = (
    re.compile(r"<script", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"vbscript:", re.IGNORECASE),
    re.compile(r"on\w+\s*=", re.IGNORECASE),
    re.compile(r"data:\s*text/html", re.IGNORECASE),
)


class FieldDefinition(BaseModel):
    """Collaborator contract from the form system."""

    id: str = Field(min_length=1)
    security_context: SecurityContext = SecurityContext.SENSITIVE
    format_constraint: Optional[str] = None
    option: Optional[str] = None
    owner_id: Optional[str] = None
    show_reveal: bool = True
    show_edit: bool = True

    model_config = {"frozen": True}

    @field_validator("format_constraint")
    @classmethod
    def validate_pattern(cls, v: Optional[str]) -> Optional[str]:
        if v is not None:
            try:
                re.compile(v)
            except re.error as err:
                raise ValueError(f"Invalid format constraint: {err}") from err
        return v

    @property
    def slot(self) -> str:
        """Config-store option holding this field's envelope."""
        return self.option or self.id


class FieldRegistry:
    """Known field definitions, keyed by id."""

    def __init__(self, *fields: FieldDefinition):
        self._fields: dict[str, FieldDefinition] = {}
        for definition in fields:
            self.register(definition)

    def register(self, definition: FieldDefinition) -> FieldDefinition:
        if definition.id in self._fields:
            raise ValueError(f"Secure field already registered: {definition.id}")
        self._fields[definition.id] = definition
        return definition

    def get(self, field_id: str) -> FieldDefinition:
        try:
            return self._fields[field_id]
        except KeyError:
            raise FieldNotFound(field_id) from None

    def __contains__(self, field_id: object) -> bool:
        return field_id in self._fields

    def __iter__(self):
        return iter(self._fields.values())

    def __len__(self) -> int:
        return len(self._fields)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def is_valid_api_key_format(value: str, pattern: Optional[str] = None) -> bool:
    """Match ``value`` against a provider pattern, or the generic API key one."""
    return re.fullmatch(pattern or API_KEY_PATTERN, value) is not None


def contains_suspicious_content(value: str) -> bool:
    return any(p.search(value) for p in _SUSPICIOUS_PATTERNS)


def validate_value(
    value: str,
    definition: Optional[FieldDefinition] = None,
    max_length: int = 1000
) -> str:
    """Check a new plaintext value before it is encrypted.

    Returns the value stripped of surrounding whitespace.

    Raises:
        InvalidValue: With a user-facing message and a short ``code``.
    """
    if not isinstance(value, str):
        raise InvalidValue("Value must be a string", "type")
    value = value.strip()
    if not value:
        raise InvalidValue("Please enter a value", "empty")
    if len(value) > max_length:
        raise InvalidValue(
            f"Value is too long (maximum {max_length} characters)", "too_long"
        )
    if contains_suspicious_content(value):
        raise InvalidValue("Value contains potentially unsafe content", "suspicious")
    if definition is not None:
        if definition.format_constraint:
            if re.fullmatch(definition.format_constraint, value) is None:
                raise InvalidValue("Value does not match the expected format", "format")
        elif definition.security_context is SecurityContext.API_KEY:
            if not is_valid_api_key_format(value):
                raise InvalidValue("Invalid API key format", "format")
    return value


def mask_value(value: str) -> str:
    """Masked rendition for display, keeping the last four characters."""
    if not value:
        return ""
    length = len(value)
    if length <= VISIBLE_TAIL:
        return MASK_CHAR * length
    return MASK_CHAR * min(length - VISIBLE_TAIL, MAX_MASK_LENGTH) + value[-VISIBLE_TAIL:]


# ---------------------------------------------------------------------------
# Persisted slots
# ---------------------------------------------------------------------------

class FieldVault:
    """Reads and replaces the persisted envelope of each registered field."""

    def __init__(
        self,
        registry: FieldRegistry,
        store: ConfigStore,
        codec: Codec,
        max_value_length: int = 1000
    ):
        self.registry = registry
        self._store = store
        self._codec = codec
        self.max_value_length = max_value_length

    @property
    def codec(self) -> Codec:
        return self._codec

    def get_envelope(self, field_id: str) -> str:
        definition = self.registry.get(field_id)
        return self._store.get(definition.slot) or ""

    def put_envelope(self, field_id: str, envelope: str) -> None:
        definition = self.registry.get(field_id)
        self._store.set(definition.slot, envelope)

    def store_value(self, field_id: str, value: str) -> str:
        """Validate, encrypt and persist a value; return the stored envelope.

        A value that is already an envelope is kept as-is once it is shown
        to open under the current key, so it is never encrypted twice.
        """
        definition = self.registry.get(field_id)
        if is_damaged_envelope(value):
            raise InvalidValue(_CORRUPTED_MESSAGE, "corrupted")
        if isinstance(value, str) and is_encrypted_value(value):
            try:
                self._codec.decrypt(value)
            except DecryptionError:
                raise InvalidValue(_CORRUPTED_MESSAGE, "corrupted") from None
            envelope = value
        else:
            plaintext = validate_value(value, definition, self.max_value_length)
            envelope = self._codec.encrypt(plaintext)
            if self._codec.decrypt(envelope) != plaintext:
                raise DecryptionError("Encryption integrity check failed")
        self._store.set(definition.slot, envelope)
        logger.info("Secure field %s stored", field_id)
        return envelope

    def process_submission(self, values: dict) -> dict[str, str]:
        """Merge a generic form post into the stored slots.

        Empty submissions keep the existing envelope when it still opens.
        Rejected values leave the previous envelope untouched.

        Returns:
            Mapping of field id to a user-facing error message.
        """
        errors: dict[str, str] = {}
        for definition in self.registry:
            submitted = values.get(definition.id)
            if submitted is None or (isinstance(submitted, str) and not submitted.strip()):
                existing = self._store.get(definition.slot) or ""
                if existing:
                    try:
                        self._codec.decrypt(existing)
                    except DecryptionError:
                        logger.warning("Invalid encrypted value detected in %s", definition.id)
                        self._store.set(definition.slot, "")
                        errors[definition.id] = (
                            "Your stored value appears to be corrupted. Please enter it again."
                        )
                continue
            try:
                self.store_value(definition.id, submitted)
            except InvalidValue as err:
                errors[definition.id] = str(err)
        return errors
