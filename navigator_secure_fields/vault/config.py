"""
Vault Configuration — Master key seeding and validated settings.

Reads settings from environment variables prefixed with ``SECURE_FIELDS_``:
    SECURE_FIELDS_MASTER_KEY = <base64-encoded 32-byte key>   (optional seed)
    SECURE_FIELDS_CIPHER_BACKEND = aesgcm | chacha20
    SECURE_FIELDS_ROTATION_MAX_AGE = <seconds>
    SECURE_FIELDS_REVEAL_TIMEOUT = <seconds>
    ...

Security Note:
    Never log key material. Only log key generations.
"""
import os
import base64
import secrets
import logging
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

logger = logging.getLogger("navigator.secure_fields")

KEY_LENGTH = 32
DAY_IN_SECONDS = 86400
# characters; at four UTF-8 bytes each a value still fits the envelope size cap
MAX_VALUE_LENGTH = 1800

_ENV_PREFIX = "SECURE_FIELDS_"


def load_master_key() -> Optional[bytes]:
    """Load an operator-provided seed key from SECURE_FIELDS_MASTER_KEY.

    The seed is only used when the key store holds no key yet; rotation
    always generates fresh random material.

    Returns:
        Raw 32-byte key, or None when the variable is not set.

    Raises:
        ValueError: If the value is not base64 or does not decode to 32 bytes.
    """
    raw = os.environ.get(f"{_ENV_PREFIX}MASTER_KEY")
    if not raw:
        return None
    try:
        key_bytes = base64.b64decode(raw, validate=True)
    except ValueError as err:
        raise ValueError(
            f"{_ENV_PREFIX}MASTER_KEY is not valid base64"
        ) from err
    if len(key_bytes) != KEY_LENGTH:
        raise ValueError(
            f"{_ENV_PREFIX}MASTER_KEY must decode to exactly {KEY_LENGTH} bytes, "
            f"got {len(key_bytes)}"
        )
    logger.debug("Seed master key found in environment")
    return key_bytes


def generate_master_key() -> str:
    """Generate a random 32-byte master key and return as base64 string.

    This is a utility for operators to generate seed keys.

    Returns:
        Base64-encoded 32-byte key string.
    """
    return base64.b64encode(secrets.token_bytes(KEY_LENGTH)).decode("ascii")


class SecureFieldsConfig(BaseModel):
    """Validated Secure Fields configuration."""

    cipher_backend: str = Field(default="aesgcm")
    master_key_option: str = Field(
        default="navigator_secure_fields_master_key", min_length=1
    )
    rotation_max_age: int = Field(default=30 * DAY_IN_SECONDS, ge=0)
    rotation_warning_age: int = Field(default=90 * DAY_IN_SECONDS, ge=0)
    reveal_timeout: float = Field(default=8.0, gt=0)
    max_value_length: int = Field(default=1000, ge=1, le=MAX_VALUE_LENGTH)
    request_timeout: float = Field(default=30.0, gt=0)
    max_retries: int = Field(default=2, ge=0, le=10)
    retry_backoff: float = Field(default=1.0, ge=0)
    error_revert_delay: float = Field(default=3.0, ge=0)

    @field_validator("cipher_backend")
    @classmethod
    def validate_cipher(cls, v: str) -> str:
        """Validate cipher backend is supported."""
        v = v.lower()
        if v not in ("aesgcm", "chacha20"):
            raise ValueError(f"Unsupported cipher backend: {v}")
        return v

    @model_validator(mode="after")
    def validate_rotation_window(self) -> "SecureFieldsConfig":
        """The overdue warning cannot fire before a rotation is even due."""
        if self.rotation_warning_age < self.rotation_max_age:
            raise ValueError(
                f"rotation_warning_age ({self.rotation_warning_age}) must not be "
                f"lower than rotation_max_age ({self.rotation_max_age})"
            )
        return self

    @classmethod
    def from_env(cls) -> "SecureFieldsConfig":
        """Create SecureFieldsConfig by loading values from environment.

        Only variables that are set override the defaults.

        Returns:
            Populated SecureFieldsConfig instance.
        """
        values = {}
        for name in cls.model_fields:
            raw = os.environ.get(f"{_ENV_PREFIX}{name.upper()}")
            if raw is not None:
                values[name] = raw
        return cls(**values)
