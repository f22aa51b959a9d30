"""
Vault Key Rotation — Replace the master key and report on key health.

Rotation is destructive: the previous generation is overwritten, not kept,
so every envelope sealed under it can no longer be opened. Callers must
treat the resulting DecryptionError as expected and ask operators to
re-enter the affected values.

Security Note:
    Never log key material. Only generations and ages.
"""
import os
import time
import secrets
import logging
from typing import Optional

from pydantic import BaseModel, Field

from .config import KEY_LENGTH, DAY_IN_SECONDS, SecureFieldsConfig
from .crypto import get_cipher_cls, IV_SIZE
from .keystore import KeyStore, MasterKey

logger = logging.getLogger("navigator.secure_fields")


def rotate_master_key(
    keystore: KeyStore,
    force: bool = False,
    max_age: Optional[int] = None,
    config: Optional[SecureFieldsConfig] = None
) -> bool:
    """Generate a new master key and overwrite the stored one.

    Args:
        keystore: Key store holding the active key.
        force: Rotate even when the current key is younger than ``max_age``.
        max_age: Age in seconds after which a non-forced rotation runs;
            defaults to ``config.rotation_max_age``.
        config: Settings supplying the rotation threshold.

    Returns:
        True if a rotation was performed.
    """
    if max_age is None:
        max_age = (config or SecureFieldsConfig()).rotation_max_age
    current = keystore.load()
    if not force and current is not None and current.age <= max_age:
        return False

    generation = (current.generation if current else 0) + 1
    new_key = MasterKey(
        key_material=secrets.token_bytes(KEY_LENGTH),
        generation=generation,
        created_at=time.time(),
    )
    keystore.save(new_key)
    logger.info(
        "Master encryption key rotated to generation %d (forced=%s)",
        generation, force,
    )
    return True


class SecurityReport(BaseModel):
    """Diagnostic snapshot; never used for control flow."""

    secure: bool
    issues: list[str] = Field(default_factory=list)
    cipher_backend: str
    aead_available: bool
    master_key_exists: bool
    key_generation: int = 0
    key_age_days: int = 0
    key_rotation_due: bool = False


def _aead_available(backend: str) -> bool:
    try:
        cipher = get_cipher_cls(backend)(secrets.token_bytes(KEY_LENGTH))
        nonce = os.urandom(IV_SIZE)
        return cipher.decrypt(nonce, cipher.encrypt(nonce, b"self-test", None), None) == b"self-test"
    except Exception:  # any failure here means the primitive is unusable
        return False


def security_check(
    keystore: KeyStore,
    config: Optional[SecureFieldsConfig] = None
) -> SecurityReport:
    """Report AEAD availability, key existence and rotation-overdue state."""
    config = config or SecureFieldsConfig()
    issues: list[str] = []

    available = _aead_available(config.cipher_backend)
    if not available:
        issues.append(f"{config.cipher_backend} AEAD cipher not supported")

    key = keystore.load()
    age_days = 0
    overdue = False
    if key is not None:
        age_days = int(key.age // DAY_IN_SECONDS)
        overdue = key.age > config.rotation_warning_age
        if overdue:
            issues.append(f"Master key is {age_days} days old, consider rotation")

    return SecurityReport(
        secure=available,
        issues=issues,
        cipher_backend=config.cipher_backend,
        aead_available=available,
        master_key_exists=key is not None,
        key_generation=key.generation if key else 0,
        key_age_days=age_days,
        key_rotation_due=overdue,
    )
