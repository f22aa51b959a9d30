"""Secure Fields Vault — Master key lifecycle and envelope encryption.

Security Note (Threat Model):
    The master key is stored in the host's configuration store next to the
    data it protects; it defends against leaked database dumps and backups
    that exclude that slot, not against a compromised host process.
    Rotation replaces the key wholesale and old envelopes are lost.
"""

from .config import SecureFieldsConfig, load_master_key, generate_master_key
from .keystore import ConfigStore, MemoryConfigStore, FileConfigStore, KeyStore, MasterKey
from .crypto import Codec, is_encrypted_value, is_damaged_envelope
from .key_rotation import rotate_master_key, security_check, SecurityReport

__all__ = [
    "SecureFieldsConfig",
    "load_master_key",
    "generate_master_key",
    "ConfigStore",
    "MemoryConfigStore",
    "FileConfigStore",
    "KeyStore",
    "MasterKey",
    "Codec",
    "is_encrypted_value",
    "is_damaged_envelope",
    "rotate_master_key",
    "security_check",
    "SecurityReport",
]
