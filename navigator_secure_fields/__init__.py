"""Navigator Secure Fields.

Encrypted-at-rest settings fields with context-gated, auto-expiring reveal.
"""
from .version import (
    __title__, __description__, __version__, __author__, __author_email__
)
from .exceptions import (
    SecureFieldError,
    EncryptionError,
    DecryptionError,
    AccessDenied,
    InvalidToken,
    FieldNotFound,
    InvalidValue,
    ErrorKind,
    RevealClientError,
)
from .vault import (
    SecureFieldsConfig,
    ConfigStore,
    MemoryConfigStore,
    FileConfigStore,
    KeyStore,
    MasterKey,
    Codec,
    is_encrypted_value,
    rotate_master_key,
    security_check,
)
from .policy import SecurityContext, Identity, ContextAccessPolicy, context_predicate
from .fields import FieldDefinition, FieldRegistry, FieldVault, mask_value, validate_value
from .session import FieldSession
from .handlers import RevealProtocol, SecureFieldsHandler, setup_secure_fields
from .client import RevealClient, RevealResult
from .disclosure import FieldDisclosure, FieldStatus, DisclosureGroup, LoopScheduler

__all__ = (
    "SecureFieldError",
    "EncryptionError",
    "DecryptionError",
    "AccessDenied",
    "InvalidToken",
    "FieldNotFound",
    "InvalidValue",
    "ErrorKind",
    "RevealClientError",
    "SecureFieldsConfig",
    "ConfigStore",
    "MemoryConfigStore",
    "FileConfigStore",
    "KeyStore",
    "MasterKey",
    "Codec",
    "is_encrypted_value",
    "rotate_master_key",
    "security_check",
    "SecurityContext",
    "Identity",
    "ContextAccessPolicy",
    "context_predicate",
    "FieldDefinition",
    "FieldRegistry",
    "FieldVault",
    "mask_value",
    "validate_value",
    "FieldSession",
    "RevealProtocol",
    "SecureFieldsHandler",
    "setup_secure_fields",
    "RevealClient",
    "RevealResult",
    "FieldDisclosure",
    "FieldStatus",
    "DisclosureGroup",
    "LoopScheduler",
)
