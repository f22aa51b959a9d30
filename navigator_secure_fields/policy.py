"""
Context Access Policy — who may see a decrypted field value.

Each field carries an immutable SecurityContext:

- ``api_key`` / ``sensitive``: caller must hold the administrative capability
- ``personal``: caller must own the data (ownership check is injected)
- ``public``: no check

Identity resolution belongs to the host; this module only consumes it as a
predicate ``(context) -> bool`` built per request by :func:`context_predicate`.
"""
import logging
from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel, Field

from .conf import ADMIN_CAPABILITY
from .exceptions import AccessDenied
from .vault.crypto import Codec

logger = logging.getLogger("navigator.secure_fields")


class SecurityContext(str, Enum):
    API_KEY = "api_key"
    SENSITIVE = "sensitive"
    PERSONAL = "personal"
    PUBLIC = "public"

    @property
    def requires_admin(self) -> bool:
        return self in (SecurityContext.API_KEY, SecurityContext.SENSITIVE)


class Identity(BaseModel):
    """The caller as resolved by the host."""

    user_id: Optional[str] = None
    capabilities: frozenset[str] = Field(default_factory=frozenset)

    model_config = {"frozen": True}

    def can(self, capability: str) -> bool:
        return capability in self.capabilities

    @property
    def is_admin(self) -> bool:
        return self.can(ADMIN_CAPABILITY)


Predicate = Callable[[SecurityContext], bool]
OwnerCheck = Callable[[Identity, Optional[str]], bool]


def default_owner_check(identity: Identity, owner_id: Optional[str]) -> bool:
    """The caller owns the data when both ids are known and equal."""
    if identity.user_id is None or owner_id is None:
        return False
    return str(identity.user_id) == str(owner_id)


def context_predicate(
    identity: Optional[Identity],
    owner_id: Optional[str] = None,
    owner_check: OwnerCheck = default_owner_check,
) -> Predicate:
    """Build the capability predicate for one caller and one field owner."""
    def allowed(context: SecurityContext) -> bool:
        if context is SecurityContext.PUBLIC:
            return True
        if identity is None:
            return False
        if context is SecurityContext.PERSONAL:
            return owner_check(identity, owner_id)
        # api_key, sensitive, and anything not classified above
        return identity.is_admin
    return allowed


class ContextAccessPolicy:
    """Gates decryption behind a security context."""

    def __init__(self, codec: Codec):
        self._codec = codec

    def authorize(self, context: SecurityContext, predicate: Predicate) -> None:
        """Raise AccessDenied unless ``predicate`` admits ``context``.

        Always called before any cryptographic work so unauthorized callers
        learn nothing about the validity of a ciphertext.
        """
        try:
            allowed = bool(predicate(context))
        except Exception:
            logger.exception("Capability predicate failed for context %s", context.value)
            allowed = False
        if not allowed:
            logger.warning("Unauthorized reveal attempt in context %s", context.value)
            raise AccessDenied(
                f"Unauthorized attempt to view decrypted data in context: {context.value}"
            )

    def decrypt_for_context(self, envelope: str, context: SecurityContext) -> str:
        """Decrypt under a context tag.

        Caller eligibility is checked at the boundary that knows the caller
        (the reveal handler), not here.
        """
        logger.debug("Decrypting value for context %s", context.value)
        return self._codec.decrypt(envelope)

    def decrypt_for_display(self, envelope: str, predicate: Predicate) -> str:
        """Decrypt for an admin screen; requires the administrative capability."""
        self.authorize(SecurityContext.SENSITIVE, predicate)
        return self._codec.decrypt(envelope)
