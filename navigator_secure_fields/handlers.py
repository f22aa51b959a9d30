"""
Reveal Protocol — server boundary for revealing and saving secure fields.

Routes (under ``ROUTE_PREFIX``):

    POST /{field_id}/reveal   body {}        -> 200 {plaintext, expires_in}
    POST /{field_id}/save     body {value}   -> 200 {success, masked}

Both require a session-bound anti-forgery token (header ``CSRF_HEADER`` or
body field ``CSRF_FIELD``) and a capability check matching the field's
SecurityContext. Errors are sanitized and never echo cryptographic detail.

Known limitation:
    The server does not track reveal sessions. ``expires_in`` is advisory and
    only the client timer enforces it; a client may keep the plaintext longer.
"""
import logging
from typing import Any, Optional

import orjson
from aiohttp import web

from .conf import CSRF_FIELD, CSRF_HEADER, ROUTE_PREFIX
from .exceptions import (
    AccessDenied,
    DecryptionError,
    EncryptionError,
    FieldNotFound,
    InvalidValue,
)
from .fields import FieldVault, mask_value
from .policy import (
    ContextAccessPolicy,
    OwnerCheck,
    Predicate,
    context_predicate,
    default_owner_check,
)
from .session import get_session

logger = logging.getLogger("navigator.secure_fields")


def json_dumps(obj: Any) -> str:
    return orjson.dumps(obj).decode("utf-8")


def error_response(status: int, code: str, message: str) -> web.Response:
    return web.json_response(
        {"success": False, "error": code, "message": message},
        status=status,
        dumps=json_dumps,
    )


class RevealProtocol:
    """Guarded reveal and save operations, independent of the transport."""

    def __init__(
        self,
        vault: FieldVault,
        policy: ContextAccessPolicy,
        reveal_timeout: float = 8.0
    ):
        self.vault = vault
        self.policy = policy
        self.reveal_timeout = reveal_timeout

    def reveal(self, field_id: str, predicate: Predicate) -> dict:
        """Decrypt the stored envelope of ``field_id`` for an authorized caller.

        Has no side effects; repeating it is safe.
        """
        definition = self.vault.registry.get(field_id)
        if not definition.show_reveal:
            raise AccessDenied(f"Reveal is disabled for field {field_id}")
        self.policy.authorize(definition.security_context, predicate)
        envelope = self.vault.get_envelope(field_id)
        plaintext = self.policy.decrypt_for_context(
            envelope, definition.security_context
        )
        logger.info("Secure field %s revealed", field_id)
        return {"plaintext": plaintext, "expires_in": self.reveal_timeout}

    def save(self, field_id: str, value: str, predicate: Predicate) -> dict:
        """Validate, re-encrypt and replace the stored envelope wholesale.

        Repeating a save with identical input stores an equivalent envelope
        (different bytes, same plaintext).
        """
        definition = self.vault.registry.get(field_id)
        if not definition.show_edit:
            raise AccessDenied(f"Editing is disabled for field {field_id}")
        self.policy.authorize(definition.security_context, predicate)
        envelope = self.vault.store_value(field_id, value)
        masked = mask_value(self.vault.codec.decrypt(envelope))
        return {"success": True, "masked": masked}


class SecureFieldsHandler:
    """aiohttp adapter for the RevealProtocol."""

    def __init__(
        self,
        protocol: RevealProtocol,
        owner_check: OwnerCheck = default_owner_check,
        prefix: str = ROUTE_PREFIX
    ):
        self.protocol = protocol
        self.owner_check = owner_check
        self.prefix = prefix.rstrip("/")

    def setup(self, app: web.Application) -> web.Application:
        app.router.add_post(
            f"{self.prefix}/{{field_id}}/reveal", self.reveal, name="secure_fields_reveal"
        )
        app.router.add_post(
            f"{self.prefix}/{{field_id}}/save", self.save, name="secure_fields_save"
        )
        return app

    async def _read_body(self, request: web.Request) -> dict:
        if not request.body_exists:
            return {}
        try:
            body = orjson.loads(await request.read())
        except orjson.JSONDecodeError:
            raise InvalidValue("Malformed request body", "bad_request") from None
        if not isinstance(body, dict):
            raise InvalidValue("Malformed request body", "bad_request")
        return body

    def _authorize_request(self, request: web.Request, body: dict, field_id: str) -> Predicate:
        session = get_session(request)
        if session is None:
            raise AccessDenied("No session")
        token: Optional[str] = request.headers.get(CSRF_HEADER) or body.get(CSRF_FIELD)
        session.verify_token(token)
        definition = self.protocol.vault.registry.get(field_id)
        return context_predicate(
            session.identity,
            owner_id=definition.owner_id,
            owner_check=self.owner_check,
        )

    async def _dispatch(self, request: web.Request, operation: str) -> web.Response:
        field_id = request.match_info["field_id"]
        try:
            body = await self._read_body(request)
            predicate = self._authorize_request(request, body, field_id)
            if operation == "reveal":
                result = self.protocol.reveal(field_id, predicate)
            else:
                result = self.protocol.save(field_id, body.get("value", ""), predicate)
        except FieldNotFound:
            return error_response(404, "not_found", "Unknown field")
        except AccessDenied as err:
            logger.warning("Secure field %s %s denied: %s", field_id, operation, err)
            return error_response(403, "forbidden", "You do not have permission to perform this action")
        except InvalidValue as err:
            return error_response(400, err.code, str(err))
        except (DecryptionError, EncryptionError):
            logger.error("Secure field %s %s failed: cannot decrypt", field_id, operation)
            return error_response(500, "decryption_failed", "Cannot decrypt value")
        return web.json_response(result, dumps=json_dumps)

    async def reveal(self, request: web.Request) -> web.Response:
        return await self._dispatch(request, "reveal")

    async def save(self, request: web.Request) -> web.Response:
        return await self._dispatch(request, "save")


SECURE_FIELDS_HANDLER = web.AppKey("secure_fields", SecureFieldsHandler)


def setup_secure_fields(
    app: web.Application,
    protocol: RevealProtocol,
    owner_check: OwnerCheck = default_owner_check,
    prefix: str = ROUTE_PREFIX
) -> SecureFieldsHandler:
    """Register the reveal/save routes on ``app``."""
    handler = SecureFieldsHandler(protocol, owner_check=owner_check, prefix=prefix)
    handler.setup(app)
    app[SECURE_FIELDS_HANDLER] = handler
    return handler
