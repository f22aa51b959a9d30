"""
Reveal Client — transport for the reveal/save protocol.

Wraps each call with a request timeout, exponential-backoff retry for
transient failures (timeouts and network errors) and classification of
every failure into an :class:`ErrorKind`. Authorization, validation and
server failures are terminal.

Security Note:
    Revealed plaintext is returned to the caller only; it is never logged
    or cached here.
"""
import re
import asyncio
import logging
from typing import Any, Awaitable, Callable

import orjson
import aiohttp
from pydantic import BaseModel, ValidationError

from .conf import CSRF_HEADER, ROUTE_PREFIX
from .exceptions import ErrorKind, RevealClientError

logger = logging.getLogger("navigator.secure_fields")

_SENSITIVE_WORDS = re.compile(r"nonce|token|key|password|secret", re.IGNORECASE)

# gateway failures are treated as transient network errors
_TRANSIENT_STATUS = frozenset({502, 503, 504})


def sanitize_message(message: str) -> str:
    """Redact words that could leak security material into the UI."""
    return _SENSITIVE_WORDS.sub("[REDACTED]", message or "Request failed")


def classify_status(status: int) -> ErrorKind:
    if status in (401, 403):
        return ErrorKind.AUTHORIZATION
    if status in (400, 404, 409, 422):
        return ErrorKind.VALIDATION
    if status == 408:
        return ErrorKind.TIMEOUT
    if status in _TRANSIENT_STATUS:
        return ErrorKind.NETWORK
    return ErrorKind.SERVER


class RevealResult(BaseModel):
    plaintext: str
    expires_in: float

    def __repr__(self) -> str:
        return f"RevealResult(expires_in={self.expires_in})"

    __str__ = __repr__


class RevealClient:
    """Calls the secure fields routes with one anti-forgery token."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        token: str,
        base_url: str = "",
        prefix: str = ROUTE_PREFIX,
        request_timeout: float = 30.0,
        max_retries: int = 2,
        retry_backoff: float = 1.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        self._session = session
        self._token = token
        self._base = base_url.rstrip("/") + prefix.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=request_timeout)
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self._sleep = sleep

    @classmethod
    def from_config(
        cls,
        session: aiohttp.ClientSession,
        token: str,
        config,
        base_url: str = ""
    ) -> "RevealClient":
        return cls(
            session,
            token,
            base_url=base_url,
            request_timeout=config.request_timeout,
            max_retries=config.max_retries,
            retry_backoff=config.retry_backoff,
        )

    async def reveal(self, field_id: str) -> RevealResult:
        body = await self._request(field_id, "reveal", {})
        try:
            return RevealResult(
                plaintext=body.get("plaintext"),
                expires_in=body.get("expires_in"),
            )
        except ValidationError:
            raise RevealClientError(
                ErrorKind.SERVER, "Invalid or tampered response from server"
            ) from None

    async def save(self, field_id: str, value: str) -> dict:
        if not value:
            raise RevealClientError(ErrorKind.VALIDATION, "New value is required")
        body = await self._request(field_id, "save", {"value": value})
        if body.get("success") is not True:
            raise RevealClientError(ErrorKind.SERVER, "Failed to save field")
        return body

    async def _request(self, field_id: str, action: str, payload: dict) -> dict:
        if not self._token:
            raise RevealClientError(ErrorKind.VALIDATION, "Security token missing")
        if not field_id:
            raise RevealClientError(ErrorKind.VALIDATION, "Invalid field configuration")
        url = f"{self._base}/{field_id}/{action}"
        attempt = 0
        while True:
            try:
                return await self._send(url, payload)
            except RevealClientError as err:
                if not err.retryable or attempt >= self.max_retries:
                    logger.warning(
                        "Secure field %s %s failed: %s", field_id, action, err.kind.value
                    )
                    raise
                delay = self.retry_backoff * (2 ** attempt)
                attempt += 1
                logger.info(
                    "Retrying %s of %s (%d/%d) in %.1fs",
                    action, field_id, attempt, self.max_retries, delay,
                )
                await self._sleep(delay)

    async def _send(self, url: str, payload: dict) -> dict:
        headers = {
            CSRF_HEADER: self._token,
            "Content-Type": "application/json",
        }
        try:
            async with self._session.post(
                url,
                data=orjson.dumps(payload),
                headers=headers,
                timeout=self._timeout,
            ) as response:
                status = response.status
                try:
                    body = await response.json(loads=orjson.loads, content_type=None)
                except ValueError:
                    body = None
        except asyncio.TimeoutError:
            raise RevealClientError(
                ErrorKind.TIMEOUT, "Request timeout - please try again"
            ) from None
        except aiohttp.ClientError as err:
            raise RevealClientError(
                ErrorKind.NETWORK, sanitize_message(str(err) or "Network error occurred")
            ) from None

        if status >= 400:
            message = body.get("message") if isinstance(body, dict) else None
            raise RevealClientError(
                classify_status(status),
                sanitize_message(message or f"Request failed with status {status}"),
                status=status,
            )
        if not isinstance(body, dict):
            raise RevealClientError(
                ErrorKind.SERVER, "Invalid or tampered response from server", status=status
            )
        return body
