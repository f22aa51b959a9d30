"""
Field Disclosure — per-field state machine for masked/revealed/editing UI.

States and transitions::

    masked    -> revealing   reveal requested, nothing pending
    revealing -> revealed    reveal succeeded; deadline timer started
    revealing -> error       reveal failed; reverts to masked
    revealed  -> masked      deadline, hide, unmount or form submit
    masked|revealed -> editing
    editing   -> saving      input passed local validation
    saving    -> masked      save succeeded; plaintext is not redisplayed
    saving    -> error       save failed; reverts to editing, input kept
    editing   -> masked      cancel; edit buffer discarded

At most one reveal or save is in flight per field. Every request carries a
token; hide, submit and unmount invalidate it, so a late response is dropped
instead of applied. Plaintext lives in wipeable buffers and is overwritten
when the field leaves the revealed or editing states.

Security Note:
    Python strings are immutable; values handed to and returned by the
    client exist as ``str`` copies until collected. Buffers are overwritten
    best-effort only.
"""
import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Optional

from .client import RevealClient
from .exceptions import InvalidValue, RevealClientError
from .fields import FieldDefinition, validate_value

logger = logging.getLogger("navigator.secure_fields")


class FieldStatus(str, Enum):
    MASKED = "masked"
    REVEALING = "revealing"
    REVEALED = "revealed"
    EDITING = "editing"
    SAVING = "saving"
    ERROR = "error"


# ---------------------------------------------------------------------------
# Scheduling
# ---------------------------------------------------------------------------

class Scheduler:
    """Clock and cancellable timers used by the state machine."""

    def time(self) -> float:
        raise NotImplementedError

    def call_later(self, delay: float, callback: Callable[..., Any], *args) -> Any:
        """Schedule ``callback(*args)``; the returned handle has ``cancel()``."""
        raise NotImplementedError


class LoopScheduler(Scheduler):
    """Scheduler backed by the running asyncio event loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop or asyncio.get_running_loop()

    def time(self) -> float:
        return self.loop.time()

    def call_later(self, delay: float, callback: Callable[..., Any], *args) -> asyncio.TimerHandle:
        return self.loop.call_later(delay, callback, *args)


class SecretBuffer:
    """Mutable holder for plaintext that can be overwritten in place."""

    __slots__ = ("_buf",)

    def __init__(self, value: str = ""):
        self._buf = bytearray(value.encode("utf-8"))

    @property
    def value(self) -> str:
        return self._buf.decode("utf-8")

    def wipe(self) -> None:
        for i in range(len(self._buf)):
            self._buf[i] = 0
        self._buf.clear()

    def __len__(self) -> int:
        return len(self._buf)

    def __bool__(self) -> bool:
        return bool(self._buf)

    def __repr__(self) -> str:
        return f"<SecretBuffer len={len(self._buf)}>"


Listener = Callable[[str, FieldStatus], Any]


class FieldDisclosure:
    """Disclosure controller for one mounted secure field."""

    def __init__(
        self,
        field_id: str,
        client: RevealClient,
        scheduler: Optional[Scheduler] = None,
        reveal_timeout: float = 8.0,
        error_revert_delay: float = 3.0,
        max_value_length: int = 1000,
        definition: Optional[FieldDefinition] = None
    ):
        self.field_id = field_id
        self.definition = definition
        self.reveal_timeout = reveal_timeout
        self.error_revert_delay = error_revert_delay
        self.max_value_length = max_value_length
        self._client = client
        self._scheduler = scheduler or LoopScheduler()
        self._status = FieldStatus.MASKED
        self._revealed = SecretBuffer()
        self._edit = SecretBuffer()
        self._deadline: Optional[float] = None
        self._pending = False
        self._request_id = 0
        self._reveal_timer: Any = None
        self._error_timer: Any = None
        self._error: Optional[str] = None
        self._mounted = True
        self._listeners: list[Listener] = []

    def __repr__(self) -> str:
        return f"<FieldDisclosure {self.field_id} status={self._status.value}>"

    # --- Properties ---

    @property
    def status(self) -> FieldStatus:
        return self._status

    @property
    def plaintext(self) -> Optional[str]:
        """Revealed value while in the revealed state, else None."""
        if self._status is FieldStatus.REVEALED and self._revealed:
            return self._revealed.value
        return None

    @property
    def edit_value(self) -> str:
        return self._edit.value

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def reveal_deadline(self) -> Optional[float]:
        return self._deadline

    @property
    def pending(self) -> bool:
        return self._pending

    @property
    def mounted(self) -> bool:
        return self._mounted

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def snapshot(self) -> dict:
        """State summary for debugging; contains no plaintext."""
        return {
            "field_id": self.field_id,
            "status": self._status.value,
            "pending": self._pending,
            "has_plaintext": bool(self._revealed),
            "has_edit_input": bool(self._edit),
            "timer_active": self._reveal_timer is not None,
            "reveal_deadline": self._deadline,
            "error": self._error,
        }

    # --- Internals ---

    def _set_status(self, status: FieldStatus) -> None:
        if status is self._status:
            return
        self._status = status
        for listener in list(self._listeners):
            try:
                listener(self.field_id, status)
            except Exception:
                logger.exception("Disclosure listener failed for %s", self.field_id)

    def _begin(self, status: FieldStatus) -> int:
        self._request_id += 1
        self._pending = True
        self._error = None
        self._set_status(status)
        return self._request_id

    def _is_current(self, request_id: int) -> bool:
        return self._mounted and request_id == self._request_id

    def _invalidate(self) -> None:
        self._request_id += 1

    def _cancel_reveal_timer(self) -> None:
        if self._reveal_timer is not None:
            self._reveal_timer.cancel()
            self._reveal_timer = None
        self._deadline = None

    def _cancel_error_timer(self) -> None:
        if self._error_timer is not None:
            self._error_timer.cancel()
            self._error_timer = None

    def _wipe(self) -> None:
        self._revealed.wipe()
        self._edit.wipe()

    def _to_masked(self) -> None:
        self._cancel_reveal_timer()
        self._cancel_error_timer()
        self._wipe()
        self._error = None
        self._set_status(FieldStatus.MASKED)

    def _fail(self, message: str, revert_to: FieldStatus) -> None:
        self._error = message
        self._set_status(FieldStatus.ERROR)
        if self.error_revert_delay <= 0:
            self._revert(revert_to)
        else:
            self._error_timer = self._scheduler.call_later(
                self.error_revert_delay, self._revert, revert_to
            )

    def _revert(self, status: FieldStatus) -> None:
        self._error_timer = None
        if not self._mounted or self._status is not FieldStatus.ERROR:
            return
        if status is FieldStatus.MASKED:
            self._error = None
        self._set_status(status)

    def _expire(self) -> None:
        self._reveal_timer = None
        if self._status is FieldStatus.REVEALED:
            logger.debug("Reveal window elapsed for %s", self.field_id)
            self._to_masked()

    @staticmethod
    def _error_message(err: Exception) -> str:
        if isinstance(err, RevealClientError):
            return err.message
        return "Network error occurred"

    # --- Transitions ---

    async def reveal(self) -> bool:
        """Request the plaintext; True when the field ends up revealed."""
        if not self._mounted or self._pending or self._status is not FieldStatus.MASKED:
            return False
        request_id = self._begin(FieldStatus.REVEALING)
        try:
            result = await self._client.reveal(self.field_id)
        except asyncio.CancelledError:
            if self._is_current(request_id):
                self._to_masked()
            raise
        except Exception as err:
            if not isinstance(err, RevealClientError):
                logger.exception("Reveal of %s failed", self.field_id)
            if self._is_current(request_id):
                self._fail(self._error_message(err), FieldStatus.MASKED)
            return False
        finally:
            self._pending = False
        if not self._is_current(request_id):
            logger.debug("Discarding stale reveal response for %s", self.field_id)
            return False
        duration = min(self.reveal_timeout, result.expires_in)
        if duration <= 0:
            # the server granted no reveal window
            self._to_masked()
            return False
        self._revealed = SecretBuffer(result.plaintext)
        self._deadline = self._scheduler.time() + duration
        self._reveal_timer = self._scheduler.call_later(duration, self._expire)
        self._set_status(FieldStatus.REVEALED)
        return True

    def hide(self) -> bool:
        """Mask immediately; an in-flight reveal is discarded on arrival."""
        if self._status is FieldStatus.REVEALED:
            self._to_masked()
            return True
        if self._status is FieldStatus.REVEALING:
            self._invalidate()
            self._to_masked()
            return True
        return False

    def edit(self) -> bool:
        if not self._mounted or self._pending:
            return False
        if self._status not in (FieldStatus.MASKED, FieldStatus.REVEALED):
            return False
        self._cancel_reveal_timer()
        self._wipe()
        self._error = None
        self._edit = SecretBuffer()
        self._set_status(FieldStatus.EDITING)
        return True

    def update_input(self, text: str) -> bool:
        """Replace the edit buffer with what the user typed."""
        if self._status is not FieldStatus.EDITING:
            return False
        self._edit.wipe()
        self._edit = SecretBuffer(text)
        self._error = None
        return True

    async def save(self) -> bool:
        """Submit the edit buffer; True when the new value was stored."""
        if not self._mounted or self._pending or self._status is not FieldStatus.EDITING:
            return False
        try:
            value = validate_value(self._edit.value, self.definition, self.max_value_length)
        except InvalidValue as err:
            # inline error, field stays in editing
            self._error = str(err)
            return False
        request_id = self._begin(FieldStatus.SAVING)
        try:
            await self._client.save(self.field_id, value)
        except asyncio.CancelledError:
            if self._is_current(request_id):
                self._set_status(FieldStatus.EDITING)
            raise
        except Exception as err:
            if not isinstance(err, RevealClientError):
                logger.exception("Save of %s failed", self.field_id)
            if self._is_current(request_id):
                self._fail(self._error_message(err), FieldStatus.EDITING)
            return False
        finally:
            self._pending = False
        if not self._is_current(request_id):
            logger.debug("Discarding stale save response for %s", self.field_id)
            return False
        self._to_masked()
        return True

    def cancel(self) -> bool:
        """Leave editing and discard the edit buffer."""
        if self._status is FieldStatus.EDITING or (
            self._status is FieldStatus.ERROR and self._edit
        ):
            self._to_masked()
            return True
        return False

    def submit_form(self) -> None:
        """The surrounding form was submitted: drop all plaintext."""
        self._invalidate()
        self._to_masked()

    def unmount(self) -> None:
        """Clear timers, overwrite buffers and ignore any late response."""
        self._invalidate()
        self._cancel_reveal_timer()
        self._cancel_error_timer()
        self._wipe()
        self._error = None
        self._status = FieldStatus.MASKED
        self._mounted = False
        self._listeners.clear()


class DisclosureGroup:
    """The independent disclosure controllers of one form."""

    def __init__(
        self,
        client: RevealClient,
        scheduler: Optional[Scheduler] = None,
        config=None
    ):
        self._client = client
        self._scheduler = scheduler or LoopScheduler()
        self._config = config
        self._fields: dict[str, FieldDisclosure] = {}

    def mount(
        self,
        field_id: str,
        definition: Optional[FieldDefinition] = None
    ) -> FieldDisclosure:
        if field_id in self._fields:
            return self._fields[field_id]
        options = {}
        if self._config is not None:
            options = {
                "reveal_timeout": self._config.reveal_timeout,
                "error_revert_delay": self._config.error_revert_delay,
                "max_value_length": self._config.max_value_length,
            }
        field = FieldDisclosure(
            field_id,
            self._client,
            scheduler=self._scheduler,
            definition=definition,
            **options,
        )
        self._fields[field_id] = field
        return field

    def get(self, field_id: str) -> FieldDisclosure:
        return self._fields[field_id]

    def unmount(self, field_id: str) -> None:
        field = self._fields.pop(field_id, None)
        if field is not None:
            field.unmount()

    def submit_form(self) -> None:
        for field in self._fields.values():
            field.submit_form()

    def destroy(self) -> None:
        for field_id in list(self._fields):
            self.unmount(field_id)

    def snapshot(self) -> dict:
        return {field_id: field.snapshot() for field_id, field in self._fields.items()}

    def __contains__(self, field_id: object) -> bool:
        return field_id in self._fields

    def __len__(self) -> int:
        return len(self._fields)
