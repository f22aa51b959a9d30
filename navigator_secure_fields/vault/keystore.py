"""
Vault Key Store — Durable slot for the single active master key.

The master key and its rotation metadata live together in one config-store
slot, serialized with orjson:

    {"key": "<base64 32B>", "generation": N, "created_at": <epoch seconds>}

Only one generation is ever kept. Replacing the slot on rotation makes every
envelope sealed under an older generation permanently undecryptable.

Concurrency Note:
    The slot is read-then-written without locking. Two processes racing on
    first use both generate a key and the last write wins; envelopes sealed
    by the losing process in that window become undecryptable. Rotation is
    rare and operator-triggered, so this is accepted.
"""
import os
import time
import base64
import secrets
import tempfile
import threading
import logging
from pathlib import Path
from typing import Any, Optional, Union

import orjson
from pydantic import BaseModel, Field, field_validator

from .config import KEY_LENGTH, load_master_key

logger = logging.getLogger("navigator.secure_fields")


# ---------------------------------------------------------------------------
# Config stores
# ---------------------------------------------------------------------------

class ConfigStore:
    """Durable key-value configuration store.

    Values are strings or bytes; names are opaque option names.
    """

    def get(self, name: str, default: Any = None) -> Any:
        raise NotImplementedError

    def set(self, name: str, value: Any) -> None:
        raise NotImplementedError

    def delete(self, name: str) -> None:
        raise NotImplementedError

    def __contains__(self, name: str) -> bool:
        return self.get(name) is not None


class MemoryConfigStore(ConfigStore):
    """Process-local store, for tests and ephemeral hosts."""

    def __init__(self, initial: Optional[dict] = None):
        self._data: dict[str, Any] = dict(initial or {})

    def get(self, name: str, default: Any = None) -> Any:
        return self._data.get(name, default)

    def set(self, name: str, value: Any) -> None:
        self._data[name] = value

    def delete(self, name: str) -> None:
        self._data.pop(name, None)


class FileConfigStore(ConfigStore):
    """JSON-file backed store.

    The whole file is rewritten on each ``set`` through a temporary file and
    ``os.replace``, so readers never observe a half-written file. Bytes
    values are stored base64-encoded.
    """

    _BYTES_MARKER = "__b64__"

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read(self) -> dict:
        try:
            raw = self.path.read_bytes()
        except FileNotFoundError:
            return {}
        if not raw:
            return {}
        return orjson.loads(raw)

    def _write(self, data: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".cfg-")
        try:
            with os.fdopen(fd, "wb") as fp:
                fp.write(orjson.dumps(data))
            os.chmod(tmp, 0o600)
            os.replace(tmp, self.path)
        except BaseException:
            try:
                os.unlink(tmp)
            except FileNotFoundError:
                pass
            raise

    def get(self, name: str, default: Any = None) -> Any:
        value = self._read().get(name, default)
        if isinstance(value, dict) and self._BYTES_MARKER in value:
            return base64.b64decode(value[self._BYTES_MARKER])
        return value

    def set(self, name: str, value: Any) -> None:
        if isinstance(value, bytes):
            value = {self._BYTES_MARKER: base64.b64encode(value).decode("ascii")}
        with self._lock:
            data = self._read()
            data[name] = value
            self._write(data)

    def delete(self, name: str) -> None:
        with self._lock:
            data = self._read()
            if data.pop(name, None) is not None:
                self._write(data)


# ---------------------------------------------------------------------------
# Master key
# ---------------------------------------------------------------------------

class MasterKey(BaseModel):
    """The active master key and its rotation metadata."""

    key_material: bytes
    generation: int = Field(ge=1)
    created_at: float

    model_config = {"frozen": True}

    @field_validator("key_material")
    @classmethod
    def validate_length(cls, v: bytes) -> bytes:
        if len(v) != KEY_LENGTH:
            raise ValueError(
                f"master key must be exactly {KEY_LENGTH} bytes, got {len(v)}"
            )
        return v

    @property
    def age(self) -> float:
        """Seconds since this generation was created."""
        return max(0.0, time.time() - self.created_at)

    def __repr__(self) -> str:
        # never expose key material
        return f"MasterKey(generation={self.generation}, created_at={self.created_at})"

    __str__ = __repr__

    def dumps(self) -> bytes:
        return orjson.dumps({
            "key": base64.b64encode(self.key_material).decode("ascii"),
            "generation": self.generation,
            "created_at": self.created_at,
        })

    @classmethod
    def loads(cls, data: Union[str, bytes]) -> "MasterKey":
        record = orjson.loads(data)
        return cls(
            key_material=base64.b64decode(record["key"]),
            generation=record["generation"],
            created_at=record["created_at"],
        )


class KeyStore:
    """Reads and replaces the single active MasterKey in a ConfigStore."""

    def __init__(
        self,
        store: ConfigStore,
        option: str = "navigator_secure_fields_master_key",
        seed: Optional[bytes] = None
    ):
        self._store = store
        self._option = option
        self._seed = seed

    @classmethod
    def from_config(cls, store: ConfigStore, config) -> "KeyStore":
        return cls(store, option=config.master_key_option, seed=load_master_key())

    @property
    def option(self) -> str:
        return self._option

    def load(self) -> Optional[MasterKey]:
        """Return the stored key, or None when no key exists yet."""
        raw = self._store.get(self._option)
        if not raw:
            return None
        return MasterKey.loads(raw)

    def save(self, key: MasterKey) -> None:
        """Overwrite the stored key wholesale."""
        self._store.set(self._option, key.dumps().decode("utf-8"))

    def exists(self) -> bool:
        return self._store.get(self._option) is not None

    def get_or_create_master_key(self) -> MasterKey:
        """Return the active key, creating generation 1 on first use."""
        key = self.load()
        if key is not None:
            return key
        material = self._seed if self._seed else secrets.token_bytes(KEY_LENGTH)
        key = MasterKey(
            key_material=material,
            generation=1,
            created_at=time.time(),
        )
        self.save(key)
        logger.info("Master encryption key generated (generation=%d)", key.generation)
        return key
