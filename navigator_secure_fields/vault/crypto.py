"""
Vault Crypto Core — AEAD envelope sealing for stored field values.

Envelope format (base64 of):
    [iv 12B][auth_tag 16B][ciphertext]

The iv is random per call, so sealing the same plaintext twice never yields
the same envelope. Opening verifies the tag before any plaintext is returned.

Security Note:
    Never log plaintext or ciphertext values.
    Nonces are random 96-bit; collision probability negligible under normal usage.
"""
import os
import re
import base64
import binascii
import logging
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305

from ..exceptions import DecryptionError, EncryptionError
from .keystore import KeyStore

logger = logging.getLogger("navigator.secure_fields")

IV_SIZE = 12  # 96-bit nonce
TAG_SIZE = 16  # 128-bit tag
MIN_ENVELOPE_SIZE = IV_SIZE + TAG_SIZE

# structural limits of a stored envelope, in characters
MIN_ENCODED_LENGTH = 20
MAX_ENCODED_LENGTH = 10000
# largest plaintext, in UTF-8 bytes, whose envelope stays within MAX_ENCODED_LENGTH
MAX_PLAINTEXT_SIZE = MAX_ENCODED_LENGTH // 4 * 3 - MIN_ENVELOPE_SIZE
# share of printable bytes above which decoded data is treated as plain text
PRINTABLE_THRESHOLD = 0.8
_PRINTABLE_SAMPLE = 100

_BASE64_RE = re.compile(r"^[A-Za-z0-9+/\r\n]*={0,2}$")
# base64 alphabet with "=" allowed only in the final quantum
_ENVELOPE_SHAPE_RE = re.compile(r"^[A-Za-z0-9+/]*[A-Za-z0-9+/=]{4}$")
_PRINTABLE = frozenset(range(0x20, 0x7F))

_CIPHERS = {
    "aesgcm": AESGCM,
    "chacha20": ChaCha20Poly1305,
}


def get_cipher_cls(backend: str = "aesgcm") -> type:
    """Return the AEAD cipher class for a backend name."""
    try:
        return _CIPHERS[backend.lower()]
    except KeyError:
        raise ValueError(f"Unsupported cipher backend: {backend}") from None


def _mostly_printable(data: bytes) -> bool:
    sample = data[:_PRINTABLE_SAMPLE]
    printable = sum(1 for byte in sample if byte in _PRINTABLE)
    return printable / len(sample) >= PRINTABLE_THRESHOLD


def _compact(value: str) -> str:
    return value.replace("\r", "").replace("\n", "")


def _decode(value: str) -> Optional[bytes]:
    """Strict base64 decode of a candidate envelope; None if not structural."""
    if not MIN_ENCODED_LENGTH <= len(value) <= MAX_ENCODED_LENGTH:
        return None
    if not _BASE64_RE.match(value):
        return None
    try:
        decoded = base64.b64decode(_compact(value), validate=True)
    except (binascii.Error, ValueError):
        return None
    if len(decoded) < MIN_ENVELOPE_SIZE or _mostly_printable(decoded):
        return None
    return decoded


def is_damaged_envelope(value: str) -> bool:
    """True for an envelope whose final base64 quantum no longer decodes.

    Everything before the last four characters still decodes to binary
    data of envelope size; only the padding region is broken, as happens
    when the trailing characters of a padded envelope are altered.
    """
    if not value or not isinstance(value, str):
        return False
    compact = _compact(value)
    if not MIN_ENCODED_LENGTH <= len(compact) <= MAX_ENCODED_LENGTH or len(compact) % 4:
        return False
    if not _ENVELOPE_SHAPE_RE.match(compact):
        return False
    if _decode(value) is not None:
        return False
    try:
        base64.b64decode(compact, validate=True)
    except (binascii.Error, ValueError):
        head = base64.b64decode(compact[:-4], validate=True)
        return len(head) >= MIN_ENVELOPE_SIZE - 3 and not _mostly_printable(head)
    return False


def is_encrypted_value(value: str) -> bool:
    """Structural check only: does ``value`` look like an envelope?

    No decryption is attempted. Used to avoid double-encrypting a value
    that is saved back unedited.
    """
    if not value or not isinstance(value, str):
        return False
    return _decode(value) is not None


class Codec:
    """Seals and opens field values with the key store's active master key.

    The key is fetched on every call so a rotation takes effect immediately.
    """

    def __init__(self, keystore: KeyStore, cipher_backend: str = "aesgcm"):
        self._keystore = keystore
        self._cipher_cls = get_cipher_cls(cipher_backend)

    @classmethod
    def from_config(cls, keystore: KeyStore, config) -> "Codec":
        return cls(keystore, cipher_backend=config.cipher_backend)

    @property
    def keystore(self) -> KeyStore:
        return self._keystore

    def encrypt(self, plaintext: str) -> str:
        """Seal ``plaintext`` into a base64 envelope.

        An empty string is returned unchanged.

        Raises:
            EncryptionError: If the AEAD primitive fails or the envelope
                would exceed MAX_ENCODED_LENGTH.
        """
        if not plaintext:
            return ""
        data = plaintext.encode("utf-8")
        if len(data) > MAX_PLAINTEXT_SIZE:
            raise EncryptionError(
                f"Value is too large to encrypt (maximum {MAX_PLAINTEXT_SIZE} bytes)"
            )
        key = self._keystore.get_or_create_master_key()
        iv = os.urandom(IV_SIZE)
        try:
            sealed = self._cipher_cls(key.key_material).encrypt(iv, data, None)
        except Exception as err:
            logger.error("Encryption failed (generation=%d)", key.generation)
            raise EncryptionError("Encryption failed") from err
        # cryptography appends the tag; the envelope stores it up front
        ciphertext, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
        return base64.b64encode(iv + tag + ciphertext).decode("ascii")

    def decrypt(self, value: str) -> str:
        """Open an envelope produced by :meth:`encrypt`.

        Empty input returns empty. A value that is not structurally an
        envelope is returned unchanged (legacy plain text). An envelope whose
        trailing characters were altered is a failed envelope, not plain text.

        Raises:
            DecryptionError: On tampering, a rotated-out key or corruption.
        """
        if not value:
            return ""
        decoded = _decode(value) if isinstance(value, str) else None
        if decoded is None:
            if is_damaged_envelope(value):
                logger.warning("Decryption failed: malformed envelope encoding")
                raise DecryptionError()
            return value
        iv = decoded[:IV_SIZE]
        tag = decoded[IV_SIZE:MIN_ENVELOPE_SIZE]
        ciphertext = decoded[MIN_ENVELOPE_SIZE:]
        key = self._keystore.get_or_create_master_key()
        try:
            plaintext = self._cipher_cls(key.key_material).decrypt(
                iv, ciphertext + tag, None
            )
            return plaintext.decode("utf-8")
        except (InvalidTag, UnicodeDecodeError, ValueError) as err:
            logger.warning(
                "Decryption failed under key generation %d", key.generation
            )
            raise DecryptionError() from err
