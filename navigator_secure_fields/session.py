import hmac
import uuid
import secrets
from typing import Optional, Any
from datetime import datetime, timezone
from collections.abc import Iterator, Mapping, MutableMapping
from aiohttp import web
from .conf import (
    SESSION_KEY,
    SESSION_ID,
    SESSION_OBJECT
)
from .exceptions import InvalidToken
from .policy import Identity


class FieldSession(MutableMapping[str, Any]):
    """Session dict-like object for the secure fields boundary.

    Carries the caller identity and a session-bound anti-forgery token.
    Revealed plaintext is never stored here.
    """

    # Internal attributes that should not be stored in _data
    _internal_attrs = frozenset({
        '_data', '_id_', '_identity', '_token', '_max_age', '_created',
        '__created__',
    })

    def __init__(
        self,
        data: Optional[Mapping[str, Any]] = None,
        id: Optional[str] = None,
        identity: Optional[Identity] = None,
        max_age: Optional[int] = None,
        token: Optional[str] = None
    ) -> None:
        object.__setattr__(self, '_data', {})
        # Unique ID:
        self._id_ = (data.get(SESSION_ID, None) if data else id) or uuid.uuid4().hex
        if identity is None and data and data.get(SESSION_KEY) is not None:
            identity = Identity(user_id=str(data[SESSION_KEY]))
        self._identity = identity
        self._max_age = max_age or None
        self.__created__ = datetime.now(timezone.utc)
        created = data.get('created', None) if data else None
        self._created = created or int(self.__created__.timestamp())
        self._token = token or secrets.token_urlsafe(32)
        if data is not None:
            self._data.update(data)

    def __repr__(self) -> str:
        return (
            f'<FieldSession [id:{self._id_}, created:{self.created}] '
            f'keys={list(self._data.keys())}>'
        )

    # --- Properties ---

    @property
    def session_id(self) -> str:
        return self._id_

    @property
    def identity(self) -> Optional[Identity]:
        return self._identity

    @identity.setter
    def identity(self, value: Optional[Identity]) -> None:
        self._identity = value

    @property
    def created(self) -> int:
        return self._created

    @property
    def max_age(self) -> Optional[int]:
        return self._max_age

    @property
    def expired(self) -> bool:
        if self._max_age is None:
            return False
        now = int(datetime.now(timezone.utc).timestamp())
        return now - self._created > self._max_age

    @property
    def csrf_token(self) -> str:
        """Anti-forgery token bound to this session."""
        return self._token

    def rotate_token(self) -> str:
        self._token = secrets.token_urlsafe(32)
        return self._token

    def verify_token(self, token: Optional[str]) -> None:
        """Validate a submitted anti-forgery token.

        Raises:
            InvalidToken: If the token is missing, mismatched, or the session expired.
        """
        if self.expired:
            raise InvalidToken("Session expired")
        if not token or not isinstance(token, str):
            raise InvalidToken("Security token missing")
        if not hmac.compare_digest(token.encode('utf-8'), self._token.encode('utf-8')):
            raise InvalidToken("Security validation failed")

    def invalidate(self) -> None:
        """Clear session data and drop the identity and token."""
        self._data = {}
        self._identity = None
        self._token = secrets.token_urlsafe(32)

    # --- Magic Methods ---

    def __len__(self) -> int:
        return len(self._data)

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self._data[key] = value

    def __delitem__(self, key: str) -> None:
        del self._data[key]

    def __getattr__(self, key: str) -> Any:
        # Avoid infinite recursion for internal attributes
        if key.startswith('_'):
            raise AttributeError(key)
        try:
            return self._data[key]
        except KeyError:
            raise AttributeError(key) from None

    def __setattr__(self, key: str, value: Any) -> None:
        if key in self._internal_attrs or key.startswith('_'):
            object.__setattr__(self, key, value)
        elif isinstance(getattr(type(self), key, None), property):
            object.__setattr__(self, key, value)
        else:
            self._data[key] = value


def get_session(request: web.Request) -> Optional[FieldSession]:
    """Return the FieldSession the host attached to ``request``."""
    return request.get(SESSION_OBJECT)


def attach_session(request: web.Request, session: FieldSession) -> None:
    request[SESSION_OBJECT] = session
