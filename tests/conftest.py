"""Shared fixtures for the secure fields test-suite."""
import pytest
from aiohttp import web

from navigator_secure_fields.disclosure import Scheduler
from navigator_secure_fields.fields import FieldDefinition, FieldRegistry, FieldVault
from navigator_secure_fields.handlers import RevealProtocol, setup_secure_fields
from navigator_secure_fields.policy import ContextAccessPolicy, SecurityContext
from navigator_secure_fields.session import attach_session
from navigator_secure_fields.vault import (
    Codec,
    KeyStore,
    MemoryConfigStore,
    SecureFieldsConfig,
)


class FakeTimer:
    def __init__(self, when: float, callback, args):
        self.when = when
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeScheduler(Scheduler):
    """Manually advanced clock for driving reveal deadlines."""

    def __init__(self):
        self.now = 0.0
        self.timers: list[FakeTimer] = []

    def time(self) -> float:
        return self.now

    def call_later(self, delay, callback, *args):
        timer = FakeTimer(self.now + delay, callback, args)
        self.timers.append(timer)
        return timer

    @property
    def active(self) -> list:
        return [t for t in self.timers if not t.cancelled]

    def advance(self, seconds: float) -> None:
        self.now += seconds
        due = sorted(
            (t for t in self.timers if not t.cancelled and t.when <= self.now),
            key=lambda t: t.when,
        )
        for timer in due:
            self.timers.remove(timer)
            timer.callback(*timer.args)


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def config():
    return SecureFieldsConfig()


@pytest.fixture
def store():
    return MemoryConfigStore()


@pytest.fixture
def keystore(store, config):
    return KeyStore(store, option=config.master_key_option)


@pytest.fixture
def codec(keystore):
    return Codec(keystore)


@pytest.fixture
def policy(codec):
    return ContextAccessPolicy(codec)


@pytest.fixture
def registry():
    return FieldRegistry(
        FieldDefinition(id="mailchimp_api_key", security_context=SecurityContext.API_KEY),
        FieldDefinition(id="smtp_password", security_context=SecurityContext.SENSITIVE),
        FieldDefinition(
            id="phone",
            security_context=SecurityContext.PERSONAL,
            owner_id="42",
            format_constraint=r"\+?[0-9 ]{7,15}",
        ),
        FieldDefinition(id="newsletter_tag", security_context=SecurityContext.PUBLIC),
        FieldDefinition(
            id="locked_token",
            security_context=SecurityContext.SENSITIVE,
            show_reveal=False,
            show_edit=False,
        ),
    )


@pytest.fixture
def vault(registry, store, codec, config):
    return FieldVault(registry, store, codec, max_value_length=config.max_value_length)


@pytest.fixture
def protocol(vault, policy, config):
    return RevealProtocol(vault, policy, reveal_timeout=config.reveal_timeout)


@pytest.fixture
def make_client(aiohttp_client, protocol):
    """Build a test client whose requests carry ``session``."""
    async def factory(session):
        @web.middleware
        async def attach(request, handler):
            if session is not None:
                attach_session(request, session)
            return await handler(request)

        app = web.Application(middlewares=[attach])
        setup_secure_fields(app, protocol)
        return await aiohttp_client(app)
    return factory
