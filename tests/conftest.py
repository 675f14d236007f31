"""shared fixtures: fake timers, clock and login surface."""
from datetime import datetime, timedelta, timezone

import pytest

from sessionkeeper.capture import LoginSurface
from sessionkeeper.credentials_file import CredentialsFile
from sessionkeeper.federation import TemporaryCredentials
from sessionkeeper.profiles import Profile, ProfileStore, RenewalSettings, SettingsStore

T0 = datetime(2026, 10, 17, 9, 0, tzinfo=timezone.utc)


class Clock:
    def __init__(self, start=T0):
        self.current = start

    def __call__(self):
        return self.current

    def advance(self, **kw):
        self.current += timedelta(**kw)


class FakeTimer:
    def __init__(self, owner, delay, fn):
        self.owner = owner
        self.delay = delay
        self.fn = fn
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeTimers:
    """records timers instead of starting threads; fire them by hand."""

    def __init__(self):
        self.started = []

    def __call__(self, delay, fn):
        t = FakeTimer(self, delay, fn)
        self.started.append(t)
        return t

    @property
    def pending(self):
        return [t for t in self.started if not t.cancelled and not getattr(t, "fired", False)]

    def fire_next(self):
        t = self.pending[0]
        t.fired = True
        t.fn()
        return t


class ScriptedSurface(LoginSurface):
    """replays a list of ``step(listener)`` callables, one per wait."""

    def __init__(self, steps=(), clock=None):
        self.steps = list(steps)
        self.clock = clock
        self.opened_url = None
        self.listener = None
        self.closed = 0
        self.silent = None

    def open(self, url, listener):
        self.opened_url = url
        self.listener = listener

    def wait_for_events(self, timeout):
        if self.steps:
            self.steps.pop(0)(self.listener)
        elif self.clock is not None:
            self.clock.t += timeout

    def close(self):
        self.closed += 1


class Monotonic:
    def __init__(self):
        self.t = 0.0

    def __call__(self):
        return self.t


def make_creds(akid="ASIAEXAMPLE1", secret="secret1", token="token1", expires=None):
    return TemporaryCredentials(akid, secret, token, expires or T0 + timedelta(hours=12))


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def timers():
    return FakeTimers()


@pytest.fixture
def creds_path(tmp_path):
    return tmp_path / ".aws" / "credentials"


@pytest.fixture
def creds_file(creds_path, clock):
    return CredentialsFile(creds_path, now=clock)


@pytest.fixture
def profile_store(tmp_path):
    return ProfileStore(tmp_path / "profiles.json")


@pytest.fixture
def settings_store(tmp_path):
    return SettingsStore(tmp_path / "settings.ini")


@pytest.fixture
def prod_profile():
    return Profile(
        alias="prod",
        profile_name="prod-acct",
        role_arn="arn:aws:iam::123456789012:role/Admin",
        login_url="https://launcher.myapps.microsoft.com/api/signin/abc",
        idp_arn="arn:aws:iam::123456789012:saml-provider/EntraID",
    )


@pytest.fixture
def default_settings():
    return RenewalSettings()
