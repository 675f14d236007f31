# -*- coding: utf-8 -*-
"""
SAML assertion capture.

A capture opens one login surface at the profile's sign-in URL and waits for
the identity provider to hand the browser a SAMLResponse on its way to
``https://signin.aws.amazon.com/saml``. Two paths can see it:

1. the outgoing POST to the AWS SAML endpoint (intercepted and dropped), or
2. the hidden ``SAMLResponse`` input of a freshly loaded page.

The first one to report wins and the surface is torn down right away. When a
surface delivers both on the same page load, the intercepted request is
handed over first.

``AssertionCapture`` only talks to the ``LoginSurface`` interface, so any
backend (selenium-wire Edge, a scripted fake in tests) can drive it.
"""

from __future__ import annotations
import re, time, threading, logging
from abc import ABC, abstractmethod
from concurrent.futures import Future
from enum import Enum
from typing import Callable, NamedTuple, Optional
from urllib.parse import parse_qs

from .config import CAPTURE_TIMEOUT
from .errors import CaptureCancelled, CaptureRedirected, CaptureTimeout

log = logging.getLogger(__name__)

SAML_ENDPOINT = re.compile(r"^https://signin\.aws\.amazon\.com/saml")
SAML_HOST = "signin.aws.amazon.com"
CONSOLE_HOST = "console.aws.amazon.com"
ASSERTION_FIELD = "SAMLResponse"
POLL_INTERVAL = 0.15


class CaptureState(Enum):
    IDLE = "idle"
    AWAITING_LOGIN = "awaiting-login"
    CAPTURED = "captured"
    REDIRECTED = "redirected"
    TIMED_OUT = "timed-out"
    USER_CANCELLED = "user-cancelled"


class Outcome(NamedTuple):
    state: CaptureState
    assertion: Optional[str] = None
    url: str = ""


class LoginSurface(ABC):
    """An interactive page the user signs in through."""

    @abstractmethod
    def open(self, url: str, listener: "CaptureSession") -> None:
        """Start listening and navigate to ``url``."""

    @abstractmethod
    def wait_for_events(self, timeout: float) -> None:
        """Deliver pending events to the listener, blocking at most ``timeout`` seconds."""

    @abstractmethod
    def close(self) -> None:
        ...


def assertion_from_body(body) -> Optional[str]:
    if isinstance(body, bytes):
        body = body.decode("utf-8", "ignore")
    if not body or f"{ASSERTION_FIELD}=" not in body:
        return None
    return (parse_qs(body).get(ASSERTION_FIELD) or [None])[0]


class CaptureSession:
    """Listener for one capture; resolves exactly once."""

    def __init__(self):
        self.future: Future = Future()
        self._lock = threading.Lock()

    @property
    def done(self) -> bool:
        return self.future.done()

    def resolve(self, outcome: Outcome) -> bool:
        with self._lock:
            if self.future.done():
                return False
            self.future.set_result(outcome)
        log.info("Capture finished: %s", outcome.state.value)
        return True

    # ---- surface events ----
    def on_request(self, url: str, method: str, body) -> bool:
        """Return True when the request carried the assertion and must not be sent."""
        if method != "POST" or not SAML_ENDPOINT.match(url or ""):
            return False
        value = assertion_from_body(body)
        if not value:
            return False
        self.resolve(Outcome(CaptureState.CAPTURED, value, url))
        return True

    def on_page_loaded(self, url: str, read_field: Callable[[str], Optional[str]]) -> None:
        if self.done or SAML_HOST not in (url or ""):
            return
        try:
            value = read_field(ASSERTION_FIELD)
        except Exception as e:
            log.debug("Couldn't read %s from %s: %s", ASSERTION_FIELD, url, e)
            return
        if value:
            self.resolve(Outcome(CaptureState.CAPTURED, value, url))

    def on_navigated(self, url: str) -> None:
        if CONSOLE_HOST in (url or ""):
            self.resolve(Outcome(CaptureState.REDIRECTED, None, url))

    def on_closed(self) -> None:
        self.resolve(Outcome(CaptureState.USER_CANCELLED))


class AssertionCapture:
    # all surfaces share one browser profile directory, so one sign-in page at a time
    _surface_lock = threading.Lock()

    def __init__(self, surface_factory: Callable[[bool], LoginSurface],
                 timeout: float = CAPTURE_TIMEOUT,
                 clock: Callable[[], float] = time.monotonic):
        self.surface_factory = surface_factory
        self.timeout = timeout
        self.clock = clock
        self.state = CaptureState.IDLE

    def run(self, login_url: str, silent: bool = False) -> Outcome:
        """Drive one surface to a terminal state; the surface is closed exactly once.

        A capture that starts while another one is in progress waits for it to
        finish; its own timeout counts from when its surface opens.
        """
        with self._surface_lock:
            return self._run(login_url, silent)

    def _run(self, login_url: str, silent: bool) -> Outcome:
        session = CaptureSession()
        surface = self.surface_factory(silent)
        deadline = self.clock() + self.timeout
        self.state = CaptureState.AWAITING_LOGIN
        log.info("Opening sign-in page%s: %s", " (silent)" if silent else "", login_url)
        try:
            surface.open(login_url, session)
            while not session.done:
                remaining = deadline - self.clock()
                if remaining <= 0:
                    session.resolve(Outcome(CaptureState.TIMED_OUT))
                    break
                surface.wait_for_events(min(remaining, POLL_INTERVAL))
        finally:
            try:
                surface.close()
            except Exception as e:
                log.warning("Closing sign-in window failed: %s", e)
        outcome = session.future.result()
        self.state = outcome.state
        return outcome

    def capture(self, login_url: str, silent: bool = False) -> str:
        outcome = self.run(login_url, silent)
        if outcome.state is CaptureState.CAPTURED:
            log.info("Captured SAMLResponse (%d chars).", len(outcome.assertion))
            return outcome.assertion
        if outcome.state is CaptureState.REDIRECTED:
            raise CaptureRedirected(outcome.url)
        if outcome.state is CaptureState.USER_CANCELLED:
            raise CaptureCancelled()
        raise CaptureTimeout(int(self.timeout))
