# -*- coding: utf-8 -*-
"""
Per-profile renewal timers.

Each active profile owns at most one pending timer: either the next
renewal, lead_minutes before expiry, or a retry of a failed renewal.
``schedule`` always cancels what was pending for the alias first, so two
cycles for the same alias never overlap.
"""

from __future__ import annotations
import threading, logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from PyQt6.QtCore import QObject, pyqtSignal

from .config import now_utc
from .profiles import Profile, ProfileStore, RenewalSettings
from .retry import RetryPolicy, run_with_retry

log = logging.getLogger(__name__)


class RenewalEvents(QObject):
    renewed = pyqtSignal(str)          # alias
    renewal_failed = pyqtSignal(str)   # alias, retries exhausted


def start_timer(delay: float, fn: Callable[[], None]) -> threading.Timer:
    t = threading.Timer(delay, fn)
    t.daemon = True
    t.start()
    return t


def run_in_background(fn: Callable[[], None]) -> None:
    threading.Thread(target=fn, daemon=True).start()


class RenewalScheduler:
    def __init__(self, profiles: ProfileStore,
                 settings: Callable[[], RenewalSettings],
                 cycle: Callable[[Profile, bool], datetime],
                 events: Optional[RenewalEvents] = None,
                 policy: RetryPolicy = RetryPolicy(),
                 start_timer: Callable = start_timer,
                 now: Callable[[], datetime] = now_utc):
        self.profiles = profiles
        self.settings = settings
        self.cycle = cycle
        self.events = events or RenewalEvents()
        self.policy = policy
        self.start_timer = start_timer
        self.now = now
        self._timers: Dict[str, object] = {}
        self._attempts: Dict[str, int] = {}
        self._lock = threading.Lock()

    # ---- timers ----
    def _arm(self, alias: str, delay: float, fn: Callable[[], None]):
        box = {}

        def fire():
            with self._lock:
                if self._timers.get(alias) is not box.get("timer"):
                    return  # superseded
                self._timers.pop(alias, None)
            fn()

        with self._lock:
            box["timer"] = self._timers[alias] = self.start_timer(delay, fire)

    def pending(self, alias: str) -> bool:
        with self._lock:
            return alias in self._timers

    def attempt(self, alias: str) -> Optional[int]:
        with self._lock:
            return self._attempts.get(alias)

    def cancel(self, alias: str) -> None:
        with self._lock:
            timer = self._timers.pop(alias, None)
            self._attempts.pop(alias, None)
        if timer:
            timer.cancel()
            log.info("Auto-renewal cancelled for %s", alias)

    def clear_all(self) -> None:
        with self._lock:
            timers, self._timers = self._timers, {}
            self._attempts.clear()
        for alias, timer in timers.items():
            timer.cancel()
            log.info("Cleared renewal timer for %s", alias)

    # ---- scheduling ----
    def schedule(self, alias: str, expires_at: datetime,
                 run_now: Optional[Callable[[Callable[[], None]], None]] = None) -> None:
        """Arm the renewal timer; a past fire time renews at once, through ``run_now`` when given."""
        self.cancel(alias)
        settings = self.settings()
        if not settings.enabled:
            log.info("Auto-renewal disabled, no timer for %s", alias)
            return

        fire_at = expires_at - timedelta(minutes=settings.lead_minutes)
        delay = (fire_at - self.now()).total_seconds()
        if delay <= 0:
            log.info("Session for %s expires soon, renewing now", alias)
            if run_now is None:
                self.renew(alias)
            else:
                run_now(lambda: self.renew(alias))
            return

        self._arm(alias, delay, lambda: self.renew(alias))
        log.info("Auto-renewal for %s at %s (%d min before expiry)",
                 alias, fire_at.astimezone().strftime("%Y-%m-%d %H:%M:%S"), settings.lead_minutes)

    def reschedule_active(self, run_now: Optional[Callable[[Callable[[], None]], None]] = None) -> None:
        for p in self.profiles.active_profiles():
            if p.expires_at:
                self.schedule(p.alias, p.expires_at, run_now=run_now)

    # ---- renewal ----
    def renew(self, alias: str, attempt: int = 0) -> None:
        run_with_retry(
            lambda a: self._renew_once(alias, a),
            self.policy,
            defer=lambda delay, fn: self._arm(alias, delay, fn),
            on_give_up=lambda e: self._give_up(alias),
            attempt=attempt,
        )

    def _renew_once(self, alias: str, attempt: int) -> None:
        profile = self.profiles.get(alias)
        if profile is None or not profile.active:
            log.info("Profile %s is gone or inactive, skipping auto-renewal", alias)
            with self._lock:
                self._attempts.pop(alias, None)
            return

        with self._lock:
            self._attempts[alias] = attempt
        silent = self.settings().silent
        log.info("Auto-renewing %s (attempt %d/%d, silent=%s)",
                 alias, attempt + 1, self.policy.max_attempts, silent)

        expires_at = self.cycle(profile, silent)

        with self._lock:
            self._attempts.pop(alias, None)
        log.info("Auto-renewal OK for %s, next expiration %s", alias, expires_at.isoformat())
        self.schedule(alias, expires_at)
        self.events.renewed.emit(alias)

    def _give_up(self, alias: str) -> None:
        with self._lock:
            self._attempts.pop(alias, None)
        log.error("Auto-renewal for %s failed after %d attempts, renew it manually",
                  alias, self.policy.max_attempts)
        self.events.renewal_failed.emit(alias)
