# -*- coding: utf-8 -*-
"""
Entry points used by the window (or any other front end).

Every call returns an ``ActionResult`` with a message that can be shown to
the user directly; exceptions from the lower layers stop here.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from .capture import AssertionCapture
from .config import now_utc, session_duration
from .credentials_file import CredentialsFile
from .errors import DuplicateActiveProfile, ProfileNotFound, SessionError
from .federation import FederationExchange
from .profiles import Profile, ProfileStore, RenewalSettings, SettingsStore
from .scheduler import RenewalScheduler, RenewalEvents, run_in_background, start_timer
from .retry import RetryPolicy

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActionResult:
    success: bool
    message: str
    url: Optional[str] = None


def _local(ts: datetime) -> str:
    return ts.astimezone().strftime("%Y-%m-%d %H:%M:%S")


class SessionManager:
    def __init__(self, profiles: ProfileStore, settings: SettingsStore,
                 credentials: CredentialsFile, capture: AssertionCapture,
                 federation: FederationExchange,
                 events: Optional[RenewalEvents] = None,
                 policy: RetryPolicy = RetryPolicy(),
                 start_timer: Callable = start_timer,
                 now: Callable[[], datetime] = now_utc,
                 duration: Callable[[], int] = session_duration,
                 background: Callable[[Callable[[], None]], None] = run_in_background):
        self.profiles = profiles
        self.settings = settings
        self.credentials = credentials
        self.capture = capture
        self.federation = federation
        self.now = now
        self.duration = duration
        # renewals started from the window or at start-up must not block the caller
        self.background = background
        self.scheduler = RenewalScheduler(
            profiles, settings.load, self.run_cycle, events=events,
            policy=policy, start_timer=start_timer, now=now,
        )

    @property
    def events(self) -> RenewalEvents:
        return self.scheduler.events

    # ---- the cycle: capture -> exchange -> persist ----
    def run_cycle(self, profile: Profile, silent: bool = False) -> datetime:
        assertion = self.capture.capture(profile.login_url, silent=silent)
        creds = self.federation.exchange(profile.role_arn, profile.idp_arn, assertion, self.duration())
        self.credentials.upsert(profile.profile_name, creds)

        current = self.profiles.get(profile.alias)
        if current and current.active:
            self.profiles.mark_renewed(profile.alias, self.now(), creds.expires_at)
        else:
            # deactivated while we were signing in; leave its state cleared
            log.info("Profile %s was deactivated during renewal", profile.alias)
        return creds.expires_at

    def _duplicate_of(self, profile: Profile) -> Optional[Profile]:
        return next((p for p in self.profiles.active_profiles()
                     if p.alias != profile.alias and p.profile_name == profile.profile_name), None)

    # ---- collaborator interface ----
    def activate_profile(self, alias: str) -> ActionResult:
        log.info("Activating profile: %s", alias)
        try:
            profile = self.profiles.get(alias)
            if profile is None:
                raise ProfileNotFound(alias)
            dup = self._duplicate_of(profile)
            if dup:
                raise DuplicateActiveProfile(profile.profile_name, dup.alias)

            refresh = profile.active
            if (not refresh and profile.expires_at and profile.expires_at > self.now()
                    and self.credentials.has_session_token(profile.profile_name)):
                log.info("Valid session already exists for %s, skipping SAML sign-in", alias)
                self.profiles.set_active(alias)
                self.scheduler.schedule(alias, profile.expires_at)
                return ActionResult(True, f"Existing session activated (expires {_local(profile.expires_at)})")

            log.info("%s session for %s", "Refreshing" if refresh else "Starting new", alias)
            # a timer firing mid-login would start a second cycle for this alias
            self.scheduler.cancel(alias)
            try:
                assertion = self.capture.capture(profile.login_url, silent=False)
                creds = self.federation.exchange(profile.role_arn, profile.idp_arn, assertion, self.duration())
                self.credentials.upsert(profile.profile_name, creds)
            except Exception:
                if refresh and profile.expires_at:
                    self.scheduler.schedule(alias, profile.expires_at, run_now=self.background)
                raise
            self.profiles.mark_active(alias, self.now(), creds.expires_at)
            self.scheduler.schedule(alias, creds.expires_at)
        except SessionError as e:
            log.error("Activation of %s failed: %s", alias, e)
            return ActionResult(False, f"Session activation failed: {e}")
        except Exception as e:
            log.exception("Activation of %s failed", alias)
            return ActionResult(False, f"Session activation failed: {e}")

        verb = "refreshed" if refresh else "activated"
        return ActionResult(True, f"Session {verb} (expires {_local(creds.expires_at)})")

    def deactivate_profile(self, alias: str) -> ActionResult:
        log.info("Deactivating profile: %s", alias)
        try:
            profile = self.profiles.get(alias)
            if profile:
                self.credentials.remove(profile.profile_name)
        except SessionError as e:
            log.error("Deactivation of %s failed: %s", alias, e)
            return ActionResult(False, f"Sign-out failed: {e}")
        finally:
            self.scheduler.cancel(alias)
            self.profiles.clear_session(alias)
        return ActionResult(True, "Session signed out")

    def validate_sessions(self) -> ActionResult:
        """Drop profiles whose session is gone from the credentials file or expired."""
        dropped = []
        for p in self.profiles.active_profiles():
            if not self.credentials.has_session_token(p.profile_name):
                log.info("No session token for %s, removing from active", p.alias)
            elif p.expires_at and p.expires_at < self.now():
                log.info("Session expired for %s, removing from active", p.alias)
            else:
                continue
            self.scheduler.cancel(p.alias)
            self.profiles.clear_session(p.alias)
            dropped.append(p.alias)
        return ActionResult(True, f"Dropped {len(dropped)} stale session(s)" if dropped else "All sessions valid")

    def get_auto_refresh_settings(self) -> RenewalSettings:
        return self.settings.load()

    def set_auto_refresh_settings(self, settings: RenewalSettings) -> ActionResult:
        self.settings.save(settings)
        self.scheduler.reschedule_active(run_now=self.background)
        log.info("Auto-refresh settings updated: enabled=%s, lead=%d min, silent=%s",
                 settings.enabled, settings.lead_minutes, settings.silent)
        return ActionResult(True, "Auto-renewal settings saved")

    def open_console(self, alias: str) -> ActionResult:
        profile = self.profiles.get(alias)
        if profile is None:
            return ActionResult(False, f"Profile '{alias}' not found")
        try:
            url = self.federation.build_console_url(profile.profile_name, self.credentials)
        except SessionError as e:
            log.error("Console sign-in for %s failed: %s", alias, e)
            return ActionResult(False, f"Couldn't open console: {e}")
        return ActionResult(True, "AWS console sign-in URL ready", url=url)

    # ---- process lifecycle ----
    def check_foreign_credentials(self) -> ActionResult:
        try:
            result = self.credentials.backup_foreign_file_if_present()
        except SessionError as e:
            return ActionResult(False, str(e))
        if result.backed_up:
            return ActionResult(True, f"Found AWS credentials we did not create and backed them up to {result.path}")
        return ActionResult(True, "")

    def restore_timers(self) -> None:
        for p in self.profiles.active_profiles():
            if p.expires_at:
                log.info("Scheduling auto-renewal for active profile %s", p.alias)
                self.scheduler.schedule(p.alias, p.expires_at, run_now=self.background)

    def shutdown(self) -> None:
        self.scheduler.clear_all()

    # ---- profile CRUD for the front end ----
    def add_profile(self, profile: Profile) -> ActionResult:
        try:
            self.profiles.add(profile)
        except ValueError as e:
            return ActionResult(False, str(e))
        return ActionResult(True, f"Profile '{profile.alias}' added")

    def update_profile(self, profile: Profile) -> ActionResult:
        try:
            self.profiles.update(profile)
        except ProfileNotFound as e:
            return ActionResult(False, str(e))
        return ActionResult(True, f"Profile '{profile.alias}' updated")

    def delete_profile(self, alias: str) -> ActionResult:
        self.scheduler.cancel(alias)
        self.profiles.delete(alias)
        return ActionResult(True, f"Profile '{alias}' deleted")
