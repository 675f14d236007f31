"""tests for the session manager (activation, sign-out, validation, settings)."""
import json
from datetime import timedelta

import pytest

from sessionkeeper.errors import CaptureCancelled, ConsoleUrlError, ExchangeError, PersistError
from sessionkeeper.manager import SessionManager
from sessionkeeper.profiles import RenewalSettings

from conftest import make_creds


class FakeCapture:
    def __init__(self, errors=()):
        self.errors = list(errors)
        self.calls = []
        self.on_call = None

    def capture(self, login_url, silent=False):
        self.calls.append((login_url, silent))
        if self.on_call:
            self.on_call()
        if self.errors:
            raise self.errors.pop(0)
        return "ASSERTION"


class FakeFederation:
    def __init__(self, clock, errors=()):
        self.clock = clock
        self.errors = list(errors)
        self.calls = []
        self.n = 0

    def exchange(self, role_arn, principal_arn, assertion, duration_seconds=43200):
        self.calls.append((role_arn, principal_arn, assertion, duration_seconds))
        if self.errors:
            raise self.errors.pop(0)
        self.n += 1
        return make_creds(akid=f"ASIA{self.n}", expires=self.clock() + timedelta(seconds=duration_seconds))

    def build_console_url(self, section, credentials):
        if not credentials.read(section):
            raise ConsoleUrlError("no credentials")
        return f"https://signin.aws.amazon.com/federation?Action=login&SigninToken=T-{section}"


@pytest.fixture
def capture():
    return FakeCapture()


@pytest.fixture
def federation(clock):
    return FakeFederation(clock)


@pytest.fixture
def manager(profile_store, settings_store, creds_file, capture, federation, timers, clock, prod_profile):
    profile_store.add(prod_profile)
    deferred = []
    m = SessionManager(profile_store, settings_store, creds_file, capture, federation,
                       start_timer=timers, now=clock, duration=lambda: 43200,
                       background=deferred.append)
    m.deferred = deferred
    m.renewed, m.failed = [], []
    m.events.renewed.connect(m.renewed.append)
    m.events.renewal_failed.connect(m.failed.append)
    return m


class TestActivate:
    def test_activate_runs_full_cycle(self, manager, capture, federation, creds_file, profile_store, timers, clock):
        res = manager.activate_profile("prod")

        assert res.success, res.message
        assert "activated" in res.message
        assert capture.calls == [("https://launcher.myapps.microsoft.com/api/signin/abc", False)]
        assert federation.calls[0][:3] == ("arn:aws:iam::123456789012:role/Admin",
                                          "arn:aws:iam::123456789012:saml-provider/EntraID", "ASSERTION")
        assert creds_file.read("prod-acct").access_key_id == "ASIA1"
        p = profile_store.get("prod")
        assert p.active and p.last_renewed_at == clock() and p.expires_at == clock() + timedelta(hours=12)
        assert timers.pending[0].delay == pytest.approx((timedelta(hours=12) - timedelta(minutes=13)).total_seconds())

    def test_unknown_profile(self, manager):
        res = manager.activate_profile("ghost")
        assert not res.success and "ghost" in res.message

    def test_duplicate_profile_name_rejected(self, manager, profile_store, prod_profile, creds_path, timers, capture):
        profile_store.add(prod_profile.model_copy(update=dict(alias="prod-admin")))
        assert manager.activate_profile("prod").success
        before = creds_path.read_text()
        timers_before = list(timers.pending)

        res = manager.activate_profile("prod-admin")

        assert not res.success
        assert 'already active (prod)' in res.message
        assert creds_path.read_text() == before
        assert timers.pending == timers_before
        assert len(capture.calls) == 1
        assert not profile_store.get("prod-admin").active

    def test_valid_session_skips_capture(self, manager, profile_store, capture, clock, creds_file, timers):
        creds_file.upsert("prod-acct", make_creds())
        profile_store.mark_renewed("prod", clock(), clock() + timedelta(hours=2))

        res = manager.activate_profile("prod")

        assert res.success and "Existing session" in res.message
        assert capture.calls == []
        assert profile_store.get("prod").active
        assert len(timers.pending) == 1

    def test_refresh_of_active_profile_signs_in_again(self, manager, capture):
        manager.activate_profile("prod")
        res = manager.activate_profile("prod")
        assert res.success and "refreshed" in res.message
        assert len(capture.calls) == 2

    def test_capture_failure_reported_once(self, manager, capture, profile_store, timers, creds_path):
        capture.errors = [CaptureCancelled()]
        res = manager.activate_profile("prod")

        assert not res.success
        assert "closed" in res.message
        assert len(capture.calls) == 1
        assert not profile_store.get("prod").active
        assert timers.pending == []
        assert not creds_path.exists()

    def test_exchange_failure(self, manager, federation, profile_store):
        federation.errors = [ExchangeError("STS said no")]
        res = manager.activate_profile("prod")
        assert not res.success and "STS said no" in res.message
        assert not profile_store.get("prod").active

    def test_refresh_cancels_pending_timer_while_signing_in(self, manager, capture, timers):
        manager.activate_profile("prod")
        first = timers.pending[0]
        seen = []
        capture.on_call = lambda: seen.append(manager.scheduler.pending("prod"))

        assert manager.activate_profile("prod").success

        assert seen == [False]
        assert first.cancelled
        assert timers.pending != [first] and len(timers.pending) == 1

    def test_failed_refresh_rearms_old_timer(self, manager, capture, timers, profile_store, clock):
        manager.activate_profile("prod")
        capture.errors = [CaptureCancelled()]

        res = manager.activate_profile("prod")

        assert not res.success
        assert profile_store.get("prod").active
        assert manager.scheduler.pending("prod")
        assert timers.pending[0].delay == pytest.approx((timedelta(hours=12) - timedelta(minutes=13)).total_seconds())


class TestDeactivate:
    def test_deactivate_clears_everything(self, manager, profile_store, creds_file, timers):
        creds_file.upsert("keep", make_creds())
        manager.activate_profile("prod")

        res = manager.deactivate_profile("prod")

        assert res.success
        p = profile_store.get("prod")
        assert (p.active, p.last_renewed_at, p.expires_at) == (False, None, None)
        assert not creds_file.has_section("prod-acct")
        assert creds_file.has_section("keep")
        assert timers.pending == []

    def test_renewal_after_deactivate_is_noop(self, manager, capture, timers):
        manager.activate_profile("prod")
        manager.deactivate_profile("prod")
        manager.scheduler.renew("prod")
        assert len(capture.calls) == 1

    def test_failed_remove_still_clears_session(self, manager, profile_store, creds_file, timers, monkeypatch):
        manager.activate_profile("prod")

        def broken(section):
            raise PersistError("disk full")
        monkeypatch.setattr(creds_file, "remove", broken)

        res = manager.deactivate_profile("prod")

        assert not res.success and "disk full" in res.message
        p = profile_store.get("prod")
        assert (p.active, p.last_renewed_at, p.expires_at) == (False, None, None)
        assert timers.pending == []


class TestValidate:
    def test_drops_missing_and_expired(self, manager, profile_store, prod_profile, creds_file, clock):
        profile_store.add(prod_profile.model_copy(update=dict(alias="gone", profile_name="gone-acct")))
        profile_store.add(prod_profile.model_copy(update=dict(alias="old", profile_name="old-acct")))
        manager.activate_profile("prod")
        profile_store.mark_active("gone", clock(), clock() + timedelta(hours=1))
        creds_file.upsert("old-acct", make_creds())
        profile_store.mark_active("old", clock(), clock() - timedelta(minutes=1))

        res = manager.validate_sessions()

        assert res.success
        assert [p.alias for p in profile_store.active_profiles()] == ["prod"]
        assert profile_store.get("gone").expires_at is None

    def test_long_lived_keys_are_not_a_session(self, manager, profile_store, creds_path, clock):
        creds_path.parent.mkdir(parents=True)
        creds_path.write_text("[prod-acct]\naws_access_key_id = AKIA\naws_secret_access_key = s\n")
        profile_store.mark_active("prod", clock(), clock() + timedelta(hours=1))

        manager.validate_sessions()

        assert not profile_store.get("prod").active

    def test_naive_expiry_in_hand_edited_file(self, manager, profile_store, creds_file):
        creds_file.upsert("prod-acct", make_creds())
        doc = json.loads(profile_store.path.read_text())
        doc["profiles"][0].update(active=True, last_renewed_at="2026-10-16T20:00:00",
                                  expires_at="2026-10-17T08:00:00")
        profile_store.path.write_text(json.dumps(doc))

        res = manager.validate_sessions()

        assert res.success and "Dropped 1" in res.message
        assert not profile_store.get("prod").active


class TestRenewalCycle:
    def test_timer_fire_renews_silently(self, manager, capture, profile_store, timers, clock, creds_file):
        manager.activate_profile("prod")
        clock.advance(hours=12, minutes=-13)

        timers.fire_next()

        assert capture.calls[-1][1] is True
        assert manager.renewed == ["prod"]
        assert creds_file.read("prod-acct").access_key_id == "ASIA2"
        assert profile_store.get("prod").expires_at == clock() + timedelta(hours=12)

    def test_renewal_gives_up_after_three_failures(self, manager, capture, timers, profile_store):
        manager.activate_profile("prod")
        capture.errors = [CaptureCancelled()] * 3

        timers.fire_next()
        while timers.pending:
            timers.fire_next()

        assert manager.failed == ["prod"]
        assert manager.renewed == []
        assert profile_store.get("prod").active

    def test_deactivated_mid_flight_keeps_state_cleared(self, manager, profile_store, capture, creds_file):
        manager.activate_profile("prod")
        profile = profile_store.get("prod")
        manager.deactivate_profile("prod")

        manager.run_cycle(profile, silent=True)

        p = profile_store.get("prod")
        assert (p.active, p.last_renewed_at, p.expires_at) == (False, None, None)
        assert creds_file.has_section("prod-acct")


class TestSettings:
    def test_set_settings_reschedules(self, manager, timers):
        manager.activate_profile("prod")
        assert len(timers.pending) == 1

        manager.set_auto_refresh_settings(RenewalSettings(enabled=False, lead_minutes=13, silent=True))

        assert timers.pending == []
        assert manager.get_auto_refresh_settings().enabled is False

        manager.set_auto_refresh_settings(RenewalSettings(enabled=True, lead_minutes=60, silent=False))
        assert timers.pending[0].delay == pytest.approx(11 * 3600)

    def test_imminent_renewal_leaves_caller_thread(self, manager, capture, timers, clock):
        manager.activate_profile("prod")
        clock.advance(hours=11)

        res = manager.set_auto_refresh_settings(RenewalSettings(enabled=True, lead_minutes=90, silent=True))

        assert res.success
        assert len(capture.calls) == 1
        assert len(manager.deferred) == 1
        manager.deferred.pop()()
        assert capture.calls[-1][1] is True
        assert manager.renewed == ["prod"]

    def test_disable_takes_effect_before_returning(self, manager, timers):
        manager.activate_profile("prod")
        manager.set_auto_refresh_settings(RenewalSettings(enabled=False, lead_minutes=13, silent=True))
        assert not manager.scheduler.pending("prod")
        assert manager.deferred == []


class TestConsoleAndLifecycle:
    def test_open_console(self, manager):
        manager.activate_profile("prod")
        res = manager.open_console("prod")
        assert res.success and res.url.endswith("T-prod-acct")

    def test_open_console_without_session(self, manager):
        res = manager.open_console("prod")
        assert not res.success and res.url is None

    def test_restore_timers(self, manager, profile_store, clock, timers):
        profile_store.mark_active("prod", clock(), clock() + timedelta(hours=2))
        manager.restore_timers()
        assert timers.pending[0].delay == pytest.approx((timedelta(hours=2) - timedelta(minutes=13)).total_seconds())
        manager.shutdown()
        assert timers.pending == []

    def test_foreign_credentials_notice(self, manager, creds_path):
        creds_path.parent.mkdir(parents=True)
        creds_path.write_text("[default]\naws_access_key_id = A\naws_secret_access_key = B\n")
        res = manager.check_foreign_credentials()
        assert res.success and "backed them up" in res.message

    def test_delete_profile_cancels_timer(self, manager, timers, profile_store):
        manager.activate_profile("prod")
        manager.delete_profile("prod")
        assert timers.pending == []
        assert profile_store.get("prod") is None

    def test_restore_renews_expiring_profile_in_background(self, manager, profile_store, capture, clock, creds_file):
        creds_file.upsert("prod-acct", make_creds())
        profile_store.mark_active("prod", clock(), clock() + timedelta(minutes=5))

        manager.restore_timers()

        assert capture.calls == []
        manager.deferred.pop()()
        assert manager.renewed == ["prod"]
