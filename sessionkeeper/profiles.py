# -*- coding: utf-8 -*-
"""Profiles (JSON, pydantic models) and auto-renewal settings (QSettings)."""

from __future__ import annotations
import shutil, threading, logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ValidationError, field_validator
from PyQt6.QtCore import QSettings

from .config import DEFAULT_LEAD_MINUTES
from .errors import ProfileNotFound

log = logging.getLogger(__name__)


class Profile(BaseModel):
    alias: str
    profile_name: str          # section in the credentials file
    role_arn: str = ""
    login_url: str = ""
    idp_arn: str = ""          # SAML provider (PrincipalArn)
    active: bool = False
    last_renewed_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    @field_validator("last_renewed_at", "expires_at")
    @classmethod
    def _utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        # hand-edited files may carry timestamps without an offset
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


class ProfileData(BaseModel):
    profiles: List[Profile] = []


class ProfileStore:
    """Profiles persisted to a JSON file; the file is re-read on every call."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.RLock()

    def _load(self) -> List[Profile]:
        if not self.path.exists():
            return []
        raw = self.path.read_text(encoding="utf-8")
        if not raw.strip():
            return []
        try:
            return ProfileData.model_validate_json(raw).profiles
        except ValidationError as e:
            backup = self.path.with_name(self.path.name + ".backup")
            shutil.move(str(self.path), str(backup))
            log.error("Corrupted %s (%d errors), moved to %s", self.path.name, e.error_count(), backup)
            return []

    def _save(self, profiles: List[Profile]):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(ProfileData(profiles=profiles).model_dump_json(indent=2), encoding="utf-8")

    def _mutate(self, alias: str, **changes) -> Profile:
        with self._lock:
            profiles = self._load()
            for i, p in enumerate(profiles):
                if p.alias == alias:
                    profiles[i] = p.model_copy(update=changes)
                    self._save(profiles)
                    return profiles[i]
        raise ProfileNotFound(alias)

    def list(self) -> List[Profile]:
        with self._lock:
            return self._load()

    def get(self, alias: str) -> Optional[Profile]:
        return next((p for p in self.list() if p.alias == alias), None)

    def active_profiles(self) -> List[Profile]:
        return [p for p in self.list() if p.active]

    def add(self, profile: Profile) -> None:
        with self._lock:
            profiles = self._load()
            if any(p.alias == profile.alias for p in profiles):
                raise ValueError(f"Profile '{profile.alias}' already exists")
            profiles.append(profile.model_copy(update={"active": False, "last_renewed_at": None, "expires_at": None}))
            self._save(profiles)

    def update(self, profile: Profile) -> Profile:
        """Replace static fields; the session state stays as it is."""
        return self._mutate(profile.alias, profile_name=profile.profile_name, role_arn=profile.role_arn,
                            login_url=profile.login_url, idp_arn=profile.idp_arn)

    def delete(self, alias: str) -> None:
        with self._lock:
            profiles = self._load()
            kept = [p for p in profiles if p.alias != alias]
            if len(kept) != len(profiles):
                self._save(kept)

    def set_active(self, alias: str) -> Profile:
        return self._mutate(alias, active=True)

    def mark_renewed(self, alias: str, renewed_at: datetime, expires_at: datetime) -> Profile:
        return self._mutate(alias, last_renewed_at=renewed_at, expires_at=expires_at)

    def mark_active(self, alias: str, renewed_at: datetime, expires_at: datetime) -> Profile:
        return self._mutate(alias, active=True, last_renewed_at=renewed_at, expires_at=expires_at)

    def clear_session(self, alias: str) -> Optional[Profile]:
        try:
            return self._mutate(alias, active=False, last_renewed_at=None, expires_at=None)
        except ProfileNotFound:
            return None


@dataclass(frozen=True)
class RenewalSettings:
    enabled: bool = True
    lead_minutes: int = DEFAULT_LEAD_MINUTES
    silent: bool = True


class SettingsStore:
    """Read from timer threads and written from the window; one lock guards the QSettings object."""

    ENABLED = "autoRefresh/enabled"
    LEAD_MINUTES = "autoRefresh/leadMinutes"
    SILENT = "autoRefresh/silent"

    def __init__(self, path: Path):
        self.path = Path(path)
        self.settings = QSettings(str(self.path), QSettings.Format.IniFormat)
        self._lock = threading.Lock()

    def load(self) -> RenewalSettings:
        d = RenewalSettings()
        s = self.settings
        with self._lock:
            return RenewalSettings(
                enabled=s.value(self.ENABLED, d.enabled, type=bool),
                lead_minutes=max(0, s.value(self.LEAD_MINUTES, d.lead_minutes, type=int)),
                silent=s.value(self.SILENT, d.silent, type=bool),
            )

    def save(self, settings: RenewalSettings) -> None:
        s = self.settings
        with self._lock:
            s.setValue(self.ENABLED, settings.enabled)
            s.setValue(self.LEAD_MINUTES, int(settings.lead_minutes))
            s.setValue(self.SILENT, settings.silent)
            s.sync()
