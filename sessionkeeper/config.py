# -*- coding: utf-8 -*-
"""Paths, defaults and environment overrides."""

from __future__ import annotations
import os, sys
from pathlib import Path
from datetime import datetime, timezone


APP_NAME = "SessionKeeper"
APP_TITLE = "SessionKeeper 1.0"
MANAGED_MARKER = f"# Managed by {APP_NAME}"

# ===== General Setting =====
WORK_DIR = Path(os.getenv("SESSIONKEEPER_HOME") or (Path.home() / ".sessionkeeper"))
PROFILES_FILE = WORK_DIR / "profiles.json"
SETTINGS_FILE = WORK_DIR / "settings.ini"
BROWSER_PROFILE_DIR = WORK_DIR / "edge-profile"
WIRE_STORE_DIR = WORK_DIR / "wire-store"

DEFAULT_STS_REGION = "us-east-1"
DEFAULT_SESSION_DURATION = 43200   # 12h
DEFAULT_LEAD_MINUTES = 13

CAPTURE_TIMEOUT = 300              # 5 min for the user to finish login
RENEW_MAX_ATTEMPTS = 3
RENEW_RETRY_DELAY = 10


def resource_path(rel_path: str) -> str:
    base = getattr(sys, "_MEIPASS", os.path.abspath(os.path.dirname(__file__)))
    return os.path.join(base, rel_path)


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def credentials_path() -> Path:
    p = os.getenv("AWS_SHARED_CREDENTIALS_FILE")
    if p:
        return Path(p).expanduser()
    return Path.home() / ".aws" / "credentials"


def session_duration() -> int:
    """DurationSeconds for AssumeRoleWithSAML; shorten it to test renewal."""
    raw = os.getenv("SESSIONKEEPER_SESSION_DURATION", "").strip()
    if raw.isdigit() and int(raw) > 0:
        return int(raw)
    return DEFAULT_SESSION_DURATION


def sts_region() -> str:
    return os.getenv("SESSIONKEEPER_STS_REGION") or DEFAULT_STS_REGION
