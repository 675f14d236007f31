# -*- coding: utf-8 -*-
"""
Reader/writer for the shared AWS credentials file.

The file is also edited by hand and by other tools (aws cli, SDKs), so every
operation is a read-modify-write of the whole text that only touches the
section it was asked about. A section runs from its ``[name]`` header up to
the next ``[`` at the start of a line, or the end of the file.

Concurrent writes by another program between our read and our write are not
detected: the last writer wins.
"""

from __future__ import annotations
import re, shutil, logging
from pathlib import Path
from typing import Callable, NamedTuple, Optional
from datetime import datetime

from .config import MANAGED_MARKER, now_utc
from .errors import PersistError

log = logging.getLogger(__name__)

ACCESS_KEY_FIELD = "aws_access_key_id"
SECRET_KEY_FIELD = "aws_secret_access_key"
SESSION_TOKEN_FIELD = "aws_session_token"


class StoredCredentials(NamedTuple):
    access_key_id: str
    secret_access_key: str
    session_token: str


class BackupResult(NamedTuple):
    backed_up: bool
    path: Optional[Path] = None


def section_pattern(name: str) -> "re.Pattern[str]":
    return re.compile(
        r"^\[" + re.escape(name) + r"\][ \t]*(?:\n|\Z).*?(?=^\[|\Z)",
        re.MULTILINE | re.DOTALL,
    )


def _field(body: str, key: str) -> Optional[str]:
    m = re.search(r"^[ \t]*" + key + r"[ \t]*=[ \t]*(\S.*?)[ \t]*$", body, re.MULTILINE)
    return m.group(1) if m else None


def render_section(name: str, creds) -> str:
    """``creds`` needs access_key_id, secret_access_key, session_token, expires_at."""
    expires: datetime = creds.expires_at
    return (
        f"[{name}]\n"
        f"{ACCESS_KEY_FIELD} = {creds.access_key_id}\n"
        f"{SECRET_KEY_FIELD} = {creds.secret_access_key}\n"
        f"{SESSION_TOKEN_FIELD} = {creds.session_token}\n"
        f"# Expires at: {expires.isoformat()}\n"
    )


class CredentialsFile:
    def __init__(self, path: Path, marker: str = MANAGED_MARKER,
                 now: Callable[[], datetime] = now_utc):
        self.path = Path(path)
        self.marker = marker
        self._now = now
        self._backup_checked = False

    # ---- io ----
    def _read(self) -> str:
        if not self.path.exists():
            return ""
        try:
            return self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise PersistError(f"Couldn't read {self.path}: {e}") from e

    def _write(self, content: str):
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(content, encoding="utf-8")
        except OSError as e:
            raise PersistError(f"Couldn't write {self.path}: {e}") from e

    def _has_marker(self, content: str) -> bool:
        return any(line.strip() == self.marker for line in content.splitlines())

    def _section(self, content: str, name: str):
        return section_pattern(name).search(content)

    # ---- backup ----
    def backup_foreign_file_if_present(self) -> BackupResult:
        """
        Copy a credentials file we did not create to a timestamped sibling.
        Runs at most once per instance and always before our first write.
        """
        if self._backup_checked:
            return BackupResult(False)
        content = self._read()
        if not content.strip() or self._has_marker(content):
            self._backup_checked = True
            return BackupResult(False)

        ts = self._now().strftime("%Y-%m-%dT%H-%M-%S")
        backup = self.path.with_name(f"{self.path.name}.backup-sessionkeeper-{ts}")
        try:
            shutil.copy2(self.path, backup)
        except OSError as e:
            raise PersistError(f"Couldn't back up {self.path}: {e}") from e
        self._backup_checked = True
        log.warning("Found credentials not created by us, backed up to %s", backup)
        return BackupResult(True, backup)

    # ---- write ----
    def ensure_marker(self, content: str) -> str:
        if self._has_marker(content):
            return content
        if not content.strip():
            return f"{self.marker}\n\n"
        return f"{self.marker}\n\n" + content.lstrip("\n")

    def upsert(self, name: str, creds) -> None:
        self.backup_foreign_file_if_present()
        content = self.ensure_marker(self._read())
        block = render_section(name, creds)

        m = self._section(content, name)
        if m:
            tail = content[m.end():]
            content = content[:m.start()] + block + ("\n" + tail if tail else "")
        else:
            content = content.rstrip("\n") + "\n\n" + block
        self._write(content)
        log.info("Saved credentials to [%s] in %s", name, self.path)

    def remove(self, name: str) -> None:
        if not self.path.exists():
            log.info("Credentials file %s does not exist", self.path)
            return
        content = self._read()
        m = self._section(content, name)
        if not m:
            log.info("Profile [%s] not found in %s", name, self.path)
            return
        self.backup_foreign_file_if_present()

        tail = content[m.end():]
        if tail.strip():
            content = content[:m.start()] + tail
        else:
            content = content[:m.start()].rstrip()
        self._write(content.rstrip() + "\n")
        log.info("Removed [%s] from %s", name, self.path)

    # ---- read ----
    def has_section(self, name: str) -> bool:
        return self._section(self._read(), name) is not None

    def has_session_token(self, name: str) -> bool:
        """Temporary (STS) credentials carry a session token, long-lived keys don't."""
        m = self._section(self._read(), name)
        return bool(m) and _field(m.group(0), SESSION_TOKEN_FIELD) is not None

    def read(self, name: str) -> Optional[StoredCredentials]:
        m = self._section(self._read(), name)
        if not m:
            return None
        body = m.group(0)
        akid = _field(body, ACCESS_KEY_FIELD)
        secret = _field(body, SECRET_KEY_FIELD)
        token = _field(body, SESSION_TOKEN_FIELD)
        if not (akid and secret and token):
            # hand-edited / partial section: treat as absent
            return None
        return StoredCredentials(akid, secret, token)
