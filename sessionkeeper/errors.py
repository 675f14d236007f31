# -*- coding: utf-8 -*-
"""Error taxonomy. Every message is meant to be shown to the user as-is."""


class SessionError(RuntimeError):
    """Base for failures of the session lifecycle."""


class CaptureError(SessionError):
    pass


class CaptureTimeout(CaptureError):
    def __init__(self, seconds: int):
        self.seconds = seconds
        super().__init__(f"Sign-in timed out ({seconds // 60} min) before a SAML assertion was captured")


class CaptureCancelled(CaptureError):
    def __init__(self):
        super().__init__("Sign-in window was closed before the SAML assertion was captured")


class CaptureRedirected(CaptureError):
    """Login succeeded but the assertion slipped past us."""
    def __init__(self, url: str):
        self.url = url
        super().__init__("Signed in to the AWS console but could not capture the SAML assertion - please try again")


class ExchangeError(SessionError):
    pass


class PersistError(SessionError):
    pass


class ConsoleUrlError(SessionError):
    pass


class ProfileNotFound(SessionError):
    def __init__(self, alias: str):
        self.alias = alias
        super().__init__(f"Profile '{alias}' not found")


class DuplicateActiveProfile(SessionError):
    def __init__(self, profile_name: str, active_alias: str):
        self.profile_name = profile_name
        self.active_alias = active_alias
        super().__init__(f'Profile name "{profile_name}" is already active ({active_alias})')
