# -*- coding: utf-8 -*-
"""SAML -> STS exchange and AWS console sign-in URLs."""

from __future__ import annotations
import json, logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional
from urllib.parse import quote, urlencode
from urllib.request import urlopen

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .config import DEFAULT_SESSION_DURATION, sts_region
from .credentials_file import CredentialsFile
from .errors import ConsoleUrlError, ExchangeError
from .logs import mask

log = logging.getLogger(__name__)

FEDERATION_ENDPOINT = "https://signin.aws.amazon.com/federation"
CONSOLE_DESTINATION = "https://console.aws.amazon.com/"
ISSUER = "sessionkeeper"


@dataclass(frozen=True)
class TemporaryCredentials:
    access_key_id: str
    secret_access_key: str
    session_token: str
    expires_at: datetime

    def __repr__(self):
        return f"TemporaryCredentials(access_key_id={mask(self.access_key_id)!r}, expires_at={self.expires_at.isoformat()!r})"


class FederationExchange:
    def __init__(self, sts_client=None, region: Optional[str] = None,
                 opener: Callable = urlopen, timeout: float = 15):
        self._sts = sts_client
        self.region = region or sts_region()
        self.opener = opener
        self.timeout = timeout

    @property
    def sts(self):
        if self._sts is None:
            self._sts = boto3.client("sts", region_name=self.region)
        return self._sts

    def exchange(self, role_arn: str, principal_arn: str, assertion: str,
                 duration_seconds: int = DEFAULT_SESSION_DURATION) -> TemporaryCredentials:
        try:
            resp = self.sts.assume_role_with_saml(
                RoleArn=role_arn, PrincipalArn=principal_arn,
                SAMLAssertion=assertion, DurationSeconds=duration_seconds,
            )
        except ClientError as e:
            err = e.response.get("Error", {})
            raise ExchangeError(f"STS AssumeRoleWithSAML failed: {err.get('Code', '?')}: {err.get('Message', e)}") from e
        except BotoCoreError as e:
            raise ExchangeError(f"STS AssumeRoleWithSAML failed: {e}") from e

        c = resp.get("Credentials") or {}
        missing = [k for k in ("AccessKeyId", "SecretAccessKey", "SessionToken", "Expiration") if not c.get(k)]
        if missing:
            raise ExchangeError(f"STS returned no usable credentials (missing {', '.join(missing)})")

        creds = TemporaryCredentials(c["AccessKeyId"], c["SecretAccessKey"], c["SessionToken"], c["Expiration"])
        log.info("STS OK  AccessKeyId=%s  Expires=%s", mask(creds.access_key_id), creds.expires_at.isoformat())
        return creds

    def build_console_url(self, section: str, credentials: CredentialsFile) -> str:
        stored = credentials.read(section)
        if not stored:
            raise ConsoleUrlError(f"No temporary credentials for [{section}] in {credentials.path}")

        session_json = json.dumps({
            "sessionId": stored.access_key_id,
            "sessionKey": stored.secret_access_key,
            "sessionToken": stored.session_token,
        })
        token_url = f"{FEDERATION_ENDPOINT}?" + urlencode({
            "Action": "getSigninToken",
            "SessionDuration": DEFAULT_SESSION_DURATION,
            "Session": session_json,
        }, quote_via=quote)

        try:
            with self.opener(token_url, timeout=self.timeout) as resp:
                raw = resp.read()
        except OSError as e:
            raise ConsoleUrlError(f"Sign-in token request failed: {e}") from e

        try:
            token = json.loads(raw.decode("utf-8"))["SigninToken"]
        except (UnicodeDecodeError, ValueError, KeyError, TypeError) as e:
            raise ConsoleUrlError("Failed to parse sign-in token response") from e
        if not token:
            raise ConsoleUrlError("Failed to parse sign-in token response")

        return f"{FEDERATION_ENDPOINT}?" + urlencode({
            "Action": "login",
            "Issuer": ISSUER,
            "Destination": CONSOLE_DESTINATION,
            "SigninToken": token,
        }, quote_via=quote)
