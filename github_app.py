"""
GitHub App authentication.

The App proves who it is with a short-lived RS256 JWT signed by its private key,
then trades that JWT for an installation access token scoped to one account.
Installation tokens live for an hour; we cache them per installation and only
go back to GitHub once the cached one is inside the safety margin.
"""

import time
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Union

import jwt  # PyJWT
import requests
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization

from errors import CredentialError, TokenExchangeError

log = logging.getLogger("github_app")

CLOCK_SKEW_S = 60
ASSERTION_TTL_S = 600


def mask(s: str, keep: int = 6) -> str:
    if not s:
        return ""
    return s[:keep] + "…" + s[-keep:]


@dataclass(frozen=True)
class SignedAssertion:
    token: str = field(repr=False)
    issuer: int
    issued_at: int
    expires_at: int


@dataclass(frozen=True)
class InstallationToken:
    token: str = field(repr=False)
    expires_at: float
    installation_id: int

    def usable_at(self, now: float, margin_s: float) -> bool:
        return self.expires_at - margin_s > now


class AppCredential:
    """The App's signing key and numeric id. Built once at startup."""

    def __init__(self, app_id: int, private_key: Union[str, bytes]):
        if not private_key:
            raise CredentialError("GitHub App private key is missing")
        if isinstance(private_key, str):
            private_key = private_key.encode("utf-8")
        try:
            self._key = serialization.load_pem_private_key(private_key, password=None)
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise CredentialError(f"could not parse GitHub App private key: {e}")
        self.app_id = int(app_id)

    def __repr__(self) -> str:
        return f"<AppCredential app_id={self.app_id}>"

    def sign(self, now: Optional[float] = None) -> SignedAssertion:
        now = int(time.time() if now is None else now)
        claims = {"iat": now - CLOCK_SKEW_S, "exp": now + ASSERTION_TTL_S, "iss": str(self.app_id)}
        try:
            token = jwt.encode(claims, self._key, algorithm="RS256")
        except (jwt.PyJWTError, TypeError, ValueError) as e:
            raise CredentialError(f"failed to sign App JWT: {e}")
        if isinstance(token, (bytes, bytearray)):
            token = token.decode()
        return SignedAssertion(token=token, issuer=self.app_id,
                               issued_at=claims["iat"], expires_at=claims["exp"])


def parse_github_time(value: str) -> float:
    # GitHub sends e.g. "2016-07-11T22:14:10Z"
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


class InstallationTokenProvider:
    """
    Hands out installation tokens, exchanging a fresh App JWT when the cached
    token for that installation is missing or within `safety_margin_s` of expiry.

    Each installation gets its own lock; the expiry check and the exchange run
    under it, so concurrent callers for one installation never both exchange.
    """

    def __init__(
        self,
        credential: AppCredential,
        api_base: str = "https://api.github.com",
        timeout_s: float = 25,
        safety_margin_s: float = 60,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.credential = credential
        self.api_base = api_base.rstrip("/")
        self.timeout_s = timeout_s
        self.safety_margin_s = safety_margin_s
        # Shared across threadpool workers; only POSTs go through it and no
        # per-request state (cookies, auth) is set on the session itself.
        self.session = session or requests.Session()
        self.clock = clock
        self._tokens: Dict[int, InstallationToken] = {}
        self._locks: Dict[int, threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, installation_id: int) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(installation_id)
            if lock is None:
                lock = self._locks[installation_id] = threading.Lock()
            return lock

    def get_token(self, installation_id: int) -> InstallationToken:
        with self._lock_for(installation_id):
            cached = self._tokens.get(installation_id)
            if cached and cached.usable_at(self.clock(), self.safety_margin_s):
                return cached
            fresh = self._exchange(installation_id)
            self._tokens[installation_id] = fresh
            return fresh

    def _exchange(self, installation_id: int) -> InstallationToken:
        assertion = self.credential.sign(self.clock())
        url = f"{self.api_base}/app/installations/{installation_id}/access_tokens"
        try:
            r = self.session.post(
                url,
                headers={
                    "Authorization": f"Bearer {assertion.token}",
                    "Accept": "application/vnd.github+json",
                    "X-GitHub-Api-Version": "2022-11-28",
                },
                timeout=self.timeout_s,
            )
        except requests.RequestException as e:
            raise TokenExchangeError(f"token exchange failed: {e}",
                                     installation_id=installation_id, reason="transport")

        if r.status_code >= 400:
            log.error("POST %s -> %s %s: %s", url, r.status_code, r.reason, (r.text or "")[:800])
            raise TokenExchangeError(
                f"token exchange rejected with HTTP {r.status_code}",
                installation_id=installation_id, status_code=r.status_code, reason="http",
            )

        try:
            body = r.json()
            token = InstallationToken(
                token=str(body["token"]),
                expires_at=parse_github_time(body["expires_at"]),
                installation_id=installation_id,
            )
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise TokenExchangeError(f"could not decode token exchange response: {e}",
                                     installation_id=installation_id, reason="decode")

        if not token.token or not token.usable_at(self.clock(), self.safety_margin_s):
            raise TokenExchangeError("token exchange returned an unusable token",
                                     installation_id=installation_id, reason="decode")

        log.info("minted installation token installation=%s token=%s expires_at=%s",
                 installation_id, mask(token.token, 4), int(token.expires_at))
        return token
