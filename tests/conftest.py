import hmac
import hashlib
from datetime import datetime, timezone

import pytest
import requests
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from models import Diagnostic

ENV_VARS = (
    "GITHUB_APP_ID", "GITHUB_INTEGRATION_ID",
    "GITHUB_APP_PRIVATE_KEY", "GITHUB_APP_PRIVATE_KEY_PATH", "GITHUB_APP_PRIVATE_KEY_B64",
    "GITHUB_WEBHOOK_SECRET", "GITHUB_WEBHOOK_SECRETS", "GITHUB_API", "HTTP_TIMEOUT_S",
    "CHECK_NAME", "MAX_ANNOTATIONS_PER_REQUEST", "WARNINGS_BLOCK", "TOKEN_SAFETY_MARGIN_S",
)


def sign(secret: str, body: bytes) -> str:
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def diag(severity: str = "warning", line: int = 1, path: str = "app.py", **kw) -> Diagnostic:
    return Diagnostic(path=path, line=line, severity=severity, message=kw.pop("message", "msg"), **kw)


class Resp:
    def __init__(self, status_code=200, json_obj=None, text="", headers=None):
        self.status_code = status_code
        self._json = json_obj
        self.text = text
        self.reason = "OK" if status_code < 400 else "Error"
        self.headers = headers or {}

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        if self._json is None:
            raise ValueError("No JSON")
        return self._json

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error", response=self)


class FakeSession:
    """Stands in for requests.Session: hands out queued responses, records calls."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []
        self.headers = {}
        self.closed = False

    def _next(self, method, url, kwargs):
        self.calls.append((method, url, kwargs))
        r = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(r, Exception):
            raise r
        return r(method, url, kwargs) if callable(r) else r

    def post(self, url, **kwargs):
        return self._next("POST", url, kwargs)

    def request(self, method, url, **kwargs):
        return self._next(method, url, kwargs)

    def close(self):
        self.closed = True


@pytest.fixture(scope="session")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def rsa_pem(rsa_key) -> bytes:
    return rsa_key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )


@pytest.fixture(scope="session")
def rsa_public_pem(rsa_key) -> bytes:
    return rsa_key.public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch
