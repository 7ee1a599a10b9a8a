import os
import base64
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import certifi
from dotenv import load_dotenv

from errors import ConfigurationError, CredentialError

# GitHub rejects check-run updates carrying more than 50 annotations.
GITHUB_MAX_ANNOTATIONS = 50


def bool_env(name: str, default: bool = False) -> bool:
    v = os.environ.get(name)
    if v is None:
        return default
    return v.lower() in {"1","true","yes","on"}


def int_env(name: str, default: int) -> int:
    v = (os.environ.get(name) or "").strip()
    if not v:
        return default
    try:
        return int(v)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {v!r}")


def ca_bundle() -> str:
    return (
        os.getenv("REQUESTS_CA_BUNDLE")
        or os.getenv("SSL_CERT_FILE")
        or certifi.where()
    )


def read_private_key() -> bytes:
    """Load the App's PEM key from a path, an inline value, or base64."""
    key_path = (os.getenv("GITHUB_APP_PRIVATE_KEY_PATH") or "").strip()
    key_inline = (os.getenv("GITHUB_APP_PRIVATE_KEY") or "").strip()
    key_b64 = (os.getenv("GITHUB_APP_PRIVATE_KEY_B64") or "").strip()

    if key_path:
        try:
            key = Path(key_path).read_text()
        except OSError as e:
            raise CredentialError(f"could not read private key {key_path}: {e}")
    elif key_inline:
        # .env files usually carry the PEM on one line with literal \n
        key = key_inline.replace("\\n", "\n")
    elif key_b64:
        try:
            key = base64.b64decode(key_b64).decode("utf-8")
        except ValueError as e:
            raise CredentialError(f"GITHUB_APP_PRIVATE_KEY_B64 is not valid base64: {e}")
    else:
        raise CredentialError(
            "Provide GITHUB_APP_PRIVATE_KEY_PATH or GITHUB_APP_PRIVATE_KEY (or GITHUB_APP_PRIVATE_KEY_B64)"
        )
    key = key.strip()
    if not key.startswith("-----BEGIN") or "PRIVATE KEY" not in key:
        raise CredentialError("GitHub App private key is not a PEM private key")
    return key.encode("utf-8")


@dataclass(frozen=True)
class Settings:
    app_id: int
    private_key: bytes = field(repr=False)
    webhook_secrets: List[str] = field(default_factory=list, repr=False)
    github_api: str = "https://api.github.com"
    http_timeout_s: int = 25
    check_name: str = "PRSec/Checks"
    max_annotations: int = GITHUB_MAX_ANNOTATIONS
    warnings_block: bool = False
    token_safety_margin_s: int = 60
    log_level: str = "INFO"


def load_settings(dotenv_path: Optional[str] = ".env") -> Settings:
    if dotenv_path:
        load_dotenv(dotenv_path=dotenv_path)

    raw_app_id = (os.getenv("GITHUB_APP_ID") or os.getenv("GITHUB_INTEGRATION_ID") or "").strip()
    if not raw_app_id:
        raise ConfigurationError("GITHUB_APP_ID is missing")
    try:
        app_id = int(raw_app_id)
    except ValueError:
        raise ConfigurationError(f"GITHUB_APP_ID must be an integer, got {raw_app_id!r}")

    single = (os.getenv("GITHUB_WEBHOOK_SECRET") or "").strip()
    secrets = [s.strip() for s in (os.getenv("GITHUB_WEBHOOK_SECRETS") or single).split(",") if s.strip()]

    max_annotations = int_env("MAX_ANNOTATIONS_PER_REQUEST", GITHUB_MAX_ANNOTATIONS)
    if not 1 <= max_annotations <= GITHUB_MAX_ANNOTATIONS:
        raise ConfigurationError(
            f"MAX_ANNOTATIONS_PER_REQUEST must be between 1 and {GITHUB_MAX_ANNOTATIONS}"
        )
    timeout = int_env("HTTP_TIMEOUT_S", 25)
    if timeout <= 0:
        raise ConfigurationError("HTTP_TIMEOUT_S must be positive")

    return Settings(
        app_id=app_id,
        private_key=read_private_key(),
        webhook_secrets=secrets,
        github_api=os.getenv("GITHUB_API", "https://api.github.com").rstrip("/"),
        http_timeout_s=timeout,
        check_name=os.getenv("CHECK_NAME", "PRSec/Checks"),
        max_annotations=max_annotations,
        warnings_block=bool_env("WARNINGS_BLOCK"),
        token_safety_margin_s=int_env("TOKEN_SAFETY_MARGIN_S", 60),
        log_level=os.getenv("LOGLEVEL", "INFO"),
    )
