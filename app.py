"""
PRSec Checks: a small FastAPI service that owns a GitHub App and turns CI
static-analysis output into check-run annotations.

Endpoints:
  POST /check    A CI job posts its diagnostics for one commit (and optionally
                 its pull request). We mint an installation token, find or create
                 the check run for that commit, upload the annotations in batches
                 GitHub accepts (max 50 per call), and set the final conclusion.
  POST /webhook  GitHub deliveries. The HMAC signature is checked before the
                 payload is even parsed; unsigned or mis-signed deliveries get a 401.
  GET  /health   Liveness.

Secrets (App id, private key, webhook secret) come from the environment; see
config.py. Nothing is read until the app starts, and a bad private key stops
startup rather than failing the first request.
"""

import os
import json
import time
import asyncio
import logging
import threading
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import requests
import uvicorn
from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import ValidationError

from annotations import AnnotationBatcher
from checker import CheckExecutor
from config import Settings, ca_bundle, load_settings
from errors import CheckExecutionError, WebhookVerificationFailure
from github_app import AppCredential, InstallationTokenProvider
from models import CheckRequest
from verify import WebhookVerifier

log = logging.getLogger("webhook")
logging.basicConfig(level=os.getenv("LOGLEVEL", "INFO"))

SERVICE_NAME = "prsec-checks"
DISCONNECT_POLL_S = 0.5


@dataclass
class Services:
    verifier: WebhookVerifier
    executor: CheckExecutor
    settings: Optional[Settings] = None


def build_services(settings: Settings) -> Services:
    credential = AppCredential(settings.app_id, settings.private_key)  # raises CredentialError

    session = requests.Session()
    session.verify = ca_bundle()
    tokens = InstallationTokenProvider(
        credential,
        api_base=settings.github_api,
        timeout_s=settings.http_timeout_s,
        safety_margin_s=settings.token_safety_margin_s,
        session=session,
    )
    executor = CheckExecutor(
        tokens,
        AnnotationBatcher(warnings_block=settings.warnings_block),
        check_name=settings.check_name,
        max_batch_size=settings.max_annotations,
        api_base=settings.github_api,
        timeout_s=settings.http_timeout_s,
        verify=ca_bundle(),
        app_id=settings.app_id,
    )
    return Services(WebhookVerifier(settings.webhook_secrets), executor, settings)

# ---------------- Webhook event handlers ----------------

def _on_ping(event: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    return {"ok": True, "pong": True}


def _on_check_event(event: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    action = payload.get("action")
    suite = payload.get(event) or {}
    log.info("%s action=%s head_sha=%s", event, action, suite.get("head_sha"))
    return {"ok": True, "event": event, "action": action}


def _on_installation(event: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    action = payload.get("action")
    inst = payload.get("installation") or {}
    account = (inst.get("account") or {}).get("login")
    log.info("%s action=%s installation=%s account=%s", event, action, inst.get("id"), account)
    return {"ok": True, "event": event, "action": action}


WEBHOOK_HANDLERS: Dict[str, Callable[[str, Dict[str, Any]], Dict[str, Any]]] = {
    "ping": _on_ping,
    "check_suite": _on_check_event,
    "check_run": _on_check_event,
    "installation": _on_installation,
    "installation_repositories": _on_installation,
}


async def _watch_disconnect(request: Request, cancel: threading.Event) -> None:
    while not cancel.is_set():
        if await request.is_disconnected():
            log.warning("client disconnected; cancelling check")
            cancel.set()
            return
        await asyncio.sleep(DISCONNECT_POLL_S)

# ---------------- App ----------------

def create_app(services: Optional[Services] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        svc = services or build_services(load_settings())
        if svc.settings:
            logging.getLogger().setLevel(svc.settings.log_level.upper())
        if not svc.verifier.configured:
            log.warning("no webhook secret configured; every webhook delivery will be rejected")
        app.state.services = svc
        app.state.boot_ts = time.time()
        yield

    app = FastAPI(title="PRSec Checks", version="3.0.0", lifespan=lifespan)

    @app.get("/", response_class=PlainTextResponse, include_in_schema=False)
    def top() -> str:
        return SERVICE_NAME

    @app.get("/health", include_in_schema=False)
    def health(request: Request) -> Dict[str, Any]:
        svc: Services = request.app.state.services
        return {
            "ok": True,
            "service": SERVICE_NAME,
            "uptime_s": int(time.time() - request.app.state.boot_ts),
            "has_secret": svc.verifier.configured,
        }

    @app.post("/check")
    async def check(request: Request):
        svc: Services = request.app.state.services
        body: bytes = await request.body()
        try:
            req = CheckRequest.model_validate_json(body)
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=f"failed to decode request: {e}")

        log.info("check request %s/%s@%s installation=%s diagnostics=%d",
                 req.owner, req.repo, req.sha[:7], req.installation_id, len(req.diagnostics))

        cancel = threading.Event()
        watcher = asyncio.create_task(_watch_disconnect(request, cancel))
        try:
            result = await run_in_threadpool(svc.executor.execute, req, cancel)
        except CheckExecutionError as e:
            log.error("check failed: %s", e)
            return JSONResponse(status_code=400, content={
                "detail": str(e),
                "stage": e.stage,
                "reported_count": e.reported_count,
                "filtered_count": e.filtered_count,
            })
        finally:
            cancel.set()
            watcher.cancel()
        return result.model_dump(mode="json")

    @app.post("/webhook")
    async def webhook(
        request: Request,
        x_github_event: Optional[str] = Header(None, alias="X-GitHub-Event"),
        x_github_delivery: Optional[str] = Header(None, alias="X-GitHub-Delivery"),
        x_hub_signature_256: Optional[str] = Header(None, alias="X-Hub-Signature-256"),
        x_hub_signature: Optional[str] = Header(None, alias="X-Hub-Signature"),
    ):
        svc: Services = request.app.state.services
        body: bytes = await request.body()

        try:
            svc.verifier.require(body, x_hub_signature_256 or x_hub_signature)
        except WebhookVerificationFailure as e:
            log.warning("rejected delivery=%s event=%s: %s", x_github_delivery, x_github_event, e)
            raise HTTPException(status_code=401, detail=str(e))

        try:
            payload = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            raise HTTPException(status_code=400, detail="Invalid JSON")
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Invalid JSON")
        if not x_github_event:
            raise HTTPException(status_code=400, detail="X-GitHub-Event header required")

        log.info("delivery=%s event=%s len=%d", x_github_delivery, x_github_event, len(body))

        handler = WEBHOOK_HANDLERS.get(x_github_event)
        if handler is None:
            return {"ok": True, "ignored_event": x_github_event}
        return handler(x_github_event, payload)

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("app:app", host=os.getenv("HOST", "127.0.0.1"), port=int(os.getenv("PORT", "8000")))
