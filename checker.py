"""
Publishes a CI job's diagnostics to a GitHub check run.

authenticating -> creating_check_run -> submitting_annotations(i/N) -> finalizing -> done,
with any step able to drop into failed. Nothing is retried and nothing already
sent to GitHub is rolled back: a run that fails part way stays "in_progress"
on the commit and the caller gets a CheckExecutionError.
"""

import logging
import threading
from enum import Enum
from typing import Any, Callable, Dict, Optional

import requests

from annotations import AnnotationBatcher, BatchPlan
from errors import CheckExecutionError, CredentialError, TokenExchangeError
from github_app import InstallationTokenProvider
from github_checks import GitHubClient
from models import CheckRequest, CheckResult

log = logging.getLogger("checker")


class Stage(str, Enum):
    AUTHENTICATING = "authenticating"
    CREATING_CHECK_RUN = "creating_check_run"
    SUBMITTING_ANNOTATIONS = "submitting_annotations"
    FINALIZING = "finalizing"
    DONE = "done"
    FAILED = "failed"


class _Run:
    """Progress of a single execute() call, used to build error context."""

    def __init__(self, request: CheckRequest, plan: BatchPlan):
        self.request = request
        self.plan = plan
        self.stage = Stage.AUTHENTICATING
        self.batch_index: Optional[int] = None

    def error(self, message: str) -> CheckExecutionError:
        return CheckExecutionError(
            message,
            stage=self.stage.value,
            installation_id=self.request.installation_id,
            batch_index=self.batch_index,
            reported_count=self.plan.reported_count,
            filtered_count=self.plan.filtered_count,
        )


class CheckExecutor:
    def __init__(
        self,
        tokens: InstallationTokenProvider,
        batcher: AnnotationBatcher,
        check_name: str = "PRSec/Checks",
        max_batch_size: int = 50,
        api_base: str = "https://api.github.com",
        timeout_s: float = 25,
        verify: Any = True,
        client_factory: Optional[Callable[[str], GitHubClient]] = None,
        app_id: Optional[int] = None,
    ):
        self.tokens = tokens
        self.batcher = batcher
        self.check_name = check_name
        self.max_batch_size = max_batch_size
        self.app_id = app_id
        self.client_factory = client_factory or (
            lambda token: GitHubClient(token, api_base, timeout_s, verify=verify)
        )

    def execute(self, req: CheckRequest, cancel: Optional[threading.Event] = None) -> CheckResult:
        plan = self.batcher.batch(req.diagnostics, self.max_batch_size)
        run = _Run(req, plan)
        try:
            return self._execute(run, cancel)
        except CheckExecutionError:
            run.stage = Stage.FAILED
            raise
        except (TokenExchangeError, CredentialError) as e:
            raise run.error(f"authentication failed: {e}") from e
        except requests.RequestException as e:
            raise run.error(f"GitHub API call failed: {e}") from e

    def _execute(self, run: _Run, cancel: Optional[threading.Event]) -> CheckResult:
        req, plan = run.request, run.plan
        name = req.name or self.check_name
        title = f"{name} results"
        summary = self._summary(req, plan)

        self._check_cancel(run, cancel)
        token = self.tokens.get_token(req.installation_id)

        run.stage = Stage.CREATING_CHECK_RUN
        client = self.client_factory(token.token)
        try:
            self._check_cancel(run, cancel)
            check_run = self._resolve_check_run(client, req, name, title, summary)
            check_id = check_run.get("id")
            if not check_id:
                raise run.error("check run response carried no id")
            check_url = check_run.get("html_url")

            run.stage = Stage.SUBMITTING_ANNOTATIONS
            total = len(plan.batches)
            for i, batch in enumerate(plan.batches):
                run.batch_index = i
                self._check_cancel(run, cancel)
                client.add_annotations(req.owner, req.repo, check_id, title, summary,
                                       [a.to_payload() for a in batch])
                log.info("check_run=%s batch %d/%d submitted (%d annotations)", check_id, i + 1, total, len(batch))
            run.batch_index = None

            run.stage = Stage.FINALIZING
            self._check_cancel(run, cancel)
            client.complete_check_run(req.owner, req.repo, check_id, plan.conclusion.value, title, summary)
        finally:
            client.close()

        run.stage = Stage.DONE
        log.info("check %s/%s@%s concluded %s reported=%d filtered=%d url=%s",
                 req.owner, req.repo, req.sha[:7], plan.conclusion.value,
                 plan.reported_count, plan.filtered_count, check_url)
        return CheckResult(
            conclusion=plan.conclusion,
            reported_count=plan.reported_count,
            filtered_count=plan.filtered_count,
            check_run_url=check_url,
        )

    def _resolve_check_run(self, client: GitHubClient, req: CheckRequest, name: str,
                           title: str, summary: str) -> Dict[str, Any]:
        existing = client.find_check_run(req.owner, req.repo, req.sha, name, app_id=self.app_id)
        if existing and self.app_id is not None and (existing.get("app") or {}).get("id") not in (None, self.app_id):
            log.warning("check run id=%s belongs to app=%s; creating our own",
                        existing.get("id"), existing["app"].get("id"))
            existing = None
        if existing and existing.get("id"):
            log.info("reusing check run id=%s for %s/%s@%s", existing["id"], req.owner, req.repo, req.sha[:7])
            updated = client.restart_check_run(req.owner, req.repo, existing["id"], title, summary)
            return {**existing, **updated}
        created = client.create_check_run(req.owner, req.repo, req.sha, name, title, summary,
                                          external_id=f"pr-{req.pr_number}" if req.pr_number else None)
        log.info("created check run id=%s for %s/%s@%s", created.get("id"), req.owner, req.repo, req.sha[:7])
        return created

    @staticmethod
    def _summary(req: CheckRequest, plan: BatchPlan) -> str:
        summary = plan.summary
        if req.pr_number:
            summary = f"Pull request #{req.pr_number}\n\n{summary}"
        return summary

    @staticmethod
    def _check_cancel(run: _Run, cancel: Optional[threading.Event]) -> None:
        if cancel is not None and cancel.is_set():
            raise run.error("request cancelled")
