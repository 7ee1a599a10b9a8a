# github_checks.py
import time
import logging
from typing import Any, Dict, List, Optional

import requests

log = logging.getLogger("github_checks")


def utc_now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


class GitHubClient:
    """
    Thin wrapper over the Checks API for one installation token.

    No retries here: a failed call raises requests.HTTPError (or another
    requests.RequestException) and the caller decides what to do with it.
    """

    def __init__(self, token: str, base_url: str = "https://api.github.com",
                 timeout_s: float = 25, session: Optional[requests.Session] = None,
                 verify: Any = True):
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "prsec-checks/1.0",
        })
        self.verify = verify

    def close(self) -> None:
        self.session.close()

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        r = self.session.request(method, url, timeout=self.timeout_s, verify=self.verify, **kwargs)
        if r.status_code >= 400:
            log.error("%s %s -> %s %s: %s", method, url, r.status_code, r.reason, (r.text or "")[:800])
        r.raise_for_status()
        try:
            return r.json() or {}
        except ValueError:
            return {}

    def find_check_run(self, owner: str, repo: str, sha: str, name: str,
                       app_id: Optional[int] = None) -> Optional[Dict[str, Any]]:
        """
        Return the newest check run called `name` on `sha`, if any.

        With `app_id` set only runs owned by that App count; another App's run
        of the same name can't be PATCHed with our token.
        """
        params: Dict[str, Any] = {"check_name": name, "filter": "latest", "per_page": 1}
        if app_id is not None:
            params["app_id"] = app_id
        j = self._request("GET", f"/repos/{owner}/{repo}/commits/{sha}/check-runs", params=params)
        runs: List[Dict[str, Any]] = j.get("check_runs") or []
        if app_id is not None:
            runs = [r for r in runs if (r.get("app") or {}).get("id") == app_id]
        return runs[0] if runs else None

    def create_check_run(self, owner: str, repo: str, sha: str, name: str,
                         title: str, summary: str, external_id: Optional[str] = None) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "name": name,
            "head_sha": sha,
            "status": "in_progress",
            "started_at": utc_now_iso(),
            "output": {"title": title, "summary": summary},
        }
        if external_id:
            data["external_id"] = external_id
        return self._request("POST", f"/repos/{owner}/{repo}/check-runs", json=data)

    def update_check_run(self, owner: str, repo: str, check_run_id: int, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("PATCH", f"/repos/{owner}/{repo}/check-runs/{check_run_id}", json=payload)

    def restart_check_run(self, owner: str, repo: str, check_run_id: int, title: str, summary: str) -> Dict[str, Any]:
        return self.update_check_run(owner, repo, check_run_id, {
            "status": "in_progress",
            "output": {"title": title, "summary": summary},
        })

    def add_annotations(self, owner: str, repo: str, check_run_id: int, title: str, summary: str,
                        annotations: List[Dict[str, Any]]) -> Dict[str, Any]:
        return self.update_check_run(owner, repo, check_run_id, {
            "output": {"title": title, "summary": summary, "annotations": annotations},
        })

    def complete_check_run(self, owner: str, repo: str, check_run_id: int, conclusion: str,
                           title: str, summary: str) -> Dict[str, Any]:
        return self.update_check_run(owner, repo, check_run_id, {
            "status": "completed",
            "completed_at": utc_now_iso(),
            "conclusion": conclusion,
            "output": {"title": title, "summary": summary},
        })
