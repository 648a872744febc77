"""HTTP clients for URL, GitHub Actions and Modrinth downloads."""

import json
import logging
import threading
from typing import Any

import requests

from ..errors import FetchError, SyncCancelled
from .auth import GitHubAuth

logger = logging.getLogger(__name__)

USER_AGENT = "server-wrapper"


class HttpClient:
    """requests session wrapper with bounded exponential-backoff retries.

    Timeouts, connection errors and 5xx responses are retried; 4xx responses
    fail immediately.
    """

    def __init__(
        self,
        session: requests.Session | None = None,
        attempts: int = 3,
        backoff: float = 1.0,
        timeout: float = 30,
        cancel_event: threading.Event | None = None,
    ) -> None:
        """Initialize client.

        Args:
            session: Session shared by every caller (if not provided, each
                thread gets a session of its own)
            attempts: Total attempts per request, including the first
            backoff: Delay before the first retry; doubled on each further retry
            timeout: Per-request timeout in seconds
            cancel_event: When set, pending retries are abandoned
        """
        self._shared_session = session
        if session is not None:
            session.headers["User-Agent"] = USER_AGENT
        self._local = threading.local()
        self.attempts = max(1, attempts)
        self.backoff = backoff
        self.timeout = timeout
        self.cancel_event = cancel_event or threading.Event()

    @property
    def session(self) -> requests.Session:
        """Session for the calling thread."""
        if self._shared_session is not None:
            return self._shared_session
        session = getattr(self._local, "session", None)
        if session is None:
            session = requests.Session()
            session.headers["User-Agent"] = USER_AGENT
            self._local.session = session
        return session

    def _send(
        self,
        method: str,
        url: str,
        headers: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
    ) -> requests.Response:
        """Make a single request, mapping failures to FetchError."""
        try:
            response = self.session.request(
                method=method,
                url=url,
                headers=headers,
                params=params,
                timeout=self.timeout,
                allow_redirects=True,
            )
        except (requests.Timeout, requests.ConnectionError) as e:
            raise FetchError(f"Request to {url} failed: {e}", retryable=True) from e
        except requests.RequestException as e:
            raise FetchError(f"Request to {url} failed: {e}") from e

        if not 200 <= response.status_code < 300:
            status = response.status_code
            raise FetchError(
                f"HTTP error {status} for {url}: {response.text[:500]}",
                status_code=status,
                retryable=status >= 500,
                not_found=status == 404,
            )
        return response

    def request(
        self,
        method: str,
        url: str,
        headers: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
    ) -> requests.Response:
        """Make a request, retrying transient failures.

        Raises:
            FetchError: When the request fails for good
            SyncCancelled: When cancellation is requested between attempts
        """
        for attempt in range(1, self.attempts + 1):
            if self.cancel_event.is_set():
                raise SyncCancelled(f"Cancelled before requesting {url}")
            try:
                return self._send(method, url, headers=headers, params=params)
            except FetchError as e:
                if not e.retryable or attempt == self.attempts:
                    raise
                delay = self.backoff * (2 ** (attempt - 1))
                logger.warning(
                    "%s (attempt %d/%d), retrying in %.1fs",
                    e, attempt, self.attempts, delay,
                )
                if self.cancel_event.wait(delay):
                    raise SyncCancelled(f"Cancelled while retrying {url}") from e
        raise AssertionError("unreachable")

    def get_bytes(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
    ) -> bytes:
        """GET a URL and return the body."""
        return self.request("GET", url, headers=headers, params=params).content

    def get_json(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
    ) -> Any:
        """GET a URL and parse the body as JSON."""
        response = self.request("GET", url, headers=headers, params=params)
        try:
            return response.json()
        except ValueError as e:
            raise FetchError(f"Invalid JSON from {url}: {e}") from e


class GitHubClient:
    """GitHub Actions API client for locating and downloading artifacts."""

    def __init__(self, auth: GitHubAuth, http: HttpClient | None = None) -> None:
        """Initialize client.

        Args:
            auth: GitHubAuth holding the token
            http: HttpClient to send requests with
        """
        self.auth = auth
        self.http = http or HttpClient()

    def get(self, path: str, params: dict[str, str] | None = None) -> Any:
        """Make an authenticated GET request to an API path."""
        return self.http.get_json(
            self.auth.get_full_url(path),
            headers=self.auth.get_headers(),
            params=params,
        )

    # -------------------------------------------------------------------------
    # Workflow runs
    # -------------------------------------------------------------------------

    def list_workflow_runs(
        self,
        owner: str,
        repository: str,
        branch: str | None = None,
        workflow: str | None = None,
    ) -> list[dict[str, Any]]:
        """List completed workflow runs of a repository.

        Args:
            owner: Repository owner
            repository: Repository name
            branch: Only runs on this branch
            workflow: Only runs of this workflow file (e.g. "build.yml")

        Returns:
            List of run dictionaries as returned by the API
        """
        if workflow:
            path = f"/repos/{owner}/{repository}/actions/workflows/{workflow}/runs"
        else:
            path = f"/repos/{owner}/{repository}/actions/runs"

        params = {"status": "completed", "per_page": "50"}
        if branch:
            params["branch"] = branch

        response = self.get(path, params)
        return response.get("workflow_runs", [])

    def latest_successful_run(
        self,
        owner: str,
        repository: str,
        branch: str | None = None,
        workflow: str | None = None,
    ) -> dict[str, Any] | None:
        """Return the most recently completed successful run, if any."""
        runs = self.list_workflow_runs(owner, repository, branch=branch, workflow=workflow)
        runs = sorted(runs, key=lambda run: run.get("updated_at") or "", reverse=True)
        for run in runs:
            if run.get("conclusion") == "success":
                return run
        return None

    # -------------------------------------------------------------------------
    # Artifacts
    # -------------------------------------------------------------------------

    def list_run_artifacts(
        self,
        owner: str,
        repository: str,
        run_id: int,
    ) -> list[dict[str, Any]]:
        """List the unexpired artifacts of a workflow run."""
        path = f"/repos/{owner}/{repository}/actions/runs/{run_id}/artifacts"
        response = self.get(path, {"per_page": "100"})
        return [
            artifact
            for artifact in response.get("artifacts", [])
            if not artifact.get("expired") and artifact.get("archive_download_url")
        ]

    def download_artifact(self, artifact: dict[str, Any]) -> bytes:
        """Download an artifact's zip container.

        The API answers with a redirect to blob storage; requests drops the
        Authorization header when the host changes.
        """
        return self.http.get_bytes(
            artifact["archive_download_url"],
            headers=self.auth.get_headers(),
        )


class ModrinthClient:
    """Modrinth API client for resolving project versions."""

    BASE_URL = "https://api.modrinth.com"

    def __init__(self, http: HttpClient | None = None, base_url: str | None = None) -> None:
        self.http = http or HttpClient()
        self.base_url = (base_url or self.BASE_URL).rstrip("/")

    def get_versions(
        self,
        project_id: str,
        game_version: str | None = None,
    ) -> list[dict[str, Any]]:
        """List versions of a project, optionally for one game version."""
        params = None
        if game_version:
            params = {"game_versions": json.dumps([game_version])}
        return self.http.get_json(
            f"{self.base_url}/v2/project/{project_id}/version",
            params=params,
        )

    def latest_file(
        self,
        project_id: str,
        game_version: str | None = None,
    ) -> dict[str, Any] | None:
        """Return the primary file of the newest published version.

        Falls back to the version's first file when none is marked primary.
        """
        versions = self.get_versions(project_id, game_version)
        versions = sorted(versions, key=lambda v: v.get("date_published") or "", reverse=True)
        for version in versions:
            files = version.get("files") or []
            if not files:
                continue
            primary = next((f for f in files if f.get("primary")), files[0])
            return primary
        return None
