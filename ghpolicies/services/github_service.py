"""GitHub gateway: the remote operations the scanner and remediation need.

Query endpoints translate 404 into an absence value (``False``, ``None`` or an
empty list). Every other failure is raised as a ``GitHubApiError`` subclass;
nothing here retries.
"""

import base64
import binascii
import copy
import logging
import threading
from typing import Any, Dict, Iterator, List, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from ghpolicies.core.exceptions import (
    GitHubApiError, GitHubForbiddenError, GitHubNotFoundError, GitHubRateLimitError,
    GitHubTransportError, GitHubUnauthorizedError, ScanCancelledError,
)
from ghpolicies.schemas.github import CheckRun, Issue, IssueComment, PullRequest, RemoteRepository
from ghpolicies.services.credential_service import GITHUB_HEADERS, CredentialManager

logger = logging.getLogger("ghpolicies.github")

ModelT = TypeVar("ModelT", bound=BaseModel)

PAGE_SIZE = 100


def _error_message(resp: httpx.Response) -> str:
    try:
        message = resp.json().get("message")
    except (ValueError, AttributeError):
        message = None
    return message or resp.text[:200] or resp.reason_phrase


def _retry_after(resp: httpx.Response) -> Optional[int]:
    value = resp.headers.get("retry-after")
    return int(value) if value and value.isdigit() else None


def raise_for_github_status(resp: httpx.Response) -> None:
    """Map an error response onto the typed exception hierarchy."""
    if resp.is_success:
        return
    code = resp.status_code
    message = f"{resp.request.method} {resp.request.url.path} -> {code}: {_error_message(resp)}"
    if code == 401:
        raise GitHubUnauthorizedError(message, code)
    rate_limited = resp.headers.get("x-ratelimit-remaining") == "0" or "retry-after" in resp.headers
    if code == 429 or (code == 403 and rate_limited):
        raise GitHubRateLimitError(message, code, retry_after=_retry_after(resp))
    if code == 403:
        raise GitHubForbiddenError(message, code)
    if code == 404:
        raise GitHubNotFoundError(message, code)
    raise GitHubApiError(message, code)


def _parse(model: Type[ModelT], payload: Any) -> ModelT:
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise GitHubTransportError(f"Malformed {model.__name__} payload: {e}") from e


class GitHubService:
    """Installation-scoped access to one organization's repositories.

    Repositories are addressed by their immutable numeric id so renames never
    break a lookup.
    """

    def __init__(
        self,
        credentials: CredentialManager,
        organization: str,
        base_url: str = "https://api.github.com",
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.credentials = credentials
        self.organization = organization
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.cancel_event = cancel_event
        self._transport = transport
        self._client: Optional[httpx.Client] = None

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(
                base_url=self.base_url,
                headers=GITHUB_HEADERS,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    def bind(self, cancel_event: threading.Event) -> "GitHubService":
        """A view of this gateway that stops issuing requests once ``cancel_event`` is set."""
        bound = copy.copy(self)
        bound._client = self.client
        bound.cancel_event = cancel_event
        return bound

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    # ---- Repositories ----

    def list_active_repositories(self) -> List[RemoteRepository]:
        """Every repository currently present in the organization, archived ones included."""
        items = self._paginate(f"/orgs/{self.organization}/repos", {"type": "all"})
        repositories = [_parse(RemoteRepository, item) for item in items]
        logger.debug("Listed %d repositories for %s", len(repositories), self.organization)
        return repositories

    def get_repository(self, repository_id: int) -> Optional[RemoteRepository]:
        resp = self._request("GET", f"/repositories/{repository_id}", absent_ok=True)
        if resp is None:
            return None
        return _parse(RemoteRepository, self._json(resp))

    def archive_repository(self, repository_id: int) -> None:
        self._request("PATCH", f"/repositories/{repository_id}", json={"archived": True})
        logger.debug("Archived repository %s", repository_id)

    def get_workflow_permissions(self, repository_id: int) -> Optional[str]:
        """Default GITHUB_TOKEN permission, or None when Actions is unavailable."""
        resp = self._request(
            "GET", f"/repositories/{repository_id}/actions/permissions/workflow", absent_ok=True
        )
        if resp is None:
            logger.warning("Workflow permissions not found for repository %s. Actions may be disabled.",
                           repository_id)
            return None
        return self._json(resp).get("default_workflow_permissions")

    # ---- Contents ----

    def file_exists(self, repository_id: int, path: str) -> bool:
        resp = self._request("GET", f"/repositories/{repository_id}/contents/{path}", absent_ok=True)
        return resp is not None

    def get_file_content(self, repository_id: int, path: str) -> Optional[bytes]:
        """Raw bytes of a file, or None when the path is absent or a directory."""
        resp = self._request("GET", f"/repositories/{repository_id}/contents/{path}", absent_ok=True)
        if resp is None:
            return None
        payload = self._json(resp)
        if not isinstance(payload, dict) or payload.get("type", "file") != "file":
            return None
        try:
            return base64.b64decode(payload.get("content") or "")
        except (binascii.Error, ValueError) as e:
            raise GitHubTransportError(f"Undecodable content for {path}: {e}") from e

    # ---- Issues ----

    def create_issue(self, repository_id: int, title: str, body: str, labels: List[str]) -> Issue:
        resp = self._request(
            "POST",
            f"/repositories/{repository_id}/issues",
            json={"title": title, "body": body, "labels": list(labels)},
        )
        return _parse(Issue, self._json(resp))

    def list_open_issues(self, repository_id: int, label: str) -> List[Issue]:
        items = self._paginate(
            f"/repositories/{repository_id}/issues",
            {"state": "open", "labels": label},
            absent_ok=True,
        )
        # the issues endpoint also returns pull requests
        return [_parse(Issue, item) for item in items if "pull_request" not in item]

    # ---- Pull requests ----

    def list_open_pull_requests(self, repository_id: int) -> List[PullRequest]:
        items = self._paginate(f"/repositories/{repository_id}/pulls", {"state": "open"}, absent_ok=True)
        return [_parse(PullRequest, item) for item in items]

    def list_pull_request_comments(self, repository_id: int, number: int) -> List[IssueComment]:
        # conversation comments live on the issue side of a pull request
        items = self._paginate(f"/repositories/{repository_id}/issues/{number}/comments", {}, absent_ok=True)
        return [_parse(IssueComment, item) for item in items]

    def create_pull_request_comment(self, repository_id: int, number: int, body: str) -> IssueComment:
        resp = self._request(
            "POST", f"/repositories/{repository_id}/issues/{number}/comments", json={"body": body}
        )
        return _parse(IssueComment, self._json(resp))

    # ---- Check runs ----

    def list_check_runs(self, repository_id: int, ref: str) -> List[CheckRun]:
        """Check runs reported for a commit. Only the first page is read."""
        resp = self._request(
            "GET",
            f"/repositories/{repository_id}/commits/{ref}/check-runs",
            params={"per_page": PAGE_SIZE},
            absent_ok=True,
        )
        if resp is None:
            return []
        payload = self._json(resp)
        if not isinstance(payload, dict):
            raise GitHubTransportError(f"Expected an object from check runs of {ref}")
        return [_parse(CheckRun, item) for item in payload.get("check_runs") or []]

    def create_check_run(
        self,
        repository_id: int,
        name: str,
        head_sha: str,
        conclusion: str,
        title: str,
        summary: str,
    ) -> CheckRun:
        resp = self._request(
            "POST",
            f"/repositories/{repository_id}/check-runs",
            json={
                "name": name,
                "head_sha": head_sha,
                "status": "completed",
                "conclusion": conclusion,
                "output": {"title": title, "summary": summary},
            },
        )
        return _parse(CheckRun, self._json(resp))

    def update_check_run(
        self, repository_id: int, check_run_id: int, conclusion: str, title: str, summary: str
    ) -> CheckRun:
        resp = self._request(
            "PATCH",
            f"/repositories/{repository_id}/check-runs/{check_run_id}",
            json={
                "status": "completed",
                "conclusion": conclusion,
                "output": {"title": title, "summary": summary},
            },
        )
        return _parse(CheckRun, self._json(resp))

    # ---- Teams ----

    def is_user_in_team(self, user_token: str, org: str, team_slug: str) -> bool:
        """Whether the token's owner is an active member of ``org/team_slug``."""
        with self.credentials.get_user_client(user_token) as client:
            try:
                user_resp = client.get("/user")
                raise_for_github_status(user_resp)
                login = self._json(user_resp)["login"]
                resp = client.get(f"/orgs/{org}/teams/{team_slug}/memberships/{login}")
            except httpx.HTTPError as e:
                raise GitHubTransportError(f"Team membership lookup failed: {e}") from e
            except KeyError as e:
                raise GitHubTransportError("Malformed /user payload") from e

        if resp.status_code == 404:
            logger.warning("Could not verify team membership for %s/%s. The team may not exist "
                           "or the user may not be allowed to see it.", org, team_slug)
            return False
        raise_for_github_status(resp)
        return str(self._json(resp).get("state", "")).lower() == "active"

    # ---- Transport ----

    def _request(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        absent_ok: bool = False,
    ) -> Optional[httpx.Response]:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise ScanCancelledError(f"Cancelled before {method} {url}")

        token = self.credentials.get_service_token()
        try:
            resp = self.client.request(
                method, url, params=params, json=json,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as e:
            raise GitHubTransportError(f"{method} {url} failed: {e}") from e

        if resp.status_code == 404 and absent_ok:
            return None
        if resp.status_code == 401:
            self.credentials.invalidate()
        raise_for_github_status(resp)
        return resp

    def _paginate(
        self, url: str, params: Dict[str, Any], absent_ok: bool = False
    ) -> Iterator[Dict[str, Any]]:
        next_url: Optional[str] = url
        next_params: Optional[Dict[str, Any]] = {**params, "per_page": PAGE_SIZE}
        while next_url:
            resp = self._request("GET", next_url, params=next_params, absent_ok=absent_ok)
            if resp is None:
                return
            page = self._json(resp)
            if not isinstance(page, list):
                raise GitHubTransportError(f"Expected a list from {next_url}")
            yield from page
            next_url = resp.links.get("next", {}).get("url")
            next_params = None  # the next link carries its own query

    @staticmethod
    def _json(resp: httpx.Response) -> Any:
        try:
            return resp.json()
        except ValueError as e:
            raise GitHubTransportError(f"Malformed JSON from {resp.request.url.path}") from e
