"""Shared fixtures: in-memory database, RSA keys, an in-memory GitHub gateway."""

import itertools
import threading
from typing import Dict, List, Optional, Tuple

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import ghpolicies.models  # noqa: F401
from ghpolicies.core.exceptions import ScanCancelledError
from ghpolicies.db.base import Base
from ghpolicies.db.session import enable_sqlite_foreign_keys
from ghpolicies.schemas.config import AccessControlConfig, AppConfig, PolicyConfig
from ghpolicies.schemas.github import Account, CheckRun, Issue, IssueComment, PullRequest, RemoteRepository
from ghpolicies.services.configuration_service import StaticConfigurationProvider


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="session")
def rsa_private_key() -> str:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()


def make_repo(repo_id: int, name: str, archived: bool = False) -> RemoteRepository:
    return RemoteRepository(
        id=repo_id,
        name=name,
        full_name=f"acme/{name}",
        archived=archived,
        html_url=f"https://github.com/acme/{name}",
    )


def make_config(*policies: PolicyConfig, team: str = "acme/platform") -> StaticConfigurationProvider:
    return StaticConfigurationProvider(
        AppConfig(access_control=AccessControlConfig(authorized_team=team), policies=list(policies))
    )


class FakeGitHub:
    """In-memory stand-in for GitHubService.

    Every call is recorded in ``calls``; ``errors`` maps a method name to the
    exception that method should raise.
    """

    def __init__(self, repositories: Optional[List[RemoteRepository]] = None):
        self.repositories: Dict[int, RemoteRepository] = {r.id: r for r in repositories or []}
        self.files: Dict[Tuple[int, str], bytes] = {}
        self.workflow_permissions: Dict[int, Optional[str]] = {}
        self.issues: Dict[int, List[Issue]] = {}
        self.pull_requests: Dict[int, List[PullRequest]] = {}
        self.comments: Dict[Tuple[int, int], List[IssueComment]] = {}
        self.check_runs: Dict[Tuple[int, str], List[CheckRun]] = {}
        self.errors: Dict[str, Exception] = {}
        self.calls: List[tuple] = []
        self.cancel_event: Optional[threading.Event] = None
        self._issue_numbers = itertools.count(1)
        self._ids = itertools.count(1000)

    def bind(self, cancel_event: threading.Event) -> "FakeGitHub":
        self.cancel_event = cancel_event
        return self

    def calls_to(self, name: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == name]

    def add_file(self, repo_id: int, path: str, content: bytes = b"") -> None:
        self.files[(repo_id, path)] = content

    def add_pull_request(self, repo_id: int, number: int, sha: str = "") -> PullRequest:
        pr = PullRequest(number=number, title=f"PR {number}", head={"sha": sha or f"sha{number}"})
        self.pull_requests.setdefault(repo_id, []).append(pr)
        return pr

    def _record(self, name: str, *args) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise ScanCancelledError(f"Cancelled before {name}")
        self.calls.append((name,) + args)
        if name in self.errors:
            raise self.errors[name]

    def list_active_repositories(self) -> List[RemoteRepository]:
        self._record("list_active_repositories")
        return list(self.repositories.values())

    def get_repository(self, repository_id: int) -> Optional[RemoteRepository]:
        self._record("get_repository", repository_id)
        return self.repositories.get(repository_id)

    def archive_repository(self, repository_id: int) -> None:
        self._record("archive_repository", repository_id)
        current = self.repositories[repository_id]
        self.repositories[repository_id] = current.model_copy(update={"archived": True})

    def get_workflow_permissions(self, repository_id: int) -> Optional[str]:
        self._record("get_workflow_permissions", repository_id)
        return self.workflow_permissions.get(repository_id)

    def file_exists(self, repository_id: int, path: str) -> bool:
        self._record("file_exists", repository_id, path)
        return (repository_id, path) in self.files

    def get_file_content(self, repository_id: int, path: str) -> Optional[bytes]:
        self._record("get_file_content", repository_id, path)
        return self.files.get((repository_id, path))

    def create_issue(self, repository_id: int, title: str, body: str, labels: List[str]) -> Issue:
        self._record("create_issue", repository_id, title, body, list(labels))
        number = next(self._issue_numbers)
        repo = self.repositories.get(repository_id)
        url = f"{repo.html_url if repo else 'https://github.com/acme/unknown'}/issues/{number}"
        issue = Issue(number=number, title=title, html_url=url)
        self.issues.setdefault(repository_id, []).append(issue)
        return issue

    def list_open_issues(self, repository_id: int, label: str) -> List[Issue]:
        self._record("list_open_issues", repository_id, label)
        return [i for i in self.issues.get(repository_id, []) if i.state == "open"]

    def list_open_pull_requests(self, repository_id: int) -> List[PullRequest]:
        self._record("list_open_pull_requests", repository_id)
        return list(self.pull_requests.get(repository_id, []))

    def list_pull_request_comments(self, repository_id: int, number: int) -> List[IssueComment]:
        self._record("list_pull_request_comments", repository_id, number)
        return list(self.comments.get((repository_id, number), []))

    def create_pull_request_comment(self, repository_id: int, number: int, body: str) -> IssueComment:
        self._record("create_pull_request_comment", repository_id, number, body)
        comment = IssueComment(id=next(self._ids), body=body,
                               user=Account(login="policies-app[bot]", type="Bot"))
        self.comments.setdefault((repository_id, number), []).append(comment)
        return comment

    def list_check_runs(self, repository_id: int, ref: str) -> List[CheckRun]:
        self._record("list_check_runs", repository_id, ref)
        return list(self.check_runs.get((repository_id, ref), []))

    def create_check_run(self, repository_id: int, name: str, head_sha: str, conclusion: str,
                         title: str, summary: str) -> CheckRun:
        self._record("create_check_run", repository_id, name, head_sha, conclusion)
        run = CheckRun(id=next(self._ids), name=name, conclusion=conclusion)
        self.check_runs.setdefault((repository_id, head_sha), []).append(run)
        return run

    def update_check_run(self, repository_id: int, check_run_id: int, conclusion: str,
                         title: str, summary: str) -> CheckRun:
        self._record("update_check_run", repository_id, check_run_id, conclusion)
        for runs in self.check_runs.values():
            for index, run in enumerate(runs):
                if run.id == check_run_id:
                    runs[index] = run.model_copy(update={"conclusion": conclusion})
                    return runs[index]
        raise KeyError(check_run_id)

    def is_user_in_team(self, user_token: str, org: str, team_slug: str) -> bool:
        self._record("is_user_in_team", user_token, org, team_slug)
        return user_token == "member-token"


@pytest.fixture()
def fake_github() -> FakeGitHub:
    return FakeGitHub()
