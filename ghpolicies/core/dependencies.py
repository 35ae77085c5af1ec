"""Process-wide service instances, built once and injected explicitly."""

from functools import lru_cache
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session

from ghpolicies.core.config import settings
from ghpolicies.executor.scan import ScanExecutor
from ghpolicies.services.action_service import ActionService
from ghpolicies.services.authorization_service import AuthorizationService
from ghpolicies.services.configuration_service import ConfigurationService
from ghpolicies.services.credential_service import CredentialManager
from ghpolicies.services.github_service import GitHubService
from ghpolicies.services.webhook_service import PullRequestWebhookHandler


@lru_cache(maxsize=1)
def get_credential_manager() -> CredentialManager:
    # one per process so every gateway shares the token cache
    return CredentialManager.from_settings()


@lru_cache(maxsize=1)
def get_github_service() -> GitHubService:
    return GitHubService(
        get_credential_manager(),
        organization=settings.GITHUB_ORGANIZATION,
        base_url=settings.GITHUB_API_URL,
        timeout=settings.GITHUB_HTTP_TIMEOUT_SECONDS,
    )


@lru_cache(maxsize=1)
def get_configuration_service() -> ConfigurationService:
    return ConfigurationService()


@lru_cache(maxsize=1)
def get_authorization_service() -> AuthorizationService:
    return AuthorizationService(get_github_service(), get_configuration_service())


def build_scan_executor(
    db: Session, enqueue_remediation: Optional[Callable[[int], Any]] = None
) -> ScanExecutor:
    return ScanExecutor(
        db,
        get_github_service(),
        get_configuration_service(),
        enqueue_remediation=enqueue_remediation,
    )


def build_action_service(db: Session) -> ActionService:
    return ActionService(db, get_github_service(), get_configuration_service())


def build_pull_request_handler(db: Session) -> PullRequestWebhookHandler:
    return PullRequestWebhookHandler(db, get_github_service(), get_configuration_service())
