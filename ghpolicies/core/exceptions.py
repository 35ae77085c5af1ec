"""Custom exception classes for the policy scanner."""

from typing import Optional

from fastapi import HTTPException, status


class GHPoliciesError(Exception):
    """Base exception for GitHub Policies."""

    def __init__(self, message: str = "An error occurred"):
        self.message = message
        super().__init__(self.message)


class ConfigurationError(GHPoliciesError):
    """Raised when the policy configuration cannot be used."""
    pass


class ConfigurationNotFoundError(ConfigurationError):
    """Raised when no policy configuration is present."""
    pass


class InvalidConfigurationError(ConfigurationError):
    """Raised when the policy configuration is malformed or incomplete."""
    pass


class AuthenticationError(GHPoliciesError):
    """Raised when the app assertion cannot be signed or exchanged."""
    pass


class GitHubApiError(GHPoliciesError):
    """Raised when the GitHub API returns an error response."""

    def __init__(self, message: str = "GitHub API error", status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class GitHubUnauthorizedError(GitHubApiError):
    """401 from GitHub."""
    pass


class GitHubForbiddenError(GitHubApiError):
    """403 from GitHub that is not a rate limit."""
    pass


class GitHubRateLimitError(GitHubApiError):
    """Primary or secondary rate limit hit."""

    def __init__(self, message: str = "GitHub rate limit exceeded", status_code: Optional[int] = None,
                 retry_after: Optional[int] = None):
        self.retry_after = retry_after
        super().__init__(message, status_code)


class GitHubNotFoundError(GitHubApiError):
    """404 from a GitHub endpoint where absence is not an expected answer."""
    pass


class GitHubTransportError(GitHubApiError):
    """Network failure, timeout or unreadable response body."""
    pass


class ScanCancelledError(GHPoliciesError):
    """Raised when a scan observes its cancellation signal."""
    pass


# HTTP exception shortcuts
def not_found(detail: str = "Resource not found") -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


def forbidden(detail: str = "Insufficient permissions") -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


def unauthorized(detail: str = "Not authenticated") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )
