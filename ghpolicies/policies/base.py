"""Abstract base class for policy evaluators."""

from abc import ABC, abstractmethod
from typing import Optional

from ghpolicies.schemas.github import RemoteRepository


class PolicyEvaluator(ABC):
    """Checks one repository against one policy type.

    Evaluators hold no state and have no side effects, so any number of them
    can run against the same repository in any order.
    """

    @property
    @abstractmethod
    def policy_type(self) -> str:
        """Return the policy type tag (e.g., 'has_agents_md')."""
        ...

    @abstractmethod
    def evaluate(self, repository: RemoteRepository, github) -> Optional[str]:
        """Evaluate the repository through the GitHub gateway.

        Returns:
            A human-readable violation reason, or None when compliant.

        Gateway errors are not caught here; they abort the scan.
        """
        ...


class FilePresenceEvaluator(PolicyEvaluator):
    """Compliant iff ``file_path`` exists at the repository root."""

    file_path: str = ""

    def evaluate(self, repository: RemoteRepository, github) -> Optional[str]:
        if github.file_exists(repository.id, self.file_path):
            return None
        return f"{self.file_path} is missing"
