"""Policy evaluation: runs the configured policies against one repository."""

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from ghpolicies.policies.base import PolicyEvaluator
from ghpolicies.policies.builtin import get_evaluator, normalize_policy_type
from ghpolicies.schemas.config import PolicyConfig
from ghpolicies.schemas.github import RemoteRepository

logger = logging.getLogger("ghpolicies.evaluation")


@dataclass(frozen=True)
class Finding:
    """A repository failing one configured policy."""

    policy_type: str  # normalized, which is the Policy.policy_key
    reason: str


class PolicyEvaluationService:
    """Resolves configured policies to evaluators and collects findings.

    Policies whose type has no evaluator are skipped, so an unknown type
    never blocks a scan.
    """

    def __init__(self, resolver: Callable[[str], Optional[PolicyEvaluator]] = get_evaluator):
        self._resolve = resolver

    def evaluate_repository(
        self,
        repository: RemoteRepository,
        policies: Sequence[PolicyConfig],
        github,
    ) -> List[Finding]:
        findings: List[Finding] = []
        for policy in policies:
            evaluator = self._resolve(policy.type)
            if evaluator is None:
                logger.debug("No evaluator for policy type '%s', skipping", policy.type)
                continue
            reason = evaluator.evaluate(repository, github)
            if reason is not None:
                findings.append(Finding(policy_type=normalize_policy_type(policy.type), reason=reason))
        return findings
