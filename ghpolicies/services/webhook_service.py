"""Pull request webhook handling: re-evaluate the repository, then comment or block."""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ghpolicies.models.action_log import ActionStatus
from ghpolicies.models.policy import Policy
from ghpolicies.models.repository import Repository
from ghpolicies.policies.builtin import normalize_policy_type
from ghpolicies.schemas.config import PolicyConfig
from ghpolicies.services.action_service import (
    BLOCK_PRS, COMMENT_ON_PRS, PULL_REQUEST_ACTIONS, ActionService, normalize_action_name,
)
from ghpolicies.services.audit_service import audit_service
from ghpolicies.services.configuration_service import ConfigurationProvider
from ghpolicies.services.policy_evaluation_service import PolicyEvaluationService

logger = logging.getLogger("ghpolicies.webhooks")

# pull_request event actions that can change what the check run should say
HANDLED_PULL_REQUEST_ACTIONS = {"opened", "reopened", "synchronize", "ready_for_review", "edited"}


def _sanitize(value: Optional[str]) -> Optional[str]:
    # keeps caller-supplied values on one log line
    if value is None:
        return None
    return value.replace("\r", "").replace("\n", "")


class PullRequestWebhookHandler:
    """Handles one ``pull_request`` delivery.

    The repository is evaluated live against the current configuration, so a
    pull request opened after the last scan is still covered. Comments are
    only posted while a policy is violated; check runs are always refreshed
    so that fixing a repository turns its check green. Outcomes are written
    to the action log when the repository and policy are known locally.
    """

    def __init__(
        self,
        db: Session,
        github,
        configuration: ConfigurationProvider,
        evaluation: Optional[PolicyEvaluationService] = None,
    ):
        self.db = db
        self.github = github
        self.configuration = configuration
        self.evaluation = evaluation or PolicyEvaluationService()
        self.actions = ActionService(db, github, configuration)

    def handle(
        self, action: Optional[str], payload: Dict[str, Any], delivery_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """Process a delivery and return what was done to the pull request."""
        result: Dict[str, Any] = {"delivery_id": delivery_id, "action": action, "handled": False}
        if action not in HANDLED_PULL_REQUEST_ACTIONS:
            logger.info("Ignoring pull_request action '%s' (delivery %s)", _sanitize(action), _sanitize(delivery_id))
            return result

        try:
            repository_id = int(payload["repository"]["id"])
            number = int(payload["pull_request"]["number"])
            head_sha = payload["pull_request"]["head"]["sha"]
        except (KeyError, TypeError, ValueError):
            logger.warning("Malformed pull_request payload (delivery %s)", _sanitize(delivery_id))
            return result
        if not head_sha:
            logger.warning("PR #%s in repository %s has no head SHA", number, repository_id)
            return result

        remote = self.github.get_repository(repository_id)
        if remote is None:
            logger.warning("Repository %s from webhook not found on GitHub", repository_id)
            return result

        config = self.configuration.get_config()
        findings = self.evaluation.evaluate_repository(remote, config.policies, self.github)
        violated = {f.policy_type for f in findings}
        logger.info("Evaluated repository %s for PR #%s: %d violations", remote.full_name, number, len(violated))

        local_repository = (
            self.db.query(Repository).filter(Repository.github_repository_id == repository_id).first()
        )
        performed: List[str] = []
        seen = set()
        for policy_config in config.policies:
            key = normalize_policy_type(policy_config.type)
            if key in seen:
                continue
            seen.add(key)
            policy_keys = [key] if key in violated else []

            for configured in policy_config.actions:
                name = normalize_action_name(configured)
                if name not in PULL_REQUEST_ACTIONS:
                    continue
                outcome = self._run(name, remote.id, number, head_sha, policy_config, policy_keys)
                if outcome is None:
                    continue
                status, details = outcome
                performed.append(f"{key}:{name}:{status.value}")
                self._audit(local_repository, key, name, status, details)

        result.update(handled=True, repository_id=repository_id, number=number,
                      violations=sorted(violated), performed=performed)
        logger.info("Completed PR #%s in repository %s: %s", number, remote.full_name, performed)
        return result

    def _run(
        self,
        name: str,
        repository_id: int,
        number: int,
        head_sha: str,
        policy_config: PolicyConfig,
        policy_keys: List[str],
    ):
        try:
            if name == COMMENT_ON_PRS:
                if not policy_keys:
                    return None
                if self.actions.comment_on_pull_request(repository_id, number, policy_config, policy_keys):
                    return ActionStatus.success, f"Commented on PR #{number}"
                return ActionStatus.skipped, f"Already commented on PR #{number}"
            if name == BLOCK_PRS:
                run = self.actions.update_pull_request_status_check(
                    repository_id, head_sha, policy_config, policy_keys
                )
                return ActionStatus.success, f"Set status check for PR #{number} to {run.conclusion or 'completed'}"
        except Exception as e:
            logger.exception("Error executing %s for policy %s on PR #%s", name, policy_config.type, number)
            verb = "comment on" if name == COMMENT_ON_PRS else "block"
            return ActionStatus.failed, f"Failed to {verb} PR #{number}: {e}"
        return None

    def _audit(
        self,
        repository: Optional[Repository],
        policy_key: str,
        action_type: str,
        status: ActionStatus,
        details: str,
    ) -> None:
        if repository is None:
            return
        policy = self.db.query(Policy).filter(Policy.policy_key == policy_key).first()
        if policy is None:
            return
        audit_service.log_action(
            self.db,
            repository_id=repository.id,
            policy_id=policy.id,
            action_type=action_type,
            status=status,
            details=details,
        )
