"""Action service: remediation of the violations recorded by a scan."""

import logging
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy.orm import Session, joinedload

from ghpolicies.core.exceptions import GitHubForbiddenError, GitHubNotFoundError
from ghpolicies.models.action_log import ActionStatus
from ghpolicies.models.scan import PolicyViolation
from ghpolicies.schemas.config import PolicyConfig
from ghpolicies.schemas.github import CheckRun, PullRequest
from ghpolicies.services.audit_service import audit_service
from ghpolicies.services.configuration_service import ConfigurationProvider

logger = logging.getLogger("ghpolicies.actions")

CREATE_ISSUE = "create-issue"
ARCHIVE_REPO = "archive-repo"
LOG_ONLY = "log-only"
COMMENT_ON_PRS = "comment-on-prs"
BLOCK_PRS = "block-prs"
PULL_REQUEST_ACTIONS = (COMMENT_ON_PRS, BLOCK_PRS)

DEFAULT_ISSUE_LABELS = ["policy-violation", "compliance"]
DEFAULT_STATUS_CHECK_NAME = "Policy Compliance Check"
# leading characters of a comment compared when looking for an earlier copy
DUPLICATE_COMMENT_PREFIX = 50


def normalize_action_name(action: str) -> str:
    return action.strip().lower().replace("_", "-")


class ActionService:
    """Executes the configured actions for every violation of a scan.

    Each action runs in isolation: a failure is written to the action log and
    the batch carries on. Issue creation and archiving check the current
    state on GitHub first so that repeated runs do not repeat side effects.
    Pull request actions touch every open pull request of the repository and
    log one entry per pull request.
    """

    def __init__(self, db: Session, github, configuration: ConfigurationProvider):
        self.db = db
        self.github = github
        self.configuration = configuration

    def process_actions_for_scan(self, scan_id: int) -> Dict[str, int]:
        """Process every violation of ``scan_id``; returns outcome counts."""
        logger.info("Processing actions for scan %s", scan_id)
        violations: List[PolicyViolation] = (
            self.db.query(PolicyViolation)
            .options(joinedload(PolicyViolation.repository), joinedload(PolicyViolation.policy))
            .filter(PolicyViolation.scan_id == scan_id)
            .order_by(PolicyViolation.id)
            .all()
        )
        summary = {status.value: 0 for status in ActionStatus}
        if not violations:
            logger.info("No violations found for scan %s. No actions to process.", scan_id)
            return summary

        config = self.configuration.get_config()
        logger.info("Found %d violations for scan %s", len(violations), scan_id)

        for violation in violations:
            policy_config = config.find_policy(violation.policy.policy_key)
            for action in violation.policy.actions:
                status = self._run_action(violation, action, policy_config)
                summary[status.value] += 1

        logger.info("Completed processing actions for scan %s: %s", scan_id, summary)
        return summary

    def _run_action(
        self,
        violation: PolicyViolation,
        action: str,
        policy_config: Optional[PolicyConfig],
    ) -> ActionStatus:
        normalized = normalize_action_name(action)
        try:
            if normalized == CREATE_ISSUE:
                return self._create_issue(violation, policy_config)
            if normalized == ARCHIVE_REPO:
                return self._archive_repository(violation)
            if normalized == LOG_ONLY:
                logger.info("Log-only action for violation %s in repository %s",
                            violation.id, violation.repository.name)
                return self._log(violation, LOG_ONLY, ActionStatus.success, "Violation logged as configured")
            if normalized == COMMENT_ON_PRS:
                return self._comment_on_pull_requests(violation, policy_config)
            if normalized == BLOCK_PRS:
                return self._block_pull_requests(violation, policy_config)

            logger.warning("Unknown action type: %s for violation %s", action, violation.id)
            return self._log(violation, action, ActionStatus.failed, f"Unknown action type: {action}")
        except Exception as e:
            logger.exception("Error processing action %s for violation %s. Continuing with other actions.",
                             action, violation.id)
            self.db.rollback()
            return self._log(violation, normalized, ActionStatus.failed, f"Exception: {e}")

    def _create_issue(self, violation: PolicyViolation, policy_config: Optional[PolicyConfig]) -> ActionStatus:
        repository = violation.repository
        key = violation.policy.policy_key
        details = policy_config.issue_details if policy_config else None

        title = (details and details.title) or f"Compliance Violation: {key}"
        body = (details and details.body) or (
            f"This repository violates the {key} policy. Please review and take appropriate action."
        )
        labels = (details and details.labels) or DEFAULT_ISSUE_LABELS

        try:
            open_issues = self.github.list_open_issues(repository.github_repository_id, labels[0])
            duplicate = next((i for i in open_issues if i.title.casefold() == title.casefold()), None)
            if duplicate is not None:
                logger.info("Duplicate issue already exists for repository %s with title '%s': %s. Skipping.",
                            repository.name, title, duplicate.html_url)
                return self._log(violation, CREATE_ISSUE, ActionStatus.skipped,
                                 f"Duplicate issue already exists: #{duplicate.number} {duplicate.html_url}")

            issue = self.github.create_issue(repository.github_repository_id, title, body, labels)
        except Exception as e:
            logger.exception("Failed to create issue for violation %s in repository %s",
                             violation.id, repository.name)
            return self._log(violation, CREATE_ISSUE, ActionStatus.failed, f"Exception: {e}")

        logger.info("Created issue #%s in repository %s: %s", issue.number, repository.name, issue.html_url)
        return self._log(violation, CREATE_ISSUE, ActionStatus.success,
                         f"Created issue #{issue.number}: {issue.html_url}")

    def _archive_repository(self, violation: PolicyViolation) -> ActionStatus:
        repository = violation.repository
        github_id = repository.github_repository_id
        key = violation.policy.policy_key

        try:
            current = self.github.get_repository(github_id)
            if current is None:
                logger.warning("Repository %s (ID: %s) not found when attempting to archive for violation %s",
                               repository.name, github_id, violation.id)
                return self._log(violation, ARCHIVE_REPO, ActionStatus.failed, "Repository not found")
            if current.archived:
                logger.info("Repository %s (ID: %s) is already archived. Skipping archive for violation %s",
                            repository.name, github_id, violation.id)
                return self._log(violation, ARCHIVE_REPO, ActionStatus.skipped, "Repository is already archived")

            self.github.archive_repository(github_id)
        except GitHubNotFoundError as e:
            logger.warning("Repository %s (ID: %s) not found when attempting to archive: %s",
                           repository.name, github_id, e.message)
            return self._log(violation, ARCHIVE_REPO, ActionStatus.failed, f"Repository not found: {e.message}")
        except GitHubForbiddenError as e:
            logger.warning("Insufficient permissions to archive repository %s (ID: %s): %s",
                           repository.name, github_id, e.message)
            return self._log(violation, ARCHIVE_REPO, ActionStatus.failed, f"Insufficient permissions: {e.message}")
        except Exception as e:
            logger.exception("Failed to archive repository %s (ID: %s) for violation %s due to policy %s",
                             repository.name, github_id, violation.id, key)
            return self._log(violation, ARCHIVE_REPO, ActionStatus.failed, f"Exception: {e}")

        logger.info("Archived repository %s (ID: %s) due to policy %s (violation %s)",
                    repository.name, github_id, key, violation.id)
        return self._log(violation, ARCHIVE_REPO, ActionStatus.success,
                         f"Repository archived due to {key} policy violation")

    # ---- Pull requests ----

    def comment_on_pull_request(
        self,
        repository_id: int,
        number: int,
        policy_config: Optional[PolicyConfig],
        policy_keys: Sequence[str],
    ) -> bool:
        """Comment on one pull request about ``policy_keys``.

        Returns False without calling GitHub when there is nothing to report
        or a bot already left the same comment. GitHub errors propagate.
        """
        if not policy_keys:
            logger.info("No violations for PR #%s in repository %s. Skipping comment.", number, repository_id)
            return False

        message = _comment_message(policy_config, policy_keys)
        prefix = message[:DUPLICATE_COMMENT_PREFIX].casefold()
        for comment in self.github.list_pull_request_comments(repository_id, number):
            if comment.is_from_bot and prefix in comment.body.casefold():
                logger.info("Already commented on PR #%s in repository %s. Skipping duplicate comment.",
                            number, repository_id)
                return False

        self.github.create_pull_request_comment(repository_id, number, message)
        logger.info("Commented on PR #%s in repository %s", number, repository_id)
        return True

    def update_pull_request_status_check(
        self,
        repository_id: int,
        head_sha: str,
        policy_config: Optional[PolicyConfig],
        policy_keys: Sequence[str],
    ) -> CheckRun:
        """Create or update the policy check run on ``head_sha``.

        The run fails while ``policy_keys`` is non-empty and passes otherwise,
        so a fixed repository unblocks its pull requests on the next event.
        """
        name = _status_check_name(policy_config)
        if policy_keys:
            conclusion = "failure"
            title = "Policy violations found"
            summary = "This repository violates the following policies:\n\n" + _bullets(policy_keys)
        else:
            conclusion = "success"
            title = "All policies satisfied"
            summary = "No policy violations were found for this repository."

        existing = next(
            (run for run in self.github.list_check_runs(repository_id, head_sha)
             if run.name.casefold() == name.casefold()),
            None,
        )
        if existing is not None:
            logger.info("Check run '%s' already exists for %s. Updating check run %s.", name, head_sha, existing.id)
            run = self.github.update_check_run(repository_id, existing.id, conclusion, title, summary)
        else:
            run = self.github.create_check_run(repository_id, name, head_sha, conclusion, title, summary)

        logger.info("Set check run '%s' on %s in repository %s to %s",
                    name, head_sha, repository_id, conclusion)
        return run

    def _comment_on_pull_requests(
        self, violation: PolicyViolation, policy_config: Optional[PolicyConfig]
    ) -> ActionStatus:
        repository = violation.repository
        github_id = repository.github_repository_id
        pull_requests = self._open_pull_requests(violation, COMMENT_ON_PRS)
        if pull_requests is None:
            return ActionStatus.failed
        if not pull_requests:
            return self._log(violation, COMMENT_ON_PRS, ActionStatus.skipped, "No open pull requests found")

        statuses = []
        for pr in pull_requests:
            try:
                commented = self.comment_on_pull_request(
                    github_id, pr.number, policy_config, [violation.policy.policy_key]
                )
            except Exception as e:
                logger.exception("Failed to comment on PR #%s in repository %s", pr.number, repository.name)
                statuses.append(self._log(violation, COMMENT_ON_PRS, ActionStatus.failed,
                                          f"Failed to comment on PR #{pr.number}: {e}"))
                continue
            if commented:
                statuses.append(self._log(violation, COMMENT_ON_PRS, ActionStatus.success,
                                          f"Commented on PR #{pr.number}"))
            else:
                statuses.append(self._log(violation, COMMENT_ON_PRS, ActionStatus.skipped,
                                          f"Already commented on PR #{pr.number}"))
        return _overall(statuses)

    def _block_pull_requests(
        self, violation: PolicyViolation, policy_config: Optional[PolicyConfig]
    ) -> ActionStatus:
        repository = violation.repository
        github_id = repository.github_repository_id
        pull_requests = self._open_pull_requests(violation, BLOCK_PRS)
        if pull_requests is None:
            return ActionStatus.failed
        if not pull_requests:
            return self._log(violation, BLOCK_PRS, ActionStatus.skipped, "No open pull requests found")

        statuses = []
        for pr in pull_requests:
            if not pr.head.sha:
                logger.warning("PR #%s in repository %s has no head SHA. Skipping.", pr.number, repository.name)
                continue
            try:
                self.update_pull_request_status_check(
                    github_id, pr.head.sha, policy_config, [violation.policy.policy_key]
                )
            except Exception as e:
                logger.exception("Failed to set check run for PR #%s in repository %s", pr.number, repository.name)
                statuses.append(self._log(violation, BLOCK_PRS, ActionStatus.failed,
                                          f"Failed to block PR #{pr.number}: {e}"))
                continue
            statuses.append(self._log(violation, BLOCK_PRS, ActionStatus.success,
                                      f"Created/updated status check for PR #{pr.number}"))
        return _overall(statuses)

    def _open_pull_requests(self, violation: PolicyViolation, action_type: str) -> Optional[List[PullRequest]]:
        """Open pull requests of the violating repository, or None after logging a failure."""
        repository = violation.repository
        try:
            pull_requests = self.github.list_open_pull_requests(repository.github_repository_id)
        except Exception as e:
            logger.exception("Failed to list pull requests for repository %s", repository.name)
            self._log(violation, action_type, ActionStatus.failed, f"Exception: {e}")
            return None
        if not pull_requests:
            logger.info("No open PRs found for repository %s. Skipping %s.", repository.name, action_type)
        return pull_requests

    def _log(self, violation: PolicyViolation, action_type: str, status: ActionStatus, details: str) -> ActionStatus:
        audit_service.log_action(
            self.db,
            repository_id=violation.repository_id,
            policy_id=violation.policy_id,
            action_type=action_type,
            status=status,
            details=details,
            scan_id=violation.scan_id,
        )
        return status


def _bullets(policy_keys: Iterable[str]) -> str:
    return "\n".join(f"- {key}" for key in policy_keys)


def _comment_message(policy_config: Optional[PolicyConfig], policy_keys: Sequence[str]) -> str:
    details = policy_config.pr_comment_details if policy_config else None
    if details is not None and details.message.strip():
        return details.message
    return (
        "**Policy Compliance Violations Detected**\n\n"
        "This pull request is associated with a repository that violates the following policies:\n\n"
        f"{_bullets(policy_keys)}\n\n"
        "Please address these violations before merging."
    )


def _status_check_name(policy_config: Optional[PolicyConfig]) -> str:
    details = policy_config.block_prs_details if policy_config else None
    if details is not None and details.status_check_name.strip():
        return details.status_check_name
    return DEFAULT_STATUS_CHECK_NAME


def _overall(statuses: Sequence[ActionStatus]) -> ActionStatus:
    """One status for a per-pull-request batch: any failure wins, then any success."""
    if ActionStatus.failed in statuses:
        return ActionStatus.failed
    if ActionStatus.success in statuses:
        return ActionStatus.success
    return ActionStatus.skipped
