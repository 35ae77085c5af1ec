"""Scan executor: one pass of reconciliation and evaluation over the organization."""

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from ghpolicies.core.exceptions import ScanCancelledError
from ghpolicies.models.policy import Policy
from ghpolicies.models.repository import ComplianceStatus, Repository
from ghpolicies.models.scan import PolicyViolation, Scan, ScanStatus
from ghpolicies.policies.builtin import normalize_policy_type
from ghpolicies.schemas.config import PolicyConfig
from ghpolicies.schemas.github import RemoteRepository
from ghpolicies.services.configuration_service import ConfigurationProvider
from ghpolicies.services.policy_evaluation_service import Finding, PolicyEvaluationService

logger = logging.getLogger("ghpolicies.scan")


class ScanExecutor:
    """Runs one scan of the organization.

    Phases: load configuration, reconcile policies, reconcile repositories,
    evaluate, persist, hand off to remediation. The first unhandled error in
    any phase marks the scan failed; there is no per-repository isolation and
    no internal retry. Remediation is only scheduled after the violations are
    committed, and only when there is at least one.
    """

    def __init__(
        self,
        db: Session,
        github,
        configuration: ConfigurationProvider,
        evaluation: Optional[PolicyEvaluationService] = None,
        enqueue_remediation: Optional[Callable[[int], Any]] = None,
    ):
        self.db = db
        self.github = github
        self.configuration = configuration
        self.evaluation = evaluation or PolicyEvaluationService()
        self.enqueue_remediation = enqueue_remediation

    def execute(self, cancel_event: Optional[threading.Event] = None) -> Dict[str, Any]:
        """Run a scan and return its summary."""
        scan = Scan(status=ScanStatus.in_progress, started_at=_utcnow())
        self.db.add(scan)
        self.db.commit()
        logger.info("Starting repository scan %s", scan.id)

        github = self.github.bind(cancel_event) if cancel_event is not None else self.github

        try:
            config = self.configuration.get_config()
            self._check_cancelled(cancel_event)

            policies = self._sync_policies(config.policies)
            remote_repositories = github.list_active_repositories()
            repositories = self._sync_repositories(remote_repositories)
            logger.info("Found %d repositories to scan", len(remote_repositories))

            findings = self._evaluate(remote_repositories, repositories, config.policies, github, cancel_event)
            violation_count = self._persist(scan, findings, policies)
        except Exception as e:
            logger.exception("Scan %s failed", scan.id)
            self._mark_failed(scan)
            return {"scan_id": scan.id, "status": ScanStatus.failed.value, "error": str(e)}
        except BaseException:
            # interpreter or worker shutdown: record the failure, then let it propagate
            self._mark_failed(scan)
            raise

        scheduled = False
        if violation_count and self.enqueue_remediation is not None:
            self.enqueue_remediation(scan.id)
            scheduled = True

        logger.info("Repository scan %s finished. Found %d violations. Remediation scheduled: %s",
                    scan.id, violation_count, scheduled)
        return {
            "scan_id": scan.id,
            "status": ScanStatus.completed.value,
            "repositories": len(remote_repositories),
            "violations": violation_count,
            "remediation_scheduled": scheduled,
        }

    def _sync_policies(self, policy_configs: Sequence[PolicyConfig]) -> Dict[str, Policy]:
        """Upsert one Policy per normalized type. Unconfigured policies are kept.

        Spellings that differ only in case or separators share one row.
        """
        policy_map: Dict[str, Policy] = {}
        for existing in self.db.query(Policy).order_by(Policy.id):
            policy_map.setdefault(normalize_policy_type(existing.policy_key), existing)

        seen = set()
        for policy_config in policy_configs:
            key = normalize_policy_type(policy_config.type)
            if key in seen:
                logger.warning("Policy type '%s' is configured more than once, using the first",
                               policy_config.type)
                continue
            seen.add(key)

            description = policy_config.name or f"Policy for {key}"
            policy = policy_map.get(key)
            if policy is None:
                policy = Policy(policy_key=key, description=description)
                policy.actions = policy_config.actions
                self.db.add(policy)
                policy_map[key] = policy
                logger.info("Added policy %s with actions %s", key, policy_config.actions)
            elif (policy.policy_key != key or policy.description != description
                  or policy.actions != policy_config.actions):
                policy.policy_key = key
                policy.description = description
                policy.actions = policy_config.actions
                logger.info("Updated policy %s with actions %s", key, policy_config.actions)

        self.db.commit()
        return policy_map

    def _sync_repositories(self, remote_repositories: Sequence[RemoteRepository]) -> Dict[int, Repository]:
        """Mirror the remote repository list by GitHub id: add, rename, delete."""
        remote_ids = {r.id for r in remote_repositories}
        local = {r.github_repository_id: r for r in self.db.query(Repository).all()}

        for remote in remote_repositories:
            existing = local.get(remote.id)
            if existing is None:
                repository = Repository(
                    github_repository_id=remote.id,
                    name=remote.full_name,
                    compliance_status=ComplianceStatus.pending,
                )
                self.db.add(repository)
                local[remote.id] = repository
                logger.info("Added new repository: %s (GitHub ID: %s)", remote.full_name, remote.id)
            elif existing.name != remote.full_name:
                logger.info("Repository renamed: %s -> %s (GitHub ID: %s)",
                            existing.name, remote.full_name, remote.id)
                existing.name = remote.full_name

        removed = [r for github_id, r in local.items() if github_id not in remote_ids]
        if removed:
            logger.info("Removing %d repositories that no longer exist in GitHub: %s",
                        len(removed), ", ".join(r.name for r in removed))
            for repository in removed:
                # violations and action logs go with it
                self.db.delete(repository)
                del local[repository.github_repository_id]

        self.db.commit()
        return local

    def _evaluate(
        self,
        remote_repositories: Sequence[RemoteRepository],
        repositories: Dict[int, Repository],
        policies: Sequence[PolicyConfig],
        github,
        cancel_event: Optional[threading.Event],
    ) -> List[Tuple[Repository, Finding]]:
        results: List[Tuple[Repository, Finding]] = []
        for remote in remote_repositories:
            self._check_cancelled(cancel_event)
            repository = repositories[remote.id]
            findings = self.evaluation.evaluate_repository(remote, policies, github)

            repository.compliance_status = (
                ComplianceStatus.non_compliant if findings else ComplianceStatus.compliant
            )
            repository.last_scanned_at = _utcnow()
            results.extend((repository, finding) for finding in findings)
        return results

    def _persist(
        self,
        scan: Scan,
        findings: Sequence[Tuple[Repository, Finding]],
        policies: Dict[str, Policy],
    ) -> int:
        """Write violations and complete the scan in one commit.

        Triples already stored for this scan are skipped; the unique
        constraint rejects anything a concurrent writer slips in. Returns the
        number of violations inserted by this call.
        """
        existing = {
            (repository_id, policy_id)
            for repository_id, policy_id in self.db.query(
                PolicyViolation.repository_id, PolicyViolation.policy_id
            ).filter(PolicyViolation.scan_id == scan.id)
        }

        inserted = 0
        for repository, finding in findings:
            policy = policies[finding.policy_type]
            key = (repository.id, policy.id)
            if key in existing:
                continue
            existing.add(key)
            inserted += 1
            self.db.add(PolicyViolation(
                scan_id=scan.id,
                repository_id=repository.id,
                policy_id=policy.id,
                details=finding.reason,
            ))

        scan.status = ScanStatus.completed
        scan.completed_at = _utcnow()
        self.db.commit()
        return inserted

    def _mark_failed(self, scan: Scan) -> None:
        self.db.rollback()
        scan.status = ScanStatus.failed
        scan.completed_at = _utcnow()
        self.db.commit()

    @staticmethod
    def _check_cancelled(cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise ScanCancelledError("Scan cancelled")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)
