"""Audit service: append-only trail of remediation attempts."""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from ghpolicies.models.action_log import ActionLog, ActionStatus


class AuditService:
    """Records immutable action log entries."""

    @staticmethod
    def log_action(
        db: Session,
        repository_id: int,
        policy_id: int,
        action_type: str,
        status: ActionStatus,
        details: Optional[str] = None,
        scan_id: Optional[int] = None,
    ) -> ActionLog:
        """Write a single action log record.

        Args:
            action_type: e.g. "create-issue", "archive-repo", "log-only"
            status: success, failed or skipped

        This method commits immediately so an entry survives a later failure
        in the same batch.
        """
        entry = ActionLog(
            repository_id=repository_id,
            policy_id=policy_id,
            scan_id=scan_id,
            action_type=action_type,
            status=status,
            details=details,
            timestamp=datetime.now(timezone.utc),
        )
        db.add(entry)
        db.commit()
        return entry

    @staticmethod
    def query_logs(
        db: Session,
        repository_id: Optional[int] = None,
        policy_id: Optional[int] = None,
        scan_id: Optional[int] = None,
        status: Optional[ActionStatus] = None,
        page: int = 1,
        page_size: int = 50,
    ):
        """Query action logs with filters and pagination."""
        query = db.query(ActionLog)

        if repository_id:
            query = query.filter(ActionLog.repository_id == repository_id)
        if policy_id:
            query = query.filter(ActionLog.policy_id == policy_id)
        if scan_id:
            query = query.filter(ActionLog.scan_id == scan_id)
        if status:
            query = query.filter(ActionLog.status == status)

        total = query.count()
        logs = (
            query.order_by(ActionLog.timestamp.desc(), ActionLog.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )

        return {
            "logs": logs,
            "total": total,
            "page": page,
            "page_size": page_size,
        }


audit_service = AuditService()
