"""Action log model: append-only."""

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Enum
from sqlalchemy.orm import relationship
from ghpolicies.db.base import Base
import enum


class ActionStatus(str, enum.Enum):
    success = "success"
    failed = "failed"
    skipped = "skipped"


class ActionLog(Base):
    """Audit trail of remediation attempts.

    This table is APPEND-ONLY: rows are written through AuditService and only
    disappear with their repository or policy.
    """
    __tablename__ = "action_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    repository_id = Column(Integer, ForeignKey("repositories.id", ondelete="CASCADE"), nullable=False, index=True)
    policy_id = Column(Integer, ForeignKey("policies.id", ondelete="CASCADE"), nullable=False)
    scan_id = Column(Integer, ForeignKey("scans.id", ondelete="SET NULL"), nullable=True, index=True)
    action_type = Column(String(50), nullable=False)  # create-issue, archive-repo, log-only
    status = Column(Enum(ActionStatus), nullable=False)
    details = Column(Text, nullable=True)
    timestamp = Column(DateTime, nullable=False, index=True)

    repository = relationship("Repository", back_populates="action_logs")
    policy = relationship("Policy", back_populates="action_logs")
