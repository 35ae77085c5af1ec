"""Scan model and the violations recorded by a scan."""

from sqlalchemy import (
    Column, Integer, Text, DateTime, ForeignKey, Enum, UniqueConstraint, func
)
from sqlalchemy.orm import relationship
from ghpolicies.db.base import Base
import enum


class ScanStatus(str, enum.Enum):
    in_progress = "in_progress"
    completed = "completed"
    failed = "failed"


class Scan(Base):
    """One pass over the organization. Leaves in_progress exactly once."""
    __tablename__ = "scans"

    id = Column(Integer, primary_key=True, autoincrement=True)
    status = Column(Enum(ScanStatus), default=ScanStatus.in_progress, nullable=False, index=True)
    started_at = Column(DateTime, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    violations = relationship("PolicyViolation", back_populates="scan", cascade="all, delete")


class PolicyViolation(Base):
    """A repository failing a policy within a scan. Immutable once written."""
    __tablename__ = "policy_violations"
    __table_args__ = (
        UniqueConstraint("scan_id", "repository_id", "policy_id", name="uq_violation_scan_repo_policy"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    scan_id = Column(Integer, ForeignKey("scans.id", ondelete="CASCADE"), nullable=False)
    repository_id = Column(Integer, ForeignKey("repositories.id", ondelete="CASCADE"), nullable=False, index=True)
    policy_id = Column(Integer, ForeignKey("policies.id", ondelete="CASCADE"), nullable=False)
    details = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    scan = relationship("Scan", back_populates="violations")
    repository = relationship("Repository", back_populates="violations")
    policy = relationship("Policy", back_populates="violations")
