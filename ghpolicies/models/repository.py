"""Repository model mirroring one repository of the audited organization."""

from sqlalchemy import Column, Integer, BigInteger, String, DateTime, Enum
from sqlalchemy.orm import relationship
from ghpolicies.db.base import Base
import enum


class ComplianceStatus(str, enum.Enum):
    pending = "pending"
    compliant = "compliant"
    non_compliant = "non_compliant"


class Repository(Base):
    """Local record of a remote repository.

    Identity is the immutable GitHub numeric id; ``name`` follows renames.
    Deleting a repository removes its violations and action logs.
    """
    __tablename__ = "repositories"

    id = Column(Integer, primary_key=True, autoincrement=True)
    github_repository_id = Column(BigInteger, unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False, index=True)  # owner/name
    compliance_status = Column(Enum(ComplianceStatus), default=ComplianceStatus.pending, nullable=False)
    last_scanned_at = Column(DateTime, nullable=True)

    violations = relationship(
        "PolicyViolation", back_populates="repository", cascade="all, delete"
    )
    action_logs = relationship(
        "ActionLog", back_populates="repository", cascade="all, delete"
    )
