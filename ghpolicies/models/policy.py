"""Policy model: one configured policy type and its remediation actions."""

import json
from typing import List

from sqlalchemy import Column, Integer, String, Text
from sqlalchemy.orm import relationship
from ghpolicies.db.base import Base


class Policy(Base):
    """Policy keyed by its normalized type tag. Superseded on reconfiguration, never deleted by a scan."""
    __tablename__ = "policies"

    id = Column(Integer, primary_key=True, autoincrement=True)
    policy_key = Column(String(100), unique=True, nullable=False, index=True)
    description = Column(Text, nullable=True)
    actions_json = Column(Text, nullable=False, default="[]")  # e.g. ["create-issue"]

    violations = relationship(
        "PolicyViolation", back_populates="policy", cascade="all, delete"
    )
    action_logs = relationship(
        "ActionLog", back_populates="policy", cascade="all, delete"
    )

    @property
    def actions(self) -> List[str]:
        return json.loads(self.actions_json) if self.actions_json else []

    @actions.setter
    def actions(self, value: List[str]) -> None:
        self.actions_json = json.dumps(list(value))
