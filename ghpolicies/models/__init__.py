"""Models package: import all models so metadata.create_all can discover them."""

from ghpolicies.models.repository import Repository, ComplianceStatus
from ghpolicies.models.policy import Policy
from ghpolicies.models.scan import Scan, ScanStatus, PolicyViolation
from ghpolicies.models.action_log import ActionLog, ActionStatus

__all__ = [
    "Repository", "ComplianceStatus", "Policy",
    "Scan", "ScanStatus", "PolicyViolation",
    "ActionLog", "ActionStatus",
]
