"""Pydantic schemas for API request/response serialization."""

from pydantic import BaseModel
from typing import Optional, List
from datetime import datetime

from ghpolicies.models.action_log import ActionStatus
from ghpolicies.models.repository import ComplianceStatus
from ghpolicies.models.scan import ScanStatus


# ---- Scans ----
class ScanOut(BaseModel):
    id: int
    status: ScanStatus
    started_at: datetime
    completed_at: Optional[datetime] = None
    violation_count: int = 0

    class Config:
        from_attributes = True

class ScanListResponse(BaseModel):
    scans: List[ScanOut]
    total: int
    page: int

class ScanQueuedResponse(BaseModel):
    task_id: str
    status: str = "queued"

class ViolationOut(BaseModel):
    id: int
    scan_id: int
    repository_id: int
    repository_name: str
    policy_key: str
    details: Optional[str] = None


# ---- Repositories ----
class RepositoryOut(BaseModel):
    id: int
    github_repository_id: int
    name: str
    compliance_status: ComplianceStatus
    last_scanned_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class RepositoryListResponse(BaseModel):
    repositories: List[RepositoryOut]
    total: int
    compliant: int
    non_compliant: int


# ---- Action logs ----
class ActionLogOut(BaseModel):
    id: int
    repository_id: int
    policy_id: int
    scan_id: Optional[int] = None
    action_type: str
    status: ActionStatus
    details: Optional[str] = None
    timestamp: datetime

    class Config:
        from_attributes = True

class ActionLogListResponse(BaseModel):
    logs: List[ActionLogOut]
    total: int
    page: int
    page_size: int
