"""Action logs API router: remediation audit trail."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ghpolicies.core.security import require_team_member
from ghpolicies.db.session import get_db
from ghpolicies.models.action_log import ActionStatus
from ghpolicies.schemas.schemas import ActionLogListResponse
from ghpolicies.services.audit_service import audit_service

router = APIRouter(prefix="/action-logs", tags=["action-logs"], dependencies=[Depends(require_team_member)])


@router.get("/", response_model=ActionLogListResponse)
def list_action_logs(
    repository_id: Optional[int] = Query(None),
    policy_id: Optional[int] = Query(None),
    scan_id: Optional[int] = Query(None),
    status: Optional[ActionStatus] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
):
    """Query the action log."""
    return audit_service.query_logs(db, repository_id, policy_id, scan_id, status, page, page_size)
