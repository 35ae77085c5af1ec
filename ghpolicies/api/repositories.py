"""Repositories API router: compliance overview."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ghpolicies.core.security import require_team_member
from ghpolicies.db.session import get_db
from ghpolicies.models.repository import ComplianceStatus, Repository
from ghpolicies.schemas.schemas import RepositoryListResponse, RepositoryOut

router = APIRouter(prefix="/repositories", tags=["repositories"], dependencies=[Depends(require_team_member)])


@router.get("/", response_model=RepositoryListResponse)
def list_repositories(
    search: Optional[str] = Query(None),
    status: Optional[ComplianceStatus] = Query(None),
    db: Session = Depends(get_db),
):
    """List repositories with their compliance status from the latest scan."""
    query = db.query(Repository)
    if search:
        query = query.filter(Repository.name.ilike(f"%{search}%"))
    if status:
        query = query.filter(Repository.compliance_status == status)
    repositories = query.order_by(Repository.name).all()

    return RepositoryListResponse(
        repositories=[RepositoryOut.model_validate(r) for r in repositories],
        total=len(repositories),
        compliant=sum(1 for r in repositories if r.compliance_status == ComplianceStatus.compliant),
        non_compliant=sum(1 for r in repositories if r.compliance_status == ComplianceStatus.non_compliant),
    )
