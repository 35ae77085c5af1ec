"""Scans API router: on-demand scans and their results."""

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from ghpolicies.core.exceptions import not_found
from ghpolicies.core.security import require_team_member
from ghpolicies.db.session import get_db
from ghpolicies.models.scan import PolicyViolation, Scan, ScanStatus
from ghpolicies.schemas.schemas import ScanListResponse, ScanOut, ScanQueuedResponse, ViolationOut
from ghpolicies.tasks.celery_app import perform_scan, process_actions_for_scan

router = APIRouter(prefix="/scans", tags=["scans"], dependencies=[Depends(require_team_member)])


def _scan_out(db: Session, scan: Scan) -> ScanOut:
    count = db.query(func.count(PolicyViolation.id)).filter(PolicyViolation.scan_id == scan.id).scalar()
    out = ScanOut.model_validate(scan)
    out.violation_count = count or 0
    return out


def _get_scan(db: Session, scan_id: int) -> Scan:
    scan = db.query(Scan).filter(Scan.id == scan_id).first()
    if not scan:
        raise not_found(f"Scan {scan_id} not found")
    return scan


@router.post("/", response_model=ScanQueuedResponse, status_code=202)
def trigger_scan():
    """Queue an on-demand scan."""
    task = perform_scan.delay()
    return ScanQueuedResponse(task_id=task.id)


@router.get("/", response_model=ScanListResponse)
def list_scans(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    """List scans, newest first."""
    query = db.query(Scan)
    total = query.count()
    scans = query.order_by(Scan.id.desc()).offset((page - 1) * page_size).limit(page_size).all()
    return ScanListResponse(scans=[_scan_out(db, s) for s in scans], total=total, page=page)


@router.get("/{scan_id}", response_model=ScanOut)
def get_scan(scan_id: int, db: Session = Depends(get_db)):
    return _scan_out(db, _get_scan(db, scan_id))


@router.get("/{scan_id}/violations", response_model=List[ViolationOut])
def list_violations(scan_id: int, db: Session = Depends(get_db)):
    """Violations recorded by a scan."""
    _get_scan(db, scan_id)
    violations = (
        db.query(PolicyViolation)
        .options(joinedload(PolicyViolation.repository), joinedload(PolicyViolation.policy))
        .filter(PolicyViolation.scan_id == scan_id)
        .order_by(PolicyViolation.id)
        .all()
    )
    return [
        ViolationOut(
            id=v.id,
            scan_id=v.scan_id,
            repository_id=v.repository_id,
            repository_name=v.repository.name,
            policy_key=v.policy.policy_key,
            details=v.details,
        )
        for v in violations
    ]


@router.post("/{scan_id}/actions", response_model=ScanQueuedResponse, status_code=202)
def rerun_actions(scan_id: int, db: Session = Depends(get_db)):
    """Queue remediation again for a completed scan."""
    scan = _get_scan(db, scan_id)
    if scan.status != ScanStatus.completed:
        raise HTTPException(status_code=409, detail=f"Scan {scan_id} has not completed")
    task = process_actions_for_scan.delay(scan_id)
    return ScanQueuedResponse(task_id=task.id)
