import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, is_requestor
from ..db import get_db
from ..documents.permit_pdf import render_permit_pdf
from ..documents.qr import qr_data_url, worker_registration_url
from ..logging import structlog, request_meta
from ..models.models import User
from ..schemas.base import parse_datetime
from ..schemas.permits import (
    PermitCreate,
    PermitUpdate,
    MeasuresUpdate,
    PermitExtend,
    PermitClose,
    WorkerRegistration,
)
from ..services import permissions as caps
from ..services import permits as svc
from .pagination import clamp, pagination


router = APIRouter(prefix="/permits", tags=["permits"])


# Public endpoints (worker QR flow)


@router.get("/work-types")
def work_types():
    return {"workTypes": svc.WORK_TYPES}


@router.get("/{permit_id}/public")
def public_permit(permit_id: uuid.UUID, db: Session = Depends(get_db)):
    permit = svc.get_permit_or_404(db, permit_id)
    return {"permit": svc.public_permit_info(permit)}


@router.post("/{permit_id}/workers", status_code=201)
def register_workers(permit_id: uuid.UUID, payload: WorkerRegistration, request: Request, db: Session = Depends(get_db)):
    permit = svc.get_permit_or_404(db, permit_id)
    workers = svc.register_workers(
        db,
        permit,
        contractor=payload.contractor.model_dump(),
        workers=[w.model_dump() for w in payload.workers],
        meta=request_meta(request),
    )
    return {
        "message": f"{len(workers)} worker(s) registered successfully",
        "workers": [svc.serialize_worker(w) for w in workers],
    }


# Authenticated endpoints


@router.get("")
def list_permits(
    page: int = 1,
    limit: int = 10,
    status: Optional[str] = None,
    work_type: Optional[str] = Query(default=None, alias="workType"),
    search: Optional[str] = None,
    start_date: Optional[str] = Query(default=None, alias="startDate"),
    end_date: Optional[str] = Query(default=None, alias="endDate"),
    sort_by: str = Query(default="createdAt", alias="sortBy"),
    sort_order: str = Query(default="desc", alias="sortOrder"),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    page, limit = clamp(page, limit)
    try:
        start = parse_datetime(start_date)
        end = parse_datetime(end_date)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid date filter")
    items, total = svc.list_permits(
        db,
        user,
        page=page,
        limit=limit,
        status=status,
        work_type=work_type,
        search=search,
        start_date=start,
        end_date=end,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return {
        "permits": [svc.serialize_permit(p) for p in items],
        "pagination": pagination(page, limit, total),
    }


@router.post("", status_code=201)
def create_permit(
    payload: PermitCreate,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(is_requestor),
):
    permit = svc.create_permit(db, data=payload.storage_fields(), creator=user, meta=request_meta(request))
    return {"message": "Permit request created successfully", "permit": svc.serialize_permit(permit)}


@router.get("/{permit_id}")
def get_permit(permit_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    permit = svc.get_permit_or_404(db, permit_id)
    caps.ensure_permit_capability(caps.VIEW, user, permit)
    return {"permit": svc.serialize_permit(permit, include_workers=True)}


@router.put("/{permit_id}")
def update_permit(
    permit_id: uuid.UUID,
    payload: PermitUpdate,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    permit = svc.get_permit_or_404(db, permit_id)
    caps.ensure_permit_capability(caps.UPDATE, user, permit)
    permit = svc.update_permit(db, permit, changes=payload.changes(), actor=user, meta=request_meta(request))
    return {"message": "Permit updated successfully", "permit": svc.serialize_permit(permit)}


@router.delete("/{permit_id}")
def delete_permit(permit_id: uuid.UUID, request: Request, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    permit = svc.get_permit_or_404(db, permit_id)
    caps.ensure_permit_capability(caps.DELETE, user, permit)
    svc.delete_permit(db, permit, actor=user, meta=request_meta(request))
    return {"message": "Permit deleted successfully"}


@router.get("/{permit_id}/pdf")
def permit_pdf(permit_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    permit = svc.get_permit_or_404(db, permit_id)
    caps.ensure_permit_capability(caps.VIEW, user, permit)
    content = render_permit_pdf(permit)
    structlog.get_logger().info("permit_pdf_rendered", permit_id=str(permit.id), size=len(content))
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{permit.permit_number}.pdf"'},
    )


@router.get("/{permit_id}/worker-qr")
def worker_qr(permit_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    permit = svc.get_permit_or_404(db, permit_id)
    caps.ensure_permit_capability(caps.VIEW, user, permit)
    url = worker_registration_url(permit.id)
    return {"qrCode": qr_data_url(url), "registrationUrl": url, "permitNumber": permit.permit_number}


@router.put("/{permit_id}/measures")
def update_measures(
    permit_id: uuid.UUID,
    payload: MeasuresUpdate,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    permit = svc.get_permit_or_404(db, permit_id)
    caps.ensure_permit_capability(caps.MEASURES, user, permit)
    permit = svc.update_measures(
        db, permit, measures=[m.model_dump() for m in payload.measures], actor=user, meta=request_meta(request)
    )
    return {"message": "Safety measures updated", "permit": svc.serialize_permit(permit)}


@router.put("/{permit_id}/extend")
def extend_permit(
    permit_id: uuid.UUID,
    payload: PermitExtend,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    permit = svc.get_permit_or_404(db, permit_id)
    caps.ensure_permit_capability(caps.EXTEND, user, permit)
    permit = svc.extend_permit(
        db, permit, new_end_date=payload.new_end_date, reason=payload.reason, actor=user, meta=request_meta(request)
    )
    return {"message": "Permit extended successfully", "permit": svc.serialize_permit(permit)}


@router.put("/{permit_id}/close")
def close_permit(
    permit_id: uuid.UUID,
    payload: PermitClose,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    permit = svc.get_permit_or_404(db, permit_id)
    caps.ensure_permit_capability(caps.CLOSE, user, permit)
    permit = svc.close_permit(db, permit, remarks=payload.remarks, actor=user, meta=request_meta(request))
    return {"message": "Permit closed successfully", "permit": svc.serialize_permit(permit)}
