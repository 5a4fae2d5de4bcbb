import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from sqlalchemy.orm import Session

from ..auth.security import require_permissions
from ..db import get_db
from ..logging import request_meta
from ..models.models import User, utcnow
from ..schemas.meters import MeterReadingCreate
from ..services import meters as svc
from .pagination import clamp, pagination


router = APIRouter(prefix="/meters", tags=["meters"])


@router.post("/readings", status_code=201)
def create_reading(
    payload: MeterReadingCreate,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("meters.create")),
):
    reading = svc.create_reading(db, data=payload.model_dump(), actor=user, meta=request_meta(request))
    return {"message": "Reading recorded", "reading": svc.serialize_reading(reading)}


@router.get("/readings")
def list_readings(
    page: int = 1,
    limit: int = 20,
    meter_type: Optional[str] = Query(default=None, alias="meterType"),
    meter_name: Optional[str] = Query(default=None, alias="meterName"),
    verified: Optional[bool] = None,
    db: Session = Depends(get_db),
    _: User = Depends(require_permissions("meters.view", "mis.access")),
):
    page, limit = clamp(page, limit)
    items, total = svc.list_readings(
        db, meter_type=meter_type, meter_name=meter_name, verified=verified, page=page, limit=limit
    )
    return {
        "readings": [svc.serialize_reading(r) for r in items],
        "pagination": pagination(page, limit, total),
    }


@router.get("/readings/{reading_id}")
def get_reading(
    reading_id: uuid.UUID,
    db: Session = Depends(get_db),
    _: User = Depends(require_permissions("meters.view", "mis.access")),
):
    return {"reading": svc.serialize_reading(svc.get_reading_or_404(db, reading_id))}


@router.put("/readings/{reading_id}/verify")
def verify_reading(
    reading_id: uuid.UUID,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("meters.verify")),
):
    reading = svc.verify_reading(db, svc.get_reading_or_404(db, reading_id), actor=user, meta=request_meta(request))
    return {"message": "Reading verified", "reading": svc.serialize_reading(reading)}


@router.delete("/readings/{reading_id}")
def delete_reading(
    reading_id: uuid.UUID,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions("meters.create")),
):
    svc.delete_reading(db, svc.get_reading_or_404(db, reading_id), actor=user, meta=request_meta(request))
    return {"message": "Reading deleted"}


@router.get("/analytics")
def analytics(
    period: str = "30d",
    meter_type: Optional[str] = Query(default=None, alias="meterType"),
    db: Session = Depends(get_db),
    _: User = Depends(require_permissions("meters.view", "mis.access")),
):
    return svc.build_analytics(db, period=period, meter_type=meter_type)


@router.get("/export")
def export(
    format: str = "csv",
    period: str = "30d",
    meter_type: Optional[str] = Query(default=None, alias="meterType"),
    db: Session = Depends(get_db),
    _: User = Depends(require_permissions("meters.export")),
):
    if format not in ("csv", "json"):
        raise HTTPException(status_code=400, detail="format must be csv or json")
    readings = svc.readings_in_period(db, period, meter_type)
    stamp = utcnow().strftime("%Y-%m-%d")
    if format == "csv":
        return Response(
            content=svc.export_csv(readings),
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="meter_readings_{period}_{stamp}.csv"'},
        )
    return {
        "exportedAt": utcnow().isoformat(),
        "period": period,
        "meterType": meter_type,
        "count": len(readings),
        "readings": [svc.serialize_reading(r) for r in readings],
    }
