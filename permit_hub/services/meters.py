"""
MIS meter readings: consumption tracking, analytics and export.
"""
import csv
import io
import uuid
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

import structlog
from fastapi import HTTPException
from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from ..models.models import MeterReading, User, naive_utc, utcnow
from .audit import create_audit_log

logger = structlog.get_logger(__name__)

PERIOD_DAYS = {"7d": 7, "30d": 30, "90d": 90, "1y": 365}

# Relative change against the previous consumption that raises an alert
ALERT_THRESHOLD = 0.5

EXPORT_COLUMNS = [
    "id", "meterName", "meterType", "location", "readingValue", "unit",
    "readingDate", "previousValue", "consumption", "isVerified", "notes",
]


def serialize_reading(reading: MeterReading) -> dict:
    return {
        "id": str(reading.id),
        "meterName": reading.meter_name,
        "meterType": reading.meter_type,
        "location": reading.location,
        "readingValue": reading.reading_value,
        "unit": reading.unit,
        "readingDate": reading.reading_date.isoformat() if reading.reading_date else None,
        "previousValue": reading.previous_value,
        "consumption": reading.consumption,
        "notes": reading.notes,
        "isVerified": bool(reading.is_verified),
        "verifiedBy": str(reading.verified_by) if reading.verified_by else None,
        "verifiedAt": reading.verified_at.isoformat() if reading.verified_at else None,
        "createdBy": str(reading.created_by) if reading.created_by else None,
        "createdAt": reading.created_at.isoformat() if reading.created_at else None,
    }


def previous_reading(db: Session, meter_name: str, before: datetime) -> Optional[MeterReading]:
    return (
        db.query(MeterReading)
        .filter(MeterReading.meter_name == meter_name, MeterReading.reading_date <= before)
        .order_by(MeterReading.reading_date.desc(), MeterReading.created_at.desc())
        .first()
    )


def _neighbours(db: Session, reading: MeterReading) -> Tuple[Optional[MeterReading], Optional[MeterReading]]:
    """Readings of the same meter just before and just after this one, by (reading_date, created_at)."""
    same_meter = db.query(MeterReading).filter(
        MeterReading.meter_name == reading.meter_name, MeterReading.id != reading.id
    )
    before = (
        same_meter.filter(
            or_(
                MeterReading.reading_date < reading.reading_date,
                and_(MeterReading.reading_date == reading.reading_date, MeterReading.created_at <= reading.created_at),
            )
        )
        .order_by(MeterReading.reading_date.desc(), MeterReading.created_at.desc())
        .first()
    )
    after = (
        same_meter.filter(
            or_(
                MeterReading.reading_date > reading.reading_date,
                and_(MeterReading.reading_date == reading.reading_date, MeterReading.created_at > reading.created_at),
            )
        )
        .order_by(MeterReading.reading_date.asc(), MeterReading.created_at.asc())
        .first()
    )
    return before, after


def _link(reading: MeterReading, prev: Optional[MeterReading]) -> None:
    reading.previous_value = prev.reading_value if prev else None
    reading.consumption = None
    if reading.previous_value is not None:
        reading.consumption = round(reading.reading_value - reading.previous_value, 4)


def create_reading(db: Session, *, data: Dict[str, Any], actor: User, meta: Optional[dict] = None) -> MeterReading:
    reading_date = data.get("reading_date") or utcnow()
    prev = previous_reading(db, data["meter_name"], reading_date)
    previous_value = prev.reading_value if prev else None
    consumption = None
    if previous_value is not None:
        consumption = round(data["reading_value"] - previous_value, 4)

    reading = MeterReading(
        meter_name=data["meter_name"],
        meter_type=data["meter_type"],
        location=data.get("location"),
        reading_value=data["reading_value"],
        unit=data.get("unit"),
        reading_date=reading_date,
        previous_value=previous_value,
        consumption=consumption,
        notes=data.get("notes"),
        created_by=actor.id,
    )
    db.add(reading)
    db.flush()
    # A back-dated reading becomes the baseline of the one that follows it
    _, following = _neighbours(db, reading)
    if following is not None:
        _link(following, reading)
    create_audit_log(
        db,
        action="METER_READING_CREATED",
        entity="MeterReading",
        entity_id=reading.id,
        user_id=actor.id,
        new_value={"meterName": reading.meter_name, "readingValue": reading.reading_value, "consumption": consumption},
        commit=False,
        **(meta or {}),
    )
    db.commit()
    db.refresh(reading)
    logger.info("meter_reading_created", reading_id=str(reading.id), meter=reading.meter_name)
    return reading


def get_reading_or_404(db: Session, reading_id: uuid.UUID) -> MeterReading:
    reading = db.query(MeterReading).filter(MeterReading.id == reading_id).first()
    if not reading:
        raise HTTPException(status_code=404, detail="Meter reading not found")
    return reading


def verify_reading(db: Session, reading: MeterReading, *, actor: User, meta: Optional[dict] = None) -> MeterReading:
    if reading.is_verified:
        raise HTTPException(status_code=400, detail="Reading is already verified")
    reading.is_verified = True
    reading.verified_by = actor.id
    reading.verified_at = utcnow()
    create_audit_log(
        db,
        action="METER_READING_VERIFIED",
        entity="MeterReading",
        entity_id=reading.id,
        user_id=actor.id,
        old_value={"isVerified": False},
        new_value={"isVerified": True},
        commit=False,
        **(meta or {}),
    )
    db.commit()
    db.refresh(reading)
    return reading


def delete_reading(db: Session, reading: MeterReading, *, actor: User, meta: Optional[dict] = None) -> None:
    snapshot = {"meterName": reading.meter_name, "readingValue": reading.reading_value}
    reading_id = reading.id
    prev, following = _neighbours(db, reading)
    if following is not None:
        _link(following, prev)
    db.delete(reading)
    create_audit_log(
        db,
        action="METER_READING_DELETED",
        entity="MeterReading",
        entity_id=reading_id,
        user_id=actor.id,
        old_value=snapshot,
        commit=False,
        **(meta or {}),
    )
    db.commit()


def list_readings(
    db: Session,
    *,
    meter_type: Optional[str] = None,
    meter_name: Optional[str] = None,
    verified: Optional[bool] = None,
    page: int = 1,
    limit: int = 20,
) -> Tuple[List[MeterReading], int]:
    q = db.query(MeterReading)
    if meter_type:
        q = q.filter(MeterReading.meter_type == meter_type.lower())
    if meter_name:
        q = q.filter(MeterReading.meter_name == meter_name)
    if verified is not None:
        q = q.filter(MeterReading.is_verified == verified)
    total = q.count()
    items = (
        q.order_by(MeterReading.reading_date.desc(), MeterReading.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return items, total


def period_start(period: str, now: Optional[datetime] = None) -> datetime:
    if period not in PERIOD_DAYS:
        raise HTTPException(status_code=400, detail=f"period must be one of {', '.join(PERIOD_DAYS)}")
    return (now or utcnow()) - timedelta(days=PERIOD_DAYS[period])


def readings_in_period(db: Session, period: str, meter_type: Optional[str] = None, now: Optional[datetime] = None) -> List[MeterReading]:
    q = db.query(MeterReading).filter(MeterReading.reading_date >= period_start(period, now))
    if meter_type:
        q = q.filter(MeterReading.meter_type == meter_type.lower())
    return q.order_by(MeterReading.reading_date.asc(), MeterReading.created_at.asc()).all()


def consumption_alerts(readings: List[MeterReading]) -> List[dict]:
    """
    Flag readings whose consumption moved by ALERT_THRESHOLD or more against
    the previous consumption of the same meter. readings must be in date order.
    """
    last: Dict[str, float] = {}
    alerts = []
    for r in readings:
        if r.consumption is None:
            continue
        prev = last.get(r.meter_name)
        last[r.meter_name] = r.consumption
        if prev is None or prev == 0:
            continue
        change = (r.consumption - prev) / abs(prev)
        if abs(change) < ALERT_THRESHOLD:
            continue
        alerts.append({
            "id": str(r.id),
            "meterName": r.meter_name,
            "meterType": r.meter_type,
            "location": r.location,
            "type": "HIGH_CONSUMPTION" if change > 0 else "LOW_CONSUMPTION",
            "consumption": r.consumption,
            "previousConsumption": prev,
            "changePercent": round(change * 100, 1),
            "readingDate": r.reading_date.isoformat(),
        })
    alerts.reverse()
    return alerts


def build_analytics(db: Session, *, period: str = "30d", meter_type: Optional[str] = None, now: Optional[datetime] = None) -> dict:
    readings = readings_in_period(db, period, meter_type, now)

    total_consumption = sum(r.consumption for r in readings if r.consumption is not None)
    verified = sum(1 for r in readings if r.is_verified)

    by_type: Dict[str, dict] = {}
    chart: "OrderedDict[str, dict]" = OrderedDict()
    for r in readings:
        bucket = by_type.setdefault(r.meter_type, {"count": 0, "totalConsumption": 0.0})
        bucket["count"] += 1
        day = naive_utc(r.reading_date).date().isoformat()
        point = chart.setdefault(day, {"date": day, "totalConsumption": 0.0, "count": 0})
        point["count"] += 1
        if r.consumption is not None:
            bucket["totalConsumption"] += r.consumption
            point["totalConsumption"] += r.consumption

    for bucket in by_type.values():
        bucket["totalConsumption"] = round(bucket["totalConsumption"], 4)
    for point in chart.values():
        point["totalConsumption"] = round(point["totalConsumption"], 4)

    recent = sorted(readings, key=lambda r: (naive_utc(r.reading_date), naive_utc(r.created_at)), reverse=True)[:10]
    return {
        "period": period,
        "stats": {
            "totalReadings": len(readings),
            "totalConsumption": round(total_consumption, 4),
            "verifiedCount": verified,
            "pendingVerification": len(readings) - verified,
        },
        "byMeterType": by_type,
        "chartData": list(chart.values()),
        "alerts": consumption_alerts(readings),
        "recentReadings": [serialize_reading(r) for r in recent],
    }


def export_csv(readings: List[MeterReading]) -> str:
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=EXPORT_COLUMNS, extrasaction="ignore")
    writer.writeheader()
    for r in readings:
        writer.writerow(serialize_reading(r))
    return buf.getvalue()
