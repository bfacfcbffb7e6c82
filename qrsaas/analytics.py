from datetime import timedelta

from sqlmodel import Session, func, select

from qrsaas import schemas
from qrsaas.models import QRCode, utcnow
from qrsaas.qr_service import to_public
from qrsaas.scan_log import ScanEventLog
from qrsaas.store import guarded

TOP_QRCODES = 5
TOP_COUNTRIES = 10


def _days(rows) -> list[schemas.DayCount]:
    return [schemas.DayCount(date=day, count=count) for day, count in rows]


def _fields(rows) -> list[schemas.FieldCount]:
    return [schemas.FieldCount(value=value, count=count) for value, count in rows]


def _recent(events) -> list[schemas.ScanEventPublic]:
    return [schemas.ScanEventPublic.model_validate(e) for e in events]


def build_dashboard(session: Session, owner_id: int, period: int = 30) -> schemas.DashboardResponse:
    since = utcnow() - timedelta(days=period)
    log = ScanEventLog(session)

    active = QRCode.is_active == True  # noqa: E712
    with guarded(session):
        total_qrcodes = session.exec(
            select(func.count(QRCode.id)).where(QRCode.owner_id == owner_id, active)
        ).one()
        top = session.exec(
            select(QRCode)
            .where(QRCode.owner_id == owner_id, active)
            .order_by(QRCode.scan_count.desc(), QRCode.id.desc())
            .limit(TOP_QRCODES)
        ).all()

    return schemas.DashboardResponse(
        period=period,
        total_qrcodes=total_qrcodes,
        total_scans=log.count(since, owner_id=owner_id),
        scans_by_day=_days(log.aggregate_by_day(since, owner_id=owner_id)),
        scans_by_country=_fields(log.aggregate_by_field(owner_id, "country", since, limit=TOP_COUNTRIES)),
        scans_by_device=_fields(log.aggregate_by_field(owner_id, "device_type", since)),
        top_qrcodes=[to_public(item) for item in top],
        recent_scans=_recent(log.recent(owner_id=owner_id, since=since, limit=20)),
    )


def build_qr_analytics(session: Session, record: QRCode, period: int = 30) -> schemas.QRAnalyticsResponse:
    since = utcnow() - timedelta(days=period)
    log = ScanEventLog(session)

    return schemas.QRAnalyticsResponse(
        qrcode=to_public(record),
        period=period,
        total_scans=log.count(since, qr_id=record.id),
        lifetime_scans=record.scan_count,
        scans_by_day=_days(log.aggregate_by_day(since, qr_id=record.id)),
        scans_by_country=_fields(
            log.aggregate_by_field(None, "country", since, limit=TOP_COUNTRIES, qr_id=record.id)
        ),
        scans_by_device=_fields(log.aggregate_by_field(None, "device_type", since, qr_id=record.id)),
        recent_scans=_recent(log.recent(qr_id=record.id, since=since, limit=100)),
    )
