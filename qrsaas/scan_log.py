from datetime import datetime
from typing import Optional

from sqlmodel import Session, func, select

from qrsaas.models import ScanEvent
from qrsaas.store import guarded

AGGREGATE_FIELDS = ("country", "city", "device_type", "os", "browser", "referrer")


class ScanEventLog:
    """Log somente de inclusão dos scans, com as consultas de agregação."""

    def __init__(self, session: Session):
        self.session = session

    def append(self, event: ScanEvent) -> ScanEvent:
        with guarded(self.session):
            self.session.add(event)
            self.session.commit()
            self.session.refresh(event)
        return event

    @staticmethod
    def _scoped(statement, since: Optional[datetime], owner_id: Optional[int], qr_id: Optional[int]):
        if owner_id is None and qr_id is None:
            raise ValueError("Informe owner_id ou qr_id")
        if owner_id is not None:
            statement = statement.where(ScanEvent.owner_id == owner_id)
        if qr_id is not None:
            statement = statement.where(ScanEvent.qr_id == qr_id)
        if since is not None:
            statement = statement.where(ScanEvent.occurred_at >= since)
        return statement

    def count(self, since: Optional[datetime] = None, owner_id: Optional[int] = None, qr_id: Optional[int] = None) -> int:
        statement = self._scoped(select(func.count(ScanEvent.id)), since, owner_id, qr_id)
        with guarded(self.session):
            return self.session.exec(statement).one()

    def aggregate_by_day(
        self, since: datetime, owner_id: Optional[int] = None, qr_id: Optional[int] = None
    ) -> list[tuple[str, int]]:
        day = func.date(ScanEvent.occurred_at).label("day")
        statement = self._scoped(select(day, func.count(ScanEvent.id)), since, owner_id, qr_id)
        statement = statement.group_by(day).order_by(day)
        with guarded(self.session):
            rows = self.session.exec(statement).all()
        return [(str(d), c) for d, c in rows]

    def aggregate_by_field(
        self,
        owner_id: Optional[int],
        field: str,
        since: datetime,
        limit: Optional[int] = None,
        qr_id: Optional[int] = None,
    ) -> list[tuple[Optional[str], int]]:
        if field not in AGGREGATE_FIELDS:
            raise ValueError(f"Campo de agregação inválido: {field}")

        column = getattr(ScanEvent, field)
        total = func.count(ScanEvent.id).label("total")
        statement = self._scoped(select(column, total), since, owner_id, qr_id)
        statement = statement.group_by(column).order_by(total.desc(), column)
        if limit:
            statement = statement.limit(limit)
        with guarded(self.session):
            return [(value, c) for value, c in self.session.exec(statement).all()]

    def recent(
        self,
        owner_id: Optional[int] = None,
        qr_id: Optional[int] = None,
        since: Optional[datetime] = None,
        limit: int = 20,
    ) -> list[ScanEvent]:
        statement = self._scoped(select(ScanEvent), since, owner_id, qr_id)
        statement = statement.order_by(ScanEvent.occurred_at.desc(), ScanEvent.id.desc()).limit(limit)
        with guarded(self.session):
            return list(self.session.exec(statement).all())

    def for_record(self, qr_id: int) -> list[ScanEvent]:
        statement = (
            select(ScanEvent)
            .where(ScanEvent.qr_id == qr_id)
            .order_by(ScanEvent.occurred_at.desc(), ScanEvent.id.desc())
        )
        with guarded(self.session):
            return list(self.session.exec(statement).all())
