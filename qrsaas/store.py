"""Persistência dos QR Codes.

O índice único em ``QRCode.short_code`` é a fonte de verdade da unicidade;
contadores (scans e cota do usuário) são sempre atualizados com um único
``UPDATE`` atômico, nunca lendo e regravando o valor na aplicação.
"""
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlmodel import Session, select

from qrsaas.app_logger import get_logger
from qrsaas.errors import (
    DependencyUnavailable,
    DuplicateShortCode,
    NotFound,
    QuotaExceeded,
    Unauthorized,
)
from qrsaas.models import QRCode, User, utcnow

logger = get_logger("store")

MUTABLE_FIELDS = {
    "title",
    "destination_url",
    "error_correction",
    "box_size",
    "border",
    "fill_color",
    "back_color",
    "image_path",
    "image_url",
}


@contextmanager
def guarded(session: Session) -> Iterator[None]:
    """Converte timeout/indisponibilidade do banco em erro recuperável."""
    try:
        yield
    except (OperationalError, PoolTimeoutError) as exc:
        session.rollback()
        logger.warning("Banco indisponível: %s", exc)
        raise DependencyUnavailable() from exc


class QRRecordStore:
    def __init__(self, session: Session):
        self.session = session

    def create(self, record: QRCode) -> QRCode:
        """Grava o registro já com o código curto, num único INSERT."""
        with guarded(self.session):
            self.session.add(record)
            try:
                self.session.commit()
            except IntegrityError as exc:
                self.session.rollback()
                if "short_code" in str(exc.orig):
                    raise DuplicateShortCode() from exc
                raise
            self.session.refresh(record)
        return record

    def short_code_exists(self, code: str) -> bool:
        return self.find_by_short_code(code) is not None

    def find_by_short_code(self, code: str) -> Optional[QRCode]:
        with guarded(self.session):
            statement = select(QRCode).where(QRCode.short_code == code)
            return self.session.exec(statement).first()

    def find_active_by_short_code(self, code: str) -> Optional[QRCode]:
        with guarded(self.session):
            statement = select(QRCode).where(
                QRCode.short_code == code, QRCode.is_active == True  # noqa: E712
            )
            return self.session.exec(statement).first()

    def get_owned(self, qr_id: int, owner_id: int) -> QRCode:
        with guarded(self.session):
            record = self.session.get(QRCode, qr_id)
        if not record or not record.is_active:
            raise NotFound()
        if record.owner_id != owner_id:
            raise Unauthorized()
        return record

    def increment_scan_count(self, qr_id: int) -> bool:
        with guarded(self.session):
            result = self.session.execute(
                update(QRCode)
                .where(QRCode.id == qr_id)
                .values(scan_count=QRCode.scan_count + 1)
            )
            self.session.commit()
        return result.rowcount > 0

    def list_by_owner(self, owner_id: int, active_only: bool = True) -> list[QRCode]:
        statement = select(QRCode).where(QRCode.owner_id == owner_id)
        if active_only:
            statement = statement.where(QRCode.is_active == True)  # noqa: E712
        statement = statement.order_by(QRCode.created_at.desc(), QRCode.id.desc())
        with guarded(self.session):
            return list(self.session.exec(statement).all())

    def update(self, record: QRCode, changes: dict) -> QRCode:
        unknown = set(changes) - MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Campos não editáveis: {', '.join(sorted(unknown))}")

        for field, value in changes.items():
            setattr(record, field, value)
        record.updated_at = utcnow()
        with guarded(self.session):
            self.session.add(record)
            self.session.commit()
            self.session.refresh(record)
        return record

    def soft_delete(self, qr_id: int, owner_id: int) -> None:
        with guarded(self.session):
            result = self.session.execute(
                update(QRCode)
                .where(
                    QRCode.id == qr_id,
                    QRCode.owner_id == owner_id,
                    QRCode.is_active == True,  # noqa: E712
                )
                .values(is_active=False, updated_at=utcnow())
            )
            if result.rowcount == 0:
                self.session.rollback()
                raise NotFound()
            self._release_quota(owner_id)
            self.session.commit()

    def reserve_quota(self, owner_id: int, enforce: bool = True) -> None:
        """Consome uma unidade da cota do usuário, sem commit.

        Roda na mesma transação do ``create`` seguinte: se o INSERT falhar,
        o rollback devolve a cota.
        """
        statement = update(User).where(User.id == owner_id)
        if enforce:
            statement = statement.where(or_(User.qr_limit < 0, User.qr_used < User.qr_limit))
        with guarded(self.session):
            result = self.session.execute(statement.values(qr_used=User.qr_used + 1))
        if result.rowcount == 0:
            logger.info("Usuário %s atingiu o limite de QR Codes", owner_id)
            raise QuotaExceeded()

    def _release_quota(self, owner_id: int) -> None:
        self.session.execute(
            update(User)
            .where(User.id == owner_id, User.qr_used > 0)
            .values(qr_used=User.qr_used - 1)
        )
