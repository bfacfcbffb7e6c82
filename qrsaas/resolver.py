from typing import Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from qrsaas.allocator import is_valid_short_code
from qrsaas.app_logger import get_logger
from qrsaas.enrichment import enrich
from qrsaas.errors import DependencyUnavailable, NotFound
from qrsaas.models import ScanEvent
from qrsaas.scan_log import ScanEventLog
from qrsaas.schemas import ScanMetadata
from qrsaas.store import QRRecordStore

logger = get_logger("resolver")

ENRICHED_FIELDS = {"device_type", "os", "browser", "country", "region", "city", "latitude", "longitude"}


def resolve(
    session: Session,
    short_code: str,
    metadata: ScanMetadata,
    enricher: Callable[..., dict] = enrich,
) -> str:
    """Resolve o código curto para a URL de destino e registra o scan.

    Códigos malformados, inexistentes ou inativos dão ``NotFound`` sem
    registrar nada (os malformados nem chegam ao banco).
    O evento e o contador são gravações independentes: se uma falhar a
    outra continua valendo e o redirect acontece mesmo assim.
    """
    if not is_valid_short_code(short_code):
        raise NotFound()

    store = QRRecordStore(session)
    record = store.find_active_by_short_code(short_code)
    if record is None:
        raise NotFound()

    qr_id, owner_id, destination = record.id, record.owner_id, record.destination_url

    try:
        details = enricher(metadata.ip, metadata.user_agent)
    except Exception:
        logger.warning("Enriquecimento do scan %s falhou", short_code, exc_info=True)
        details = {}

    event = ScanEvent(
        qr_id=qr_id,
        owner_id=owner_id,
        ip=metadata.ip,
        user_agent=metadata.user_agent,
        referrer=metadata.referrer,
        **{k: v for k, v in details.items() if k in ENRICHED_FIELDS},
    )
    try:
        ScanEventLog(session).append(event)
    except (DependencyUnavailable, SQLAlchemyError):
        session.rollback()
        logger.exception("Falha ao gravar o scan do QR Code %s", qr_id)

    try:
        store.increment_scan_count(qr_id)
    except (DependencyUnavailable, SQLAlchemyError):
        session.rollback()
        logger.exception("Falha ao incrementar o contador do QR Code %s", qr_id)

    return destination
