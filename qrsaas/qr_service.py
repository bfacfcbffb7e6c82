import random
from typing import Optional

from sqlmodel import Session

from qrsaas import config
from qrsaas.allocator import MAX_ATTEMPTS, allocate_short_code
from qrsaas.app_logger import get_logger
from qrsaas.errors import AllocationExhausted, DuplicateShortCode, ValidationError
from qrsaas.models import QRCode, User
from qrsaas.renderer import QRImageRenderer
from qrsaas.schemas import Customization, QRCreate, QRPublic, QRUpdate, check_destination_url
from qrsaas.store import QRRecordStore

logger = get_logger("qr")


def redirect_url_for(short_code: str) -> str:
    return f"{config.PUBLIC_BASE_URL}/redirect/{short_code}"


def to_public(record: QRCode) -> QRPublic:
    return QRPublic(
        id=record.id,
        title=record.title,
        destination_url=record.destination_url,
        short_code=record.short_code,
        redirect_url=redirect_url_for(record.short_code),
        image_url=record.image_url,
        customization=Customization.model_validate(record),
        scan_count=record.scan_count,
        is_active=record.is_active,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


def _validated_url(value: str) -> str:
    try:
        return check_destination_url(value)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc


def create_qr_record(
    session: Session,
    owner: User,
    payload: QRCreate,
    renderer: QRImageRenderer,
    rng: Optional[random.Random] = None,
    max_attempts: int = MAX_ATTEMPTS,
    enforce_quota: Optional[bool] = None,
) -> QRCode:
    """Aloca o código curto, gera a imagem e grava tudo num único INSERT.

    Se outra requisição gravar o mesmo código entre a checagem e o INSERT,
    o índice único recusa e tentamos de novo com outro código.
    """
    destination_url = _validated_url(payload.destination_url)
    if enforce_quota is None:
        enforce_quota = config.ENFORCE_QR_QUOTA
    store = QRRecordStore(session)
    owner_id = owner.id

    for _ in range(max_attempts):
        code = allocate_short_code(store.short_code_exists, rng, max_attempts)
        image_path, image_url = renderer.save(redirect_url_for(code), payload.customization)
        record = QRCode(
            owner_id=owner_id,
            title=payload.title,
            destination_url=destination_url,
            short_code=code,
            image_path=image_path,
            image_url=image_url,
            **payload.customization.model_dump(),
        )
        try:
            store.reserve_quota(owner_id, enforce=enforce_quota)
            record = store.create(record)
        except DuplicateShortCode:
            logger.info("Código %s gravado por outra requisição; realocando", code)
            renderer.discard(image_path)
            continue
        except Exception:
            renderer.discard(image_path)
            raise
        logger.info("QR Code %s criado para o usuário %s", record.short_code, owner_id)
        return record

    logger.error("Criação de QR Code esgotou %d tentativas", max_attempts)
    raise AllocationExhausted()


def update_qr_record(
    session: Session, record: QRCode, payload: QRUpdate, renderer: QRImageRenderer
) -> QRCode:
    changes = {}
    if payload.title is not None:
        changes["title"] = payload.title.strip()
    if payload.destination_url is not None:
        changes["destination_url"] = _validated_url(payload.destination_url)

    old_image = None
    if payload.customization is not None:
        custom = payload.customization.model_dump(exclude_none=True)
        custom = {k: v for k, v in custom.items() if getattr(record, k) != v}
        if custom:
            merged = Customization.model_validate(record).model_copy(update=custom)
            image_path, image_url = renderer.save(redirect_url_for(record.short_code), merged)
            old_image = record.image_path
            changes.update(custom)
            changes.update(image_path=image_path, image_url=image_url)

    if not changes:
        return record
    try:
        record = QRRecordStore(session).update(record, changes)
    except Exception:
        if old_image is not None:
            renderer.discard(changes["image_path"])
        raise
    if old_image:
        renderer.discard(old_image)
    return record
