from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import RedirectResponse, StreamingResponse
from fastapi.security import OAuth2PasswordRequestForm
from sqlmodel import Session, select

from qrsaas import config, schemas
from qrsaas.analytics import build_dashboard, build_qr_analytics
from qrsaas.app_logger import get_logger
from qrsaas.auth import (
    authenticate_user,
    create_access_token,
    get_current_user,
    get_optional_user,
    hash_password,
)
from qrsaas.database import get_session
from qrsaas.models import User
from qrsaas.qr_service import create_qr_record, to_public, update_qr_record
from qrsaas.ratelimit import RateLimiters, get_rate_limiters
from qrsaas.renderer import QRImageRenderer, get_renderer
from qrsaas.resolver import resolve
from qrsaas.scan_log import ScanEventLog
from qrsaas.store import QRRecordStore

logger = get_logger("routes")

router = APIRouter()


def _client_ip(request: Request) -> Optional[str]:
    """IP do cliente para rate limit e analytics.

    O X-Forwarded-For só é lido atrás de ``TRUSTED_PROXY_HOPS`` proxies: cada
    um acrescenta o IP de quem o chamou, então o cliente real é o N-ésimo a
    partir do fim. Entradas anteriores vêm do próprio cliente e são ignoradas.
    """
    peer = request.client.host if request.client else None
    hops = config.TRUSTED_PROXY_HOPS
    if hops <= 0:
        return peer
    chain = [p.strip() for p in request.headers.get("x-forwarded-for", "").split(",") if p.strip()]
    if not chain:
        return peer
    return chain[-hops] if len(chain) >= hops else chain[0]


@router.get("/health")
def health():
    return {"status": "ok"}


@router.post("/auth/register", response_model=schemas.Token, status_code=status.HTTP_201_CREATED)
def register_user(body: schemas.UserCreate, session: Session = Depends(get_session)):
    """Cria uma conta no plano gratuito."""
    email = body.email.strip().lower()
    if session.exec(select(User).where(User.email == email)).first():
        raise HTTPException(status_code=409, detail="E-mail já cadastrado.")

    user = User(
        name=body.name.strip(),
        email=email,
        password_hash=hash_password(body.password),
        qr_limit=config.FREE_PLAN_QR_LIMIT,
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    logger.info("Conta %s criada", user.id)

    token = create_access_token({"sub": str(user.id)})
    return schemas.Token(access_token=token)


@router.post("/auth/login", response_model=schemas.Token)
def login(
    request: Request,
    form_data: OAuth2PasswordRequestForm = Depends(),
    session: Session = Depends(get_session),
    limiters: RateLimiters = Depends(get_rate_limiters),
):
    # só tentativas com falha contam para o limite
    ip = _client_ip(request) or "unknown"
    limiters.auth.check(ip)
    user = authenticate_user(session, form_data.username, form_data.password)
    if not user:
        limiters.auth.hit(ip)
        raise HTTPException(status_code=400, detail="Credenciais inválidas.")

    token = create_access_token({"sub": str(user.id)})
    return schemas.Token(access_token=token)


@router.get("/me", response_model=schemas.UserPublic)
def current_user(me: User = Depends(get_current_user)):
    return schemas.UserPublic.model_validate(me)


@router.post("/qr", response_model=schemas.QRPublic, status_code=status.HTTP_201_CREATED)
def create_qr(
    payload: schemas.QRCreate,
    session: Session = Depends(get_session),
    me: User = Depends(get_current_user),
    renderer: QRImageRenderer = Depends(get_renderer),
    limiters: RateLimiters = Depends(get_rate_limiters),
):
    limiters.create.hit(str(me.id))
    record = create_qr_record(session, me, payload, renderer)
    return to_public(record)


@router.get("/qr", response_model=list[schemas.QRPublic])
def list_qr(
    include_inactive: bool = False,
    session: Session = Depends(get_session),
    me: User = Depends(get_current_user),
):
    records = QRRecordStore(session).list_by_owner(me.id, active_only=not include_inactive)
    return [to_public(item) for item in records]


@router.get("/qr/{qr_id}", response_model=schemas.QRPublic)
def get_qr(qr_id: int, session: Session = Depends(get_session), me: User = Depends(get_current_user)):
    return to_public(QRRecordStore(session).get_owned(qr_id, me.id))


@router.put("/qr/{qr_id}", response_model=schemas.QRPublic)
def update_qr(
    qr_id: int,
    body: schemas.QRUpdate,
    session: Session = Depends(get_session),
    me: User = Depends(get_current_user),
    renderer: QRImageRenderer = Depends(get_renderer),
):
    record = QRRecordStore(session).get_owned(qr_id, me.id)
    record = update_qr_record(session, record, body, renderer)
    return to_public(record)


@router.delete("/qr/{qr_id}")
def delete_qr(qr_id: int, session: Session = Depends(get_session), me: User = Depends(get_current_user)):
    store = QRRecordStore(session)
    store.get_owned(qr_id, me.id)
    store.soft_delete(qr_id, me.id)
    return {"detail": "QR Code removido."}


@router.get("/qr/{qr_id}/scans/export")
def export_scans_csv(qr_id: int, session: Session = Depends(get_session), me: User = Depends(get_current_user)):
    QRRecordStore(session).get_owned(qr_id, me.id)
    scans = ScanEventLog(session).for_record(qr_id)

    def iter_csv():
        yield "id,occurred_at,ip,device,os,browser,country,city,referrer\n"
        for s in scans:
            row = [
                s.id,
                s.occurred_at.isoformat(),
                s.ip or "",
                s.device_type or "",
                s.os or "",
                s.browser or "",
                s.country or "",
                s.city or "",
                s.referrer or "",
            ]
            yield ",".join(str(v).replace(",", " ") for v in row) + "\n"

    return StreamingResponse(
        iter_csv(),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="qr_{qr_id}_scans.csv"'},
    )


@router.get("/redirect/{short_code}")
def redirect_scan(
    short_code: str,
    request: Request,
    session: Session = Depends(get_session),
    viewer: Optional[User] = Depends(get_optional_user),
    limiters: RateLimiters = Depends(get_rate_limiters),
):
    ip = _client_ip(request)
    # contas pagas autenticadas não entram no limite por IP
    if viewer is None or viewer.plan == "free":
        limiters.scan.hit(ip or "unknown")

    metadata = schemas.ScanMetadata(
        ip=ip,
        user_agent=request.headers.get("user-agent") or None,
        referrer=request.headers.get("referer") or None,
    )
    destination = resolve(session, short_code, metadata)
    return RedirectResponse(url=destination)


@router.get("/analytics/dashboard", response_model=schemas.DashboardResponse)
def analytics_dashboard(
    period: int = Query(30, ge=1, le=365),
    session: Session = Depends(get_session),
    me: User = Depends(get_current_user),
):
    return build_dashboard(session, me.id, period)


@router.get("/analytics/qr/{qr_id}", response_model=schemas.QRAnalyticsResponse)
def analytics_qr(
    qr_id: int,
    period: int = Query(30, ge=1, le=365),
    session: Session = Depends(get_session),
    me: User = Depends(get_current_user),
):
    record = QRRecordStore(session).get_owned(qr_id, me.id)
    return build_qr_analytics(session, record, period)
