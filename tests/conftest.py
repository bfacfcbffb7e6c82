import os
import tempfile

# antes de importar o app: /static aponta para um diretório descartável
os.environ.setdefault("STORAGE_DIR", tempfile.mkdtemp(prefix="qrsaas-static-"))
os.environ.pop("GEOIP_URL", None)
os.environ.pop("REDIS_URL", None)

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session

from qrsaas.auth import create_access_token, hash_password
from qrsaas.database import build_engine, get_session, init_db
from qrsaas.main import app
from qrsaas.models import QRCode, User
from qrsaas.ratelimit import MemoryCounter, RateLimiters, get_rate_limiters
from qrsaas.renderer import QRImageRenderer, get_renderer

PASSWORD = "segredo123"
_password_hash = hash_password(PASSWORD)


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'test.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def renderer(tmp_path):
    return QRImageRenderer(tmp_path / "static")


@pytest.fixture
def limiters():
    return RateLimiters(MemoryCounter())


@pytest.fixture
def client(engine, renderer, limiters):
    def _session():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = _session
    app.dependency_overrides[get_renderer] = lambda: renderer
    app.dependency_overrides[get_rate_limiters] = lambda: limiters
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(engine):
    """Cria um usuário direto no banco e devolve (user, headers com bearer)."""
    counter = {"n": 0}

    def _make(email=None, plan="free", qr_limit=5):
        counter["n"] += 1
        email = email or f"user{counter['n']}@example.com"
        with Session(engine) as session:
            user = User(
                name=f"Usuário {counter['n']}",
                email=email,
                password_hash=_password_hash,
                plan=plan,
                qr_limit=qr_limit,
            )
            session.add(user)
            session.commit()
            session.refresh(user)
        token = create_access_token({"sub": str(user.id)})
        return user, {"Authorization": f"Bearer {token}"}

    return _make


@pytest.fixture
def make_record(engine):
    def _make(owner_id, short_code, destination_url="https://example.com/promo", **extra):
        with Session(engine) as session:
            record = QRCode(
                owner_id=owner_id,
                title=extra.pop("title", "Promo"),
                destination_url=destination_url,
                short_code=short_code,
                **extra,
            )
            session.add(record)
            session.commit()
            session.refresh(record)
        return record

    return _make
