from typing import Iterator

from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from qrsaas.config import BASE_DIR, DATABASE_URL, DB_TIMEOUT_SECONDS


def build_engine(db_url: str | None = None):
    db_url = db_url or DATABASE_URL
    if db_url and not db_url.startswith("sqlite"):
        return create_engine(db_url, echo=False, pool_pre_ping=True, pool_timeout=DB_TIMEOUT_SECONDS)

    if db_url == "sqlite://":
        # banco em memória (útil para scripts); uma única conexão compartilhada
        return create_engine(
            db_url,
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    if not db_url:
        sqlite_file = BASE_DIR / "data.db"
        sqlite_file.parent.mkdir(parents=True, exist_ok=True)
        db_url = f"sqlite:///{sqlite_file}"

    return create_engine(
        db_url,
        echo=False,
        connect_args={"check_same_thread": False, "timeout": DB_TIMEOUT_SECONDS},
    )


engine = build_engine()


def init_db(bind=None) -> None:
    """Cria as tabelas caso ainda não existam."""
    from qrsaas import models  # noqa: F401

    SQLModel.metadata.create_all(bind or engine)


def get_session() -> Iterator[Session]:
    """Dependency do FastAPI para fornecer sessão do banco."""
    with Session(engine) as session:
        yield session
