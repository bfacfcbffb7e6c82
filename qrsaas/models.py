from datetime import datetime, timezone
from typing import Optional

from pydantic import NaiveDatetime
from sqlalchemy import Column, DateTime
from sqlmodel import Field, Relationship, SQLModel


def utcnow() -> datetime:
    # gravamos datetimes "naive" em UTC para que SQLite e Postgres comparem igual;
    # as colunas são declaradas como NaiveDatetime + DateTime sem timezone
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    email: str = Field(index=True, sa_column_kwargs={"unique": True})
    password_hash: str
    plan: str = Field(default="free")
    qr_limit: int = Field(default=5)
    qr_used: int = Field(default=0)
    created_at: NaiveDatetime = Field(
        default_factory=utcnow, sa_column=Column(DateTime(timezone=False), nullable=False)
    )

    qrcodes: list["QRCode"] = Relationship(back_populates="owner")


class QRCode(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    owner_id: int = Field(foreign_key="user.id", index=True)
    title: str
    destination_url: str
    short_code: str = Field(index=True, max_length=6, sa_column_kwargs={"unique": True})
    image_path: str = ""
    image_url: str = ""
    error_correction: str = Field(default="M")
    box_size: int = Field(default=10)
    border: int = Field(default=4)
    fill_color: str = Field(default="#000000")
    back_color: str = Field(default="#ffffff")
    scan_count: int = Field(default=0)
    is_active: bool = Field(default=True, index=True)
    created_at: NaiveDatetime = Field(
        default_factory=utcnow, sa_column=Column(DateTime(timezone=False), nullable=False)
    )
    updated_at: NaiveDatetime = Field(
        default_factory=utcnow, sa_column=Column(DateTime(timezone=False), nullable=False)
    )

    owner: Optional[User] = Relationship(back_populates="qrcodes")


class ScanEvent(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    qr_id: int = Field(foreign_key="qrcode.id", index=True)
    owner_id: int = Field(foreign_key="user.id", index=True)
    occurred_at: NaiveDatetime = Field(
        default_factory=utcnow, sa_column=Column(DateTime(timezone=False), nullable=False, index=True)
    )
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    referrer: Optional[str] = None
    device_type: Optional[str] = None
    os: Optional[str] = None
    browser: Optional[str] = None
    country: Optional[str] = None
    region: Optional[str] = None
    city: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
