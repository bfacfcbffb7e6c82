from datetime import datetime
from typing import Optional
from urllib.parse import urlparse

from PIL import ImageColor
from pydantic import BaseModel, EmailStr, Field, field_validator


def check_destination_url(value: str) -> str:
    """Aceita apenas URLs absolutas http(s)."""
    value = (value or "").strip()
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc or any(c.isspace() for c in value):
        raise ValueError("URL de destino inválida: use uma URL absoluta http(s).")
    return value


def _check_color(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    ImageColor.getrgb(value)  # levanta ValueError para cores desconhecidas
    return value


def _clean_title(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("Título obrigatório.")
    return value


class UserCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(min_length=6, max_length=72)

    @field_validator("password")
    @classmethod
    def fits_bcrypt(cls, value: str) -> str:
        # o bcrypt limita a senha a 72 bytes, não caracteres
        if len(value.encode("utf-8")) > 72:
            raise ValueError("Senha longa demais (máximo de 72 bytes).")
        return value


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserPublic(BaseModel):
    id: int
    name: str
    email: str
    plan: str
    qr_limit: int
    qr_used: int
    created_at: datetime

    class Config:
        from_attributes = True


class Customization(BaseModel):
    fill_color: str = Field("#000000")
    back_color: str = Field("#ffffff")
    box_size: int = Field(10, ge=1, le=40)
    border: int = Field(4, ge=1, le=16)
    error_correction: str = Field("M", pattern="^[LMQH]$")

    @field_validator("fill_color", "back_color")
    @classmethod
    def valid_color(cls, value):
        return _check_color(value)

    class Config:
        from_attributes = True


class CustomizationUpdate(BaseModel):
    fill_color: Optional[str] = None
    back_color: Optional[str] = None
    box_size: Optional[int] = Field(None, ge=1, le=40)
    border: Optional[int] = Field(None, ge=1, le=16)
    error_correction: Optional[str] = Field(None, pattern="^[LMQH]$")

    @field_validator("fill_color", "back_color")
    @classmethod
    def valid_color(cls, value):
        return _check_color(value)


class QRCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    destination_url: str = Field(..., description="Destino do redirect")
    customization: Customization = Field(default_factory=Customization)

    @field_validator("destination_url")
    @classmethod
    def valid_url(cls, value: str) -> str:
        return check_destination_url(value)

    @field_validator("title")
    @classmethod
    def strip_title(cls, value: str) -> str:
        return _clean_title(value)


class QRUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    destination_url: Optional[str] = None
    customization: Optional[CustomizationUpdate] = None

    @field_validator("title")
    @classmethod
    def strip_title(cls, value: Optional[str]) -> Optional[str]:
        return None if value is None else _clean_title(value)

    @field_validator("destination_url")
    @classmethod
    def valid_url(cls, value: Optional[str]) -> Optional[str]:
        return None if value is None else check_destination_url(value)


class QRPublic(BaseModel):
    id: int
    title: str
    destination_url: str
    short_code: str
    redirect_url: str
    image_url: str
    customization: Customization
    scan_count: int = 0
    is_active: bool
    created_at: datetime
    updated_at: datetime


class ScanMetadata(BaseModel):
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    referrer: Optional[str] = None


class ScanEventPublic(BaseModel):
    id: int
    qr_id: int
    occurred_at: datetime
    ip: Optional[str]
    device_type: Optional[str]
    os: Optional[str]
    browser: Optional[str]
    country: Optional[str]
    city: Optional[str]
    referrer: Optional[str]

    class Config:
        from_attributes = True


class DayCount(BaseModel):
    date: str
    count: int


class FieldCount(BaseModel):
    value: Optional[str]
    count: int


class DashboardResponse(BaseModel):
    period: int
    total_qrcodes: int
    total_scans: int
    scans_by_day: list[DayCount]
    scans_by_country: list[FieldCount]
    scans_by_device: list[FieldCount]
    top_qrcodes: list[QRPublic]
    recent_scans: list[ScanEventPublic]


class QRAnalyticsResponse(BaseModel):
    qrcode: QRPublic
    period: int
    total_scans: int
    lifetime_scans: int
    scans_by_day: list[DayCount]
    scans_by_country: list[FieldCount]
    scans_by_device: list[FieldCount]
    recent_scans: list[ScanEventPublic]
