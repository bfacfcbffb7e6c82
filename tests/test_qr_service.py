import random
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest
from sqlmodel import Session

from qrsaas.allocator import generate_short_code, is_valid_short_code
from qrsaas.errors import QuotaExceeded, ValidationError
from qrsaas.models import QRCode, User
from qrsaas.qr_service import create_qr_record, redirect_url_for, to_public, update_qr_record
from qrsaas.schemas import Customization, CustomizationUpdate, QRCreate, QRUpdate
from qrsaas.store import QRRecordStore


def _payload(url="https://example.com/promo", **custom):
    return QRCreate(title="Promo", destination_url=url, customization=Customization(**custom))


def _owner(session, user):
    return session.get(User, user.id)


def test_create_assigns_code_image_and_quota(session, make_user, renderer):
    user, _ = make_user()

    record = create_qr_record(session, _owner(session, user), _payload(), renderer)

    assert is_valid_short_code(record.short_code)
    assert record.scan_count == 0
    assert Path(record.image_path).read_bytes().startswith(b"\x89PNG")
    assert record.image_url.startswith("/static/")
    assert session.get(User, user.id).qr_used == 1
    public = to_public(record)
    assert public.redirect_url == redirect_url_for(record.short_code)
    assert public.redirect_url.endswith(f"/redirect/{record.short_code}")


def test_race_on_short_code_is_retried(session, make_user, make_record, renderer, monkeypatch):
    user, _ = make_user()
    taken = generate_short_code(random.Random(11))
    make_record(user.id, taken)
    # simula a corrida: a checagem prévia não vê o código já gravado
    monkeypatch.setattr(QRRecordStore, "short_code_exists", lambda self, code: False)

    record = create_qr_record(session, _owner(session, user), _payload(), renderer, rng=random.Random(11))

    assert record.short_code != taken
    assert len(list(renderer.storage_dir.iterdir())) == 1
    assert session.get(User, user.id).qr_used == 1


def test_concurrent_creates_get_distinct_codes(engine, make_user, renderer):
    user, _ = make_user(plan="premium", qr_limit=-1)

    def create(_):
        with Session(engine) as session:
            owner = session.get(User, user.id)
            return create_qr_record(session, owner, _payload(), renderer).short_code

    with ThreadPoolExecutor(max_workers=6) as pool:
        codes = list(pool.map(create, range(12)))

    assert len(set(codes)) == 12
    with Session(engine) as session:
        assert len(QRRecordStore(session).list_by_owner(user.id)) == 12
        assert session.get(User, user.id).qr_used == 12


def test_quota_exceeded_leaves_nothing_behind(session, make_user, renderer):
    user, _ = make_user(qr_limit=1)
    owner = _owner(session, user)
    create_qr_record(session, owner, _payload(), renderer, enforce_quota=True)

    with pytest.raises(QuotaExceeded):
        create_qr_record(session, owner, _payload(), renderer, enforce_quota=True)

    assert len(QRRecordStore(session).list_by_owner(user.id)) == 1
    assert len(list(renderer.storage_dir.iterdir())) == 1


def test_invalid_destination_rejected_before_persistence(session, make_user, renderer):
    user, _ = make_user()
    payload = QRCreate.model_construct(
        title="x", destination_url="javascript:alert(1)", customization=Customization()
    )

    with pytest.raises(ValidationError):
        create_qr_record(session, _owner(session, user), payload, renderer)

    assert QRRecordStore(session).list_by_owner(user.id, active_only=False) == []
    assert not renderer.storage_dir.exists() or not list(renderer.storage_dir.iterdir())
    assert session.get(User, user.id).qr_used == 0


def test_update_destination_keeps_code_and_image(session, make_user, renderer):
    user, _ = make_user()
    record = create_qr_record(session, _owner(session, user), _payload(), renderer)
    code, image = record.short_code, record.image_url

    record = update_qr_record(
        session, record, QRUpdate(destination_url="https://example.com/summer", title=" Verão "), renderer
    )

    assert record.destination_url == "https://example.com/summer"
    assert record.title == "Verão"
    assert record.short_code == code
    assert record.image_url == image


def test_customization_change_rerenders(session, make_user, renderer):
    user, _ = make_user()
    record = create_qr_record(session, _owner(session, user), _payload(), renderer)
    old_path = record.image_path

    record = update_qr_record(
        session, record, QRUpdate(customization=CustomizationUpdate(fill_color="#ff0000", box_size=5)), renderer
    )

    assert record.fill_color == "#ff0000"
    assert record.box_size == 5
    assert record.image_path != old_path
    assert not Path(old_path).exists()
    assert Path(record.image_path).exists()
    assert session.get(QRCode, record.id).back_color == "#ffffff"
