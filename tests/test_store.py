from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import OperationalError
from sqlmodel import Session

from qrsaas.errors import DependencyUnavailable, DuplicateShortCode, NotFound, QuotaExceeded, Unauthorized
from qrsaas.models import QRCode, User
from qrsaas.store import QRRecordStore


def test_create_and_lookup(session, make_user):
    user, _ = make_user()
    store = QRRecordStore(session)

    record = store.create(
        QRCode(owner_id=user.id, title="Menu", destination_url="https://example.com/menu", short_code="MENU01")
    )

    assert record.id is not None
    assert record.scan_count == 0
    assert record.is_active
    assert store.find_by_short_code("MENU01").id == record.id
    assert store.find_active_by_short_code("MENU01").id == record.id
    assert store.find_by_short_code("menu01") is None
    assert store.short_code_exists("MENU01")


def test_duplicate_short_code_rejected_by_unique_index(session, make_user, make_record):
    user, _ = make_user()
    make_record(user.id, "DUP001")
    store = QRRecordStore(session)

    with pytest.raises(DuplicateShortCode):
        store.create(QRCode(owner_id=user.id, title="x", destination_url="https://a.io", short_code="DUP001"))

    # a sessão continua utilizável após o rollback
    assert store.find_by_short_code("DUP001") is not None


def test_concurrent_increments_are_not_lost(engine, make_user, make_record):
    user, _ = make_user()
    record = make_record(user.id, "HOT001")

    def scan(_):
        with Session(engine) as session:
            return QRRecordStore(session).increment_scan_count(record.id)

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(scan, range(40)))

    assert all(results)
    with Session(engine) as session:
        assert session.get(QRCode, record.id).scan_count == 40


def test_increment_unknown_record(session):
    assert QRRecordStore(session).increment_scan_count(999) is False


def test_list_by_owner_newest_first(session, make_user, make_record):
    user, _ = make_user()
    other, _ = make_user()
    first = make_record(user.id, "LST001")
    second = make_record(user.id, "LST002")
    third = make_record(user.id, "LST003")
    make_record(other.id, "LST004")
    store = QRRecordStore(session)
    store.soft_delete(second.id, user.id)

    active = store.list_by_owner(user.id)
    everything = store.list_by_owner(user.id, active_only=False)

    assert [r.id for r in active] == [third.id, first.id]
    assert [r.id for r in everything] == [third.id, second.id, first.id]


def test_soft_delete_keeps_row_but_hides_it(session, make_user, make_record):
    user, _ = make_user()
    record = make_record(user.id, "DEL001")
    store = QRRecordStore(session)

    store.soft_delete(record.id, user.id)

    assert store.find_active_by_short_code("DEL001") is None
    assert store.find_by_short_code("DEL001").is_active is False
    with pytest.raises(NotFound):
        store.soft_delete(record.id, user.id)


def test_soft_delete_requires_matching_owner(session, make_user, make_record):
    owner, _ = make_user()
    intruder, _ = make_user()
    record = make_record(owner.id, "OWN001")

    with pytest.raises(NotFound):
        QRRecordStore(session).soft_delete(record.id, intruder.id)
    assert session.get(QRCode, record.id).is_active


def test_get_owned_separates_missing_from_foreign(session, make_user, make_record):
    owner, _ = make_user()
    intruder, _ = make_user()
    record = make_record(owner.id, "OWN002")
    store = QRRecordStore(session)

    assert store.get_owned(record.id, owner.id).id == record.id
    with pytest.raises(Unauthorized):
        store.get_owned(record.id, intruder.id)
    with pytest.raises(NotFound):
        store.get_owned(12345, owner.id)


def test_update_only_touches_mutable_fields(session, make_user, make_record):
    user, _ = make_user()
    record = make_record(user.id, "UPD001")
    store = QRRecordStore(session)
    record = store.get_owned(record.id, user.id)

    updated = store.update(record, {"destination_url": "https://example.com/new", "fill_color": "red"})
    assert updated.destination_url == "https://example.com/new"
    assert updated.fill_color == "red"
    assert updated.short_code == "UPD001"

    with pytest.raises(ValueError):
        store.update(record, {"short_code": "ZZZZZZ"})


def test_quota_reservation_is_conditional(session, make_user):
    user, _ = make_user(qr_limit=2)
    store = QRRecordStore(session)

    store.reserve_quota(user.id)
    store.reserve_quota(user.id)
    session.commit()
    with pytest.raises(QuotaExceeded):
        store.reserve_quota(user.id)
    assert session.get(User, user.id).qr_used == 2


def test_unlimited_plan_and_disabled_enforcement(session, make_user):
    premium, _ = make_user(plan="premium", qr_limit=-1)
    free, _ = make_user(qr_limit=0)
    store = QRRecordStore(session)

    for _ in range(3):
        store.reserve_quota(premium.id)
    store.reserve_quota(free.id, enforce=False)
    session.commit()

    assert session.get(User, premium.id).qr_used == 3
    assert session.get(User, free.id).qr_used == 1


def test_soft_delete_releases_quota(session, make_user, make_record):
    user, _ = make_user(qr_limit=1)
    record = make_record(user.id, "QTA001")
    store = QRRecordStore(session)
    store.reserve_quota(user.id)
    session.commit()

    store.soft_delete(record.id, user.id)

    session.expire_all()
    assert session.get(User, user.id).qr_used == 0


def test_database_errors_become_retryable(session, monkeypatch):
    def locked(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    monkeypatch.setattr(session, "exec", locked)

    with pytest.raises(DependencyUnavailable) as exc:
        QRRecordStore(session).find_active_by_short_code("AAAAAA")
    assert exc.value.status_code == 503
    assert exc.value.headers == {"Retry-After": "1"}


def test_timestamps_are_naive_utc(session, make_user, make_record):
    user, _ = make_user()
    before = datetime.now(timezone.utc).replace(tzinfo=None)
    record = make_record(user.id, "TIME01")
    QRRecordStore(session).soft_delete(record.id, user.id)
    after = datetime.now(timezone.utc).replace(tzinfo=None)

    stored = session.get(QRCode, record.id)
    assert stored.created_at.tzinfo is None
    assert before <= stored.created_at <= stored.updated_at <= after
    assert session.get(User, user.id).created_at.tzinfo is None
