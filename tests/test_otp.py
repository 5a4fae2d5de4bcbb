from datetime import timedelta

import pytest

from permit_hub.models.models import OtpCode, utcnow
from permit_hub.services import otp


@pytest.fixture(params=["memory", "database"])
def store(request, db_session):
    if request.param == "memory":
        return otp.MemoryOtpStore()
    return otp.DatabaseOtpStore(db_session)


def test_generate_otp_is_six_digits():
    for _ in range(50):
        code = otp.generate_otp()
        assert len(code) == 6
        assert code.isdigit()
        assert code[0] != "0"


def test_otp_keys():
    assert otp.otp_keys(" A@B.com ", "555") == ["a@b.com_555", "a@b.com", "555"]
    assert otp.otp_keys(None, "555") == ["555"]
    assert otp.otp_keys("", "  ") == []


def test_store_set_get_delete(store):
    store.set("k", "123456", 60)
    assert store.get("k") == "123456"
    store.set("k", "654321", 60)
    assert store.get("k") == "654321"
    store.delete("k")
    assert store.get("k") is None
    store.delete("missing")


def test_send_then_verify_is_single_use(store):
    result = otp.send_otp(store, "crew@acme-site.com", "555-0102")
    code = result["otp"]
    assert store.get("crew@acme-site.com_555-0102") == code
    assert store.get("555-0102") == code

    assert otp.verify_otp(store, "crew@acme-site.com", "555-0102", "000000") == (False, "Invalid or expired OTP")
    assert otp.verify_otp(store, "crew@acme-site.com", "555-0102", code) == (True, "OTP verified")
    assert otp.verify_otp(store, "crew@acme-site.com", "555-0102", code)[0] is False


def test_send_requires_an_identifier(store):
    with pytest.raises(ValueError):
        otp.send_otp(store, None, None)


def test_memory_store_expiry(monkeypatch):
    store = otp.MemoryOtpStore()
    now = [1000.0]
    monkeypatch.setattr(otp.time, "monotonic", lambda: now[0])
    store.set("k", "123456", 300)
    now[0] += 299
    assert store.get("k") == "123456"
    now[0] += 1
    assert store.get("k") is None


def test_database_store_expiry_and_purge(db_session):
    store = otp.DatabaseOtpStore(db_session)
    db_session.add(OtpCode(key="old", code="111111", expires_at=utcnow() - timedelta(seconds=1)))
    db_session.add(OtpCode(key="older", code="222222", expires_at=utcnow() - timedelta(minutes=5)))
    db_session.commit()
    store.set("fresh", "333333", 300)

    assert store.get("old") is None
    assert db_session.query(OtpCode).filter(OtpCode.key == "old").first() is None

    assert store.purge_expired() == 1
    assert store.get("fresh") == "333333"


def test_get_otp_store_follows_settings(db_session, monkeypatch):
    monkeypatch.setattr(otp.settings, "otp_store", "memory")
    assert otp.get_otp_store(db_session) is otp.get_otp_store(db_session)
    monkeypatch.setattr(otp.settings, "otp_store", "database")
    assert isinstance(otp.get_otp_store(db_session), otp.DatabaseOtpStore)


def test_send_purges_expired_codes(db_session):
    db_session.add(OtpCode(key="stale@acme-site.com", code="111111", expires_at=utcnow() - timedelta(minutes=1)))
    db_session.commit()

    otp.send_otp(otp.DatabaseOtpStore(db_session), "crew@acme-site.com", None)
    assert [row.key for row in db_session.query(OtpCode).all()] == ["crew@acme-site.com"]


def test_memory_store_purge(monkeypatch):
    store = otp.MemoryOtpStore()
    now = [1000.0]
    monkeypatch.setattr(otp.time, "monotonic", lambda: now[0])
    store.set("old", "111111", 10)
    store.set("new", "222222", 300)
    now[0] += 60
    assert store.purge_expired() == 1
    assert store.get("new") == "222222"


def test_code_is_only_echoed_when_enabled(store, monkeypatch):
    monkeypatch.setattr(otp.settings, "otp_echo", False)
    result = otp.send_otp(store, "crew@acme-site.com", None)
    assert "otp" not in result
    assert store.get("crew@acme-site.com")
