"""
One-time codes for registration.

Codes live behind a small key-value interface with expiry. The default
store keeps them in the otp_codes table so every API instance sees the
same codes; the memory store is for a single development process.
"""
import hmac
import secrets
import smtplib
import threading
import time
from datetime import timedelta
from email.message import EmailMessage
from typing import Dict, List, Optional, Tuple

import structlog
from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import OtpCode, naive_utc, utcnow

logger = structlog.get_logger(__name__)


class OtpStore:
    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, code: str, ttl_seconds: int) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def purge_expired(self) -> int:
        raise NotImplementedError


class MemoryOtpStore(OtpStore):
    def __init__(self):
        self._items: Dict[str, Tuple[str, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            item = self._items.get(key)
            if not item:
                return None
            code, expires = item
            if time.monotonic() >= expires:
                del self._items[key]
                return None
            return code

    def set(self, key: str, code: str, ttl_seconds: int) -> None:
        with self._lock:
            self._items[key] = (code, time.monotonic() + ttl_seconds)

    def delete(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)

    def purge_expired(self) -> int:
        now = time.monotonic()
        with self._lock:
            expired = [k for k, (_, expires) in self._items.items() if now >= expires]
            for k in expired:
                del self._items[k]
        return len(expired)


class DatabaseOtpStore(OtpStore):
    def __init__(self, db: Session):
        self.db = db

    def get(self, key: str) -> Optional[str]:
        row = self.db.query(OtpCode).filter(OtpCode.key == key).first()
        if not row:
            return None
        if naive_utc(row.expires_at) <= utcnow():
            self.db.delete(row)
            self.db.commit()
            return None
        return row.code

    def set(self, key: str, code: str, ttl_seconds: int) -> None:
        expires_at = utcnow() + timedelta(seconds=ttl_seconds)
        row = self.db.query(OtpCode).filter(OtpCode.key == key).first()
        if row:
            row.code = code
            row.expires_at = expires_at
        else:
            self.db.add(OtpCode(key=key, code=code, expires_at=expires_at))
        self.db.commit()

    def delete(self, key: str) -> None:
        self.db.query(OtpCode).filter(OtpCode.key == key).delete(synchronize_session=False)
        self.db.commit()

    def purge_expired(self) -> int:
        n = self.db.query(OtpCode).filter(OtpCode.expires_at <= utcnow()).delete(synchronize_session=False)
        self.db.commit()
        return n


_memory_store = MemoryOtpStore()


def get_otp_store(db: Session) -> OtpStore:
    if settings.otp_store.lower() == "memory":
        return _memory_store
    return DatabaseOtpStore(db)


def generate_otp() -> str:
    """Six digits, never starting with zero."""
    return str(100000 + secrets.randbelow(900000))


def otp_keys(email: Optional[str], phone: Optional[str]) -> List[str]:
    """Session key first, then each identifier on its own."""
    email = (email or "").strip().lower() or None
    phone = (phone or "").strip() or None
    keys = []
    if email and phone:
        keys.append(f"{email}_{phone}")
    if email:
        keys.append(email)
    if phone:
        keys.append(phone)
    return keys


def _send_email_otp(email: str, code: str) -> bool:
    if not (settings.smtp_host and settings.mail_from):
        logger.info("otp_email_skipped", email=email, reason="smtp_not_configured")
        return False
    msg = EmailMessage()
    msg["Subject"] = f"Your {settings.app_name} verification code"
    msg["From"] = settings.mail_from
    msg["To"] = email
    minutes = max(1, settings.otp_ttl_seconds // 60)
    msg.set_content(
        f"{settings.company_name} - Work Permit System\n\n"
        f"Your verification code is {code}.\n"
        f"It is valid for {minutes} minutes. If you did not request it, ignore this email."
    )
    with smtplib.SMTP(settings.smtp_host, settings.smtp_port) as s:
        if settings.smtp_tls:
            s.starttls()
        if settings.smtp_username and settings.smtp_password:
            s.login(settings.smtp_username, settings.smtp_password)
        s.send_message(msg)
    return True


def _send_sms_otp(phone: str, code: str) -> bool:
    # No SMS provider is wired in; the code only reaches the log
    logger.info("otp_sms_logged", phone=phone)
    return False


def send_otp(store: OtpStore, email: Optional[str], phone: Optional[str]) -> dict:
    """Store one code under every key for this email/phone and deliver it."""
    keys = otp_keys(email, phone)
    if not keys:
        raise ValueError("email or phone is required")
    store.purge_expired()
    code = generate_otp()
    for key in keys:
        store.set(key, code, settings.otp_ttl_seconds)

    result = {"email": False, "phone": False}
    if email:
        try:
            result["email"] = _send_email_otp(email.strip().lower(), code)
        except Exception as e:
            logger.warning("otp_email_failed", error=str(e))
    if phone:
        result["phone"] = _send_sms_otp(phone.strip(), code)
    logger.info("otp_sent", keys=len(keys), email_delivered=result["email"])
    if settings.otp_echo:
        result["otp"] = code
    return result


def verify_otp(store: OtpStore, email: Optional[str], phone: Optional[str], code: str) -> Tuple[bool, str]:
    """Single use: a match on any key clears all of them."""
    keys = otp_keys(email, phone)
    code = (code or "").strip()
    for key in keys:
        stored = store.get(key)
        if stored and hmac.compare_digest(stored, code):
            for k in keys:
                store.delete(k)
            logger.info("otp_verified")
            return True, "OTP verified"
    return False, "Invalid or expired OTP"
