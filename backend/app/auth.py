import base64
import hashlib
import hmac
import os
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Header, HTTPException, status

from app.config import get_settings

ADMIN_SUBJECT = "admin"
PROVIDER_SUBJECT_PREFIX = "provider:"


def _read_ttl_hours() -> int:
    try:
        value = int(os.getenv("AUTH_TOKEN_TTL_HOURS", "12"))
    except ValueError:
        return 12
    return value if value > 0 else 12


TOKEN_TTL_HOURS = _read_ttl_hours()


def _secret() -> bytes:
    secret = get_settings().auth_secret
    if not secret:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Token signing is not configured (AUTH_SECRET missing)",
        )
    return secret.encode("utf-8")


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def _b64urldecode(value: str) -> bytes:
    padding = "=" * ((4 - len(value) % 4) % 4)
    return base64.urlsafe_b64decode((value + padding).encode("utf-8"))


def create_access_token(subject: str = ADMIN_SUBJECT) -> tuple[str, str]:
    expiry = datetime.now(timezone.utc) + timedelta(hours=TOKEN_TTL_HOURS)
    payload = f"{subject}|{int(expiry.timestamp())}".encode("utf-8")
    payload_part = _b64url(payload)
    sig = hmac.new(_secret(), payload, hashlib.sha256).digest()
    token = f"{payload_part}.{_b64url(sig)}"
    return token, expiry.isoformat()


def verify_access_token(token: str) -> Optional[str]:
    try:
        payload_part, sig_part = token.split(".", 1)
        payload = _b64urldecode(payload_part)
        sent_sig = _b64urldecode(sig_part)
        expected_sig = hmac.new(_secret(), payload, hashlib.sha256).digest()
        if not hmac.compare_digest(sent_sig, expected_sig):
            return None
        subject, expiry_ts = payload.decode("utf-8").split("|", 1)
        if datetime.now(timezone.utc).timestamp() > int(expiry_ts):
            return None
        return subject
    except (ValueError, UnicodeDecodeError):
        return None


def check_admin_password(password: str) -> bool:
    expected = get_settings().admin_password
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin access is not configured (ADMIN_PASSWORD missing)",
        )
    return hmac.compare_digest(password.encode("utf-8"), expected.encode("utf-8"))


def parse_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1].strip() or None


def resolve_request_subject(authorization: Optional[str]) -> Optional[str]:
    token = parse_bearer_token(authorization)
    if not token:
        return None
    return verify_access_token(token)


def require_admin(authorization: Optional[str] = Header(default=None)) -> str:
    _secret()
    subject = resolve_request_subject(authorization)
    if subject != ADMIN_SUBJECT:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or missing bearer token")
    return subject


def provider_subject(provider_id: str) -> str:
    return f"{PROVIDER_SUBJECT_PREFIX}{provider_id}"


def require_provider(authorization: Optional[str] = Header(default=None)) -> str:
    """Resolve the provider id carried by a provider bearer token."""
    _secret()
    subject = resolve_request_subject(authorization) or ""
    provider_id = subject[len(PROVIDER_SUBJECT_PREFIX):] if subject.startswith(PROVIDER_SUBJECT_PREFIX) else ""
    if not provider_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or missing provider token")
    return provider_id
