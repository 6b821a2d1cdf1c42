import base64
import hashlib
import hmac
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Header, HTTPException, status

from app.config import env_int

TOKEN_TTL_HOURS = env_int("AUTH_TOKEN_TTL_HOURS", 24, minimum=1)
AUTH_REQUIRED = os.getenv("AUTH_REQUIRED", "false").lower() in {"1", "true", "yes"}
AUTH_DEMO_PASSWORD = os.getenv("AUTH_DEMO_PASSWORD", "slotmarket-demo")
_AUTH_SECRET = os.getenv("AUTH_SECRET", "dev-insecure-secret-change-me")
MAINTENANCE_TOKEN = os.getenv("MAINTENANCE_TOKEN", "")

ROLES = {"customer", "vendor"}


@dataclass(frozen=True)
class TokenIdentity:
    user_id: str
    role: str


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def _b64urldecode(value: str) -> bytes:
    padding = "=" * ((4 - len(value) % 4) % 4)
    return base64.urlsafe_b64decode((value + padding).encode("utf-8"))


def create_access_token(user_id: str, role: str = "customer") -> tuple[str, str]:
    if role not in ROLES:
        raise ValueError(f"Unknown role {role!r}")
    expiry = datetime.now(timezone.utc) + timedelta(hours=TOKEN_TTL_HOURS)
    payload = f"{user_id}|{role}|{int(expiry.timestamp())}".encode("utf-8")
    payload_part = _b64url(payload)
    sig = hmac.new(_AUTH_SECRET.encode("utf-8"), payload, hashlib.sha256).digest()
    token = f"{payload_part}.{_b64url(sig)}"
    return token, expiry.isoformat()


def verify_access_token(token: str) -> Optional[TokenIdentity]:
    try:
        payload_part, sig_part = token.split(".", 1)
        payload = _b64urldecode(payload_part)
        sent_sig = _b64urldecode(sig_part)
        expected_sig = hmac.new(_AUTH_SECRET.encode("utf-8"), payload, hashlib.sha256).digest()
        if not hmac.compare_digest(sent_sig, expected_sig):
            return None
        user_id, role, expiry_ts = payload.decode("utf-8").rsplit("|", 2)
        if role not in ROLES:
            return None
        if datetime.now(timezone.utc).timestamp() > int(expiry_ts):
            return None
        return TokenIdentity(user_id=user_id, role=role)
    except (ValueError, UnicodeDecodeError):
        return None


def parse_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1].strip() or None


def resolve_request_identity(authorization: Optional[str]) -> Optional[TokenIdentity]:
    token = parse_bearer_token(authorization)
    if not token:
        return None
    return verify_access_token(token)


def require_authenticated_identity(authorization: Optional[str] = Header(default=None)) -> TokenIdentity:
    identity = resolve_request_identity(authorization)
    if not identity:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or missing bearer token")
    return identity


def assert_actor_authorized(
    actor_user_id: str,
    authorization: Optional[str] = Header(default=None),
    role: Optional[str] = None,
) -> None:
    """Check the bearer token against the actor named in the request.

    The role claim only gates which side of a booking the caller may act as;
    ownership of the booking itself is verified by the lifecycle.
    """
    identity = resolve_request_identity(authorization)
    if not identity:
        if AUTH_REQUIRED:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
        return
    if identity.user_id != actor_user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Token user does not match actor user")
    if role is not None and identity.role != role:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"This action requires the {role} role")


def assert_maintenance_authorized(token: Optional[str]) -> None:
    """Gate batch endpoints behind the shared ``MAINTENANCE_TOKEN``.

    With no token configured the endpoint stays open, unless AUTH_REQUIRED is set.
    """
    if not MAINTENANCE_TOKEN:
        if AUTH_REQUIRED:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Maintenance token is not configured")
        return
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Maintenance token required")
    if not hmac.compare_digest(token.encode("utf-8"), MAINTENANCE_TOKEN.encode("utf-8")):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid maintenance token")
