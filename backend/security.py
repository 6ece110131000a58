import base64
import hashlib
import hmac
import json
import logging
import os
import secrets
import time
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from database import get_db, to_object_id
from schemas import Role

logger = logging.getLogger(__name__)

AUTH_SECRET = os.getenv("AUTH_SECRET", "")
AUTH_TOKEN_TTL = int(os.getenv("AUTH_TOKEN_TTL", "604800"))
PBKDF2_ITERATIONS = 120000

if not AUTH_SECRET:
    logger.warning("AUTH_SECRET not set; generated a per-process secret, tokens will not survive a restart")
    AUTH_SECRET = secrets.token_hex(32)

bearer_scheme = HTTPBearer(auto_error=False)


# ========== PASSWORDS ==========

def hash_password(password: str) -> str:
    salt = os.urandom(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt, PBKDF2_ITERATIONS)
    return f"pbkdf2_sha256${PBKDF2_ITERATIONS}${salt.hex()}${digest.hex()}"


def verify_password(password: str, stored: Optional[str]) -> bool:
    if not stored:
        return False
    try:
        algorithm, iterations, salt_hex, digest_hex = stored.split("$")
        iterations = int(iterations)
        salt = bytes.fromhex(salt_hex)
    except ValueError:
        return False
    if algorithm != "pbkdf2_sha256":
        return False
    candidate = hashlib.pbkdf2_hmac("sha256", password.encode(), salt, iterations)
    return hmac.compare_digest(candidate.hex(), digest_hex)


# ========== TOKENS ==========

def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()


def _b64decode(data: str) -> bytes:
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


def _sign(body: str) -> str:
    return hmac.new(AUTH_SECRET.encode(), body.encode(), hashlib.sha256).hexdigest()


def issue_token(user_id: str, role: str) -> str:
    payload = {"sub": user_id, "role": role, "exp": int(time.time()) + AUTH_TOKEN_TTL}
    body = _b64encode(json.dumps(payload, separators=(",", ":")).encode())
    return f"{body}.{_sign(body)}"


def decode_token(token: str) -> Optional[dict]:
    """Return the token payload, or None if the signature or expiry check fails."""
    body, _, signature = token.partition(".")
    if not body or not signature:
        return None
    if not hmac.compare_digest(_sign(body), signature):
        return None
    try:
        payload = json.loads(_b64decode(body))
    except ValueError:
        return None
    if not isinstance(payload, dict) or payload.get("exp", 0) < time.time():
        return None
    return payload


# ========== DEPENDENCIES ==========

def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db=Depends(get_db),
) -> dict:
    if credentials is None:
        raise HTTPException(401, "Missing bearer token")
    payload = decode_token(credentials.credentials)
    if payload is None:
        raise HTTPException(401, "Invalid or expired token")
    oid = to_object_id(payload.get("sub"))
    user = db["user"].find_one({"_id": oid}) if oid else None
    if not user:
        raise HTTPException(401, "Invalid or expired token")
    user["id"] = str(user["_id"])
    return user


def require_admin(user: dict = Depends(get_current_user)) -> dict:
    if user.get("role") != Role.ADMIN.value:
        raise HTTPException(403, "Admin access required")
    return user


def public_user(user: dict) -> dict:
    return {
        "id": str(user["_id"]),
        "name": user.get("name"),
        "email": user.get("email"),
        "phone": user.get("phone"),
        "avatar": user.get("avatar"),
        "role": user.get("role", Role.USER.value),
        "created_at": user.get("created_at"),
    }


def user_summary(user: Optional[dict]) -> Optional[dict]:
    if not user:
        return None
    return {
        "id": str(user["_id"]),
        "name": user.get("name"),
        "email": user.get("email"),
        "avatar": user.get("avatar"),
    }
