# File: apps/api/auth.py
import asyncio
import logging
import time
from typing import Any, Dict

from fastapi import Depends, Header, HTTPException
from firebase_admin import auth as firebase_auth

from .database import db
from .models import Role

logger = logging.getLogger(__name__)


async def _to_thread(fn, timeout_s: float = 25.0):
    """Run blocking SDK calls off the event loop with a soft timeout."""
    return await asyncio.wait_for(asyncio.to_thread(fn), timeout=timeout_s)


# Simple in-memory caches to reduce repeated Admin SDK + Firestore calls.
# These are best-effort and process-local.
_TOKEN_CACHE: dict[str, tuple[float, dict]] = {}
_USER_CACHE: dict[str, tuple[float, dict]] = {}


def _cache_get(cache: dict, key: str):
    item = cache.get(key)
    if not item:
        return None
    expires_at, value = item
    if expires_at < time.time():
        cache.pop(key, None)
        return None
    return value


def _cache_set(cache: dict, key: str, value: dict, ttl_s: float):
    cache[key] = (time.time() + float(ttl_s), value)


async def get_current_user(authorization: str = Header(...)) -> Dict[str, Any]:
    """Verify the Firebase ID token and return the user's profile with uid and role."""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Invalid authorization header format")

    token = authorization.split(" ", 1)[1].strip()

    try:
        decoded_token = _cache_get(_TOKEN_CACHE, token)
        if not decoded_token:
            decoded_token = await _to_thread(lambda: firebase_auth.verify_id_token(token), timeout_s=25.0)
            # Cache briefly; tokens are stable but we keep TTL short for safety.
            _cache_set(_TOKEN_CACHE, token, decoded_token, ttl_s=60.0)
        uid = decoded_token.get("uid")
        if not uid:
            raise HTTPException(status_code=401, detail="Invalid token structure")

        user_data = _cache_get(_USER_CACHE, uid)
        if not user_data:
            user_doc = await _to_thread(db.collection("users").document(uid).get, timeout_s=25.0)
            if not user_doc.exists:
                # Treat as unauthorized so clients can cleanly log out.
                raise HTTPException(status_code=401, detail="Account deleted or profile missing")
            user_data = user_doc.to_dict() or {}
            _cache_set(_USER_CACHE, uid, user_data, ttl_s=15.0)

        user = dict(user_data)
        user["uid"] = uid
        user["role"] = str(user.get("role") or "").strip().lower()
        return user

    except asyncio.TimeoutError:
        raise HTTPException(
            status_code=503,
            detail="Auth service timeout. Firebase/Firestore is not responding in time.",
        )
    except HTTPException:
        raise
    except Exception as e:
        logger.warning("Auth error: %s", e)
        raise HTTPException(status_code=401, detail="Invalid or expired token")


def require_role(*allowed_roles: Role):
    """Dependency factory restricting an endpoint to the given roles."""
    allowed = {r.value for r in allowed_roles}

    async def role_check(user: Dict[str, Any] = Depends(get_current_user)):
        if str(user.get("role") or "").strip().lower() not in allowed:
            raise HTTPException(
                status_code=403,
                detail=f"Access denied. Required roles: {sorted(allowed)}",
            )
        return user

    return role_check


require_dispatcher = require_role(Role.DISPATCHER)
