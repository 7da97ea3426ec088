import logging
import threading
from dataclasses import dataclass
from typing import Optional

import jwt
from fastapi import Depends, Header, HTTPException
from jwt import PyJWKClient

from finscan.core.config import get_settings

logger = logging.getLogger(__name__)

ALLOWED_ROLES = {"OWNER", "ADMIN", "MEMBER"}
DEFAULT_ROLE = "MEMBER"

# Thread-safe JWKS client cache (initialised lazily, lives for process lifetime).
_jwks_client: Optional[PyJWKClient] = None
_jwks_lock = threading.Lock()


def _get_jwks_client(jwks_url: str) -> PyJWKClient:
    global _jwks_client
    if _jwks_client is not None:
        return _jwks_client
    with _jwks_lock:
        if _jwks_client is not None:
            return _jwks_client
        _jwks_client = PyJWKClient(jwks_url, cache_keys=True, lifespan=3600)
        return _jwks_client


@dataclass
class CurrentUser:
    id: str
    role: str
    email: Optional[str] = None
    organization_id: Optional[str] = None


def _app_metadata(payload: dict) -> dict:
    # SECURITY: role and organization come only from server-managed app_metadata.
    # user_metadata is user-editable in Supabase Auth.
    meta = payload.get("app_metadata")
    return meta if isinstance(meta, dict) else {}


def _extract_role(payload: dict) -> str:
    raw = _app_metadata(payload).get("role")
    role = str(raw).strip().upper() if raw is not None else ""
    return role if role in ALLOWED_ROLES else DEFAULT_ROLE


def _extract_organization_id(payload: dict) -> Optional[str]:
    meta = _app_metadata(payload)
    raw = meta.get("organization_id") or meta.get("active_organization_id")
    value = str(raw).strip() if raw else ""
    return value or None


def _decode_options(settings):
    audience = (settings.supabase_jwt_audience or "").strip()
    decode_kwargs = {}
    options = {}
    if audience:
        decode_kwargs["audience"] = audience
        options["verify_aud"] = True
    else:
        options["verify_aud"] = False
    return decode_kwargs, options


def _try_hs256(token: str, settings, decode_kwargs: dict, options: dict):
    """Attempt HS256 verification with supabase_jwt_secret. Returns payload or None."""
    try:
        return jwt.decode(
            token,
            settings.supabase_jwt_secret,
            algorithms=["HS256"],
            options=options,
            **decode_kwargs,
        )
    except jwt.InvalidTokenError:
        return None


def _try_es256(token: str, settings, decode_kwargs: dict, options: dict):
    """Attempt ES256 verification via the Supabase JWKS endpoint. Returns payload or None."""
    supabase_url = (settings.supabase_url or "").rstrip("/")
    if not supabase_url:
        return None
    jwks_url = f"{supabase_url}/auth/v1/.well-known/jwks.json"
    try:
        client = _get_jwks_client(jwks_url)
        signing_key = client.get_signing_key_from_jwt(token)
        return jwt.decode(
            token,
            signing_key.key,
            algorithms=["ES256"],
            options=options,
            **decode_kwargs,
        )
    except Exception as exc:
        logger.debug("ES256 verification failed: %s", exc)
        return None


def get_current_user(
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> CurrentUser:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(401, "Missing bearer token")

    token = authorization.split(" ", 1)[1].strip()
    settings = get_settings()

    if not settings.supabase_jwt_secret and not settings.supabase_url:
        raise HTTPException(500, "SUPABASE_JWT_SECRET is not configured")

    decode_kwargs, options = _decode_options(settings)

    # Peek at the header to pick the strategy order (avoids a JWKS fetch for HS256 tokens)
    try:
        header = jwt.get_unverified_header(token)
    except jwt.DecodeError:
        raise HTTPException(401, "Invalid token")

    alg = header.get("alg", "")

    payload = None
    if alg == "ES256":
        payload = _try_es256(token, settings, decode_kwargs, options)
        if payload is None and settings.supabase_jwt_secret:
            payload = _try_hs256(token, settings, decode_kwargs, options)
    else:
        if settings.supabase_jwt_secret:
            payload = _try_hs256(token, settings, decode_kwargs, options)
        if payload is None:
            payload = _try_es256(token, settings, decode_kwargs, options)

    if payload is None:
        raise HTTPException(401, "Invalid token")

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(401, "Invalid token")

    return CurrentUser(
        id=user_id,
        role=_extract_role(payload),
        email=payload.get("email"),
        organization_id=_extract_organization_id(payload),
    )


def require_organization(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not user.organization_id:
        raise HTTPException(401, "No active organization")
    return user


def require_roles(*roles: str):
    def _dependency(user: CurrentUser = Depends(require_organization)) -> CurrentUser:
        if user.role not in roles:
            raise HTTPException(403, "Forbidden")
        return user

    return _dependency
