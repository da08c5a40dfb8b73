import time
from typing import Optional, Dict, Any

import requests
from fastapi import Header, HTTPException
from jose import jwt, JWTError
from loguru import logger

from venue_presence.core.config import (
    AUTH_VERIFY_MODE,
    AUTH_JWT_SECRET,
    AUTH_JWKS_URL,
)


# JWKS cache (simple in-memory cache)
_JWKS_CACHE: Dict[str, Any] = {"ts": 0, "jwks": None}
_JWKS_TTL_SECONDS = 600

# asymmetric only: a JWKS-mode token must never verify with HS256 or "none"
JWKS_ALGORITHMS = ("ES256", "RS256")
DEFAULT_JWKS_ALGORITHM = "ES256"


# ------------------------------------------------------------
# Helpers
# ------------------------------------------------------------
def _get_bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing Authorization header")

    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(status_code=401, detail="Invalid Authorization header format")

    token = parts[1].strip()
    if not token:
        raise HTTPException(status_code=401, detail="Missing bearer token")

    return token


# ------------------------------------------------------------
# JWKS Fetch + Cache
# ------------------------------------------------------------
def _fetch_jwks() -> Dict[str, Any]:
    if not AUTH_JWKS_URL:
        raise HTTPException(status_code=500, detail="AUTH_JWKS_URL not set (required for jwks mode)")

    try:
        resp = requests.get(AUTH_JWKS_URL, timeout=10)
        data = resp.json()
    except (requests.RequestException, ValueError) as e:
        logger.error(f"[auth] JWKS fetch failed: {e!r}")
        raise HTTPException(status_code=503, detail="Unable to fetch signing keys")

    if resp.status_code != 200 or "keys" not in data:
        raise HTTPException(status_code=500, detail=f"Invalid JWKS response: HTTP {resp.status_code}")

    return data


def _get_cached_jwks(force: bool = False) -> Dict[str, Any]:
    now = time.time()

    if (
        not force
        and _JWKS_CACHE["jwks"]
        and now - _JWKS_CACHE["ts"] < _JWKS_TTL_SECONDS
    ):
        return _JWKS_CACHE["jwks"]

    jwks = _fetch_jwks()
    _JWKS_CACHE["jwks"] = jwks
    _JWKS_CACHE["ts"] = now

    return jwks


# ------------------------------------------------------------
# Verification Modes
# ------------------------------------------------------------
def _verify_jwt_hs256(token: str) -> Dict[str, Any]:
    if not AUTH_JWT_SECRET:
        raise HTTPException(status_code=500, detail="AUTH_JWT_SECRET not set")

    try:
        return jwt.decode(
            token,
            AUTH_JWT_SECRET,
            algorithms=["HS256"],
            options={"verify_aud": False},
        )
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid or expired token")


def _resolve_algorithm(header_alg: Optional[str], key_data: Dict[str, Any]) -> str:
    """
    Pick the verification algorithm from the key, never from the token alone.
    The header alg must be allowlisted and agree with the key's own alg.
    """
    key_alg = key_data.get("alg")
    if key_alg and key_alg not in JWKS_ALGORITHMS:
        raise HTTPException(status_code=401, detail=f"Unsupported key alg: {key_alg}")

    alg = key_alg or DEFAULT_JWKS_ALGORITHM
    if header_alg != alg:
        raise HTTPException(status_code=401, detail=f"Unsupported JWT alg: {header_alg}")

    return alg


def _verify_jwt_jwks(token: str) -> Dict[str, Any]:
    try:
        header = jwt.get_unverified_header(token)
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token header")

    kid = header.get("kid")
    alg = header.get("alg")
    if not kid:
        raise HTTPException(status_code=401, detail="Token missing kid")

    if alg not in JWKS_ALGORITHMS:
        raise HTTPException(status_code=401, detail=f"Unsupported JWT alg: {alg}")

    key_data = next((k for k in _get_cached_jwks()["keys"] if k.get("kid") == kid), None)
    if not key_data:
        # key rotation: refresh once
        key_data = next((k for k in _get_cached_jwks(force=True)["keys"] if k.get("kid") == kid), None)

    if not key_data:
        raise HTTPException(status_code=401, detail="Public key not found for kid")

    try:
        return jwt.decode(
            token,
            key_data,
            algorithms=[_resolve_algorithm(alg, key_data)],
            options={"verify_aud": False},
        )
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid or expired token")


# ------------------------------------------------------------
# Main Dependency
# ------------------------------------------------------------
def get_current_user_id(
    authorization: Optional[str] = Header(default=None),
    x_user_id: Optional[str] = Header(default=None),
) -> str:
    if AUTH_VERIFY_MODE == "header":
        # local development and tests only
        if not x_user_id:
            raise HTTPException(status_code=401, detail="Missing X-User-Id header")
        return x_user_id

    token = _get_bearer_token(authorization)

    if AUTH_VERIFY_MODE == "hs256":
        payload = _verify_jwt_hs256(token)
    elif AUTH_VERIFY_MODE == "jwks":
        payload = _verify_jwt_jwks(token)
    else:
        raise HTTPException(
            status_code=500,
            detail=f"Invalid AUTH_VERIFY_MODE: {AUTH_VERIFY_MODE}",
        )

    sub = payload.get("sub")
    if not sub:
        raise HTTPException(status_code=401, detail="Token missing sub claim")

    return str(sub)
