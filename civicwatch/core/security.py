# civicwatch/core/security.py
from dataclasses import dataclass
from fastapi import HTTPException, Request, status, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Optional
import time, jwt
from civicwatch.core.config import settings
from civicwatch.core.ratelimit import client_fingerprint

ALGO = "HS256"
ACCESS_TTL = 15 * 60
ADMIN_ROLE = "admin"
bearer = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Caller:
    """Who is asking. The core only ever looks at the fingerprint and the admin capability."""
    fingerprint: str
    subject: Optional[str] = None
    is_admin: bool = False


def make_token(sub: str, role: str, ttl: int = ACCESS_TTL) -> str:
    now = int(time.time())
    payload = {"sub": sub, "role": role, "iat": now, "exp": now + ttl}
    return jwt.encode(payload, settings.jwt_secret, algorithm=ALGO)

def _decode_token(creds: Optional[HTTPAuthorizationCredentials]) -> dict:
    if not creds:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    try:
        return jwt.decode(creds.credentials, settings.jwt_secret, algorithms=[ALGO])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

def get_caller(request: Request,
               creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer)) -> Caller:
    fingerprint = client_fingerprint(request)
    if not creds:
        return Caller(fingerprint=fingerprint)
    try:
        payload = jwt.decode(creds.credentials, settings.jwt_secret, algorithms=[ALGO])
    except jwt.InvalidTokenError:
        return Caller(fingerprint=fingerprint)
    return Caller(
        fingerprint=fingerprint,
        subject=payload.get("sub"),
        is_admin=payload.get("role") == ADMIN_ROLE,
    )

def require_admin(request: Request,
                  creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer)) -> Caller:
    payload = _decode_token(creds)
    if not payload.get("sub"):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload")
    if payload.get("role") != ADMIN_ROLE:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="forbidden")
    return Caller(fingerprint=client_fingerprint(request), subject=payload["sub"], is_admin=True)
