"""
Caller identity and rate limiting
"""

import logging
import time
from collections import defaultdict
from typing import Optional

from fastapi import Depends, HTTPException, Request, WebSocket, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from firebase_admin import auth

from app.core.config import settings
from app.schemas.reservation import Identity
from app.services.firebase_client import get_firebase_app

logger = logging.getLogger(__name__)

# Simple in-memory rate limiter: key -> request times in the last minute
rate_limiter = defaultdict(list)

security = HTTPBearer(auto_error=False)

def _identity_from_id_token(id_token: str) -> Identity:
    try:
        claims = auth.verify_id_token(id_token, app=get_firebase_app())
    except (auth.InvalidIdTokenError, ValueError) as e:
        logger.info(f"Rejected ID token: {e}")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid ID token")
    return Identity(user_id=claims["uid"], display_name=claims.get("name"))

def get_current_identity(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Identity:
    """Resolve the caller's identity.

    With Firebase enabled the bearer token must be a valid Firebase ID token.
    Otherwise (local development) the X-User-Id / X-User-Name headers are trusted.
    """
    if settings.USE_FIREBASE:
        if credentials is None:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
        return _identity_from_id_token(credentials.credentials)

    user_id = request.headers.get("X-User-Id")
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-Id header")
    return Identity(user_id=user_id, display_name=request.headers.get("X-User-Name"))

def get_websocket_identity(websocket: WebSocket) -> Identity:
    """Resolve the identity of a console opening a WebSocket.

    Same rules as ``get_current_identity``; the ID token (or, in development,
    the user id) may also be passed as the ``token`` / ``user_id`` query parameter.
    """
    if settings.USE_FIREBASE:
        id_token = websocket.query_params.get("token")
        authorization = websocket.headers.get("Authorization", "")
        if not id_token and authorization.lower().startswith("bearer "):
            id_token = authorization[len("bearer "):]
        if not id_token:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing ID token")
        return _identity_from_id_token(id_token)

    user_id = websocket.headers.get("X-User-Id") or websocket.query_params.get("user_id")
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-Id header")
    return Identity(user_id=user_id, display_name=websocket.headers.get("X-User-Name"))

def rate_limit_check(key: str, limit: int = None) -> bool:
    """Sliding one-minute window per key"""
    if limit is None:
        limit = settings.RATE_LIMIT_PER_MINUTE

    now = time.time()
    window = [t for t in rate_limiter[key] if t > now - 60]
    if len(window) >= limit:
        rate_limiter[key] = window
        return False

    window.append(now)
    rate_limiter[key] = window
    return True

def get_client_ip(request) -> str:
    """Extract client IP from request, honouring reverse proxy headers"""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    return request.client.host
