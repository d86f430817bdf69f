import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..models.models import Manager, User
from .session_store import SessionStore


http_bearer = HTTPBearer(auto_error=False)

DEACTIVATED_MESSAGE = "Your account has been deactivated."


def _create_token(sub: str, ttl_seconds: int, extra: Optional[dict] = None) -> str:
    now = datetime.now(tz=timezone.utc)
    payload = {
        "sub": sub,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=ttl_seconds)).timestamp()),
        "jti": str(uuid.uuid4()),
    }
    if extra:
        payload.update(extra)
    token = jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)
    return token


def create_manager_token(manager_id: int, company_id: int) -> str:
    return _create_token(str(manager_id), settings.jwt_ttl_seconds, extra={"role": "manager", "company_id": company_id})


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


def get_current_manager(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
    db: Session = Depends(get_db),
) -> Manager:
    if creds is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    payload = decode_token(creds.credentials)
    if payload.get("role") != "manager":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
    try:
        manager_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid subject")
    manager = db.query(Manager).filter(Manager.id == manager_id).first()
    if manager is None or not manager.active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Manager not active")
    # A token minted for another company is not valid for this manager
    if payload.get("company_id") != manager.company_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return manager


def get_session_store(request: Request) -> SessionStore:
    return request.app.state.session_store


def get_current_operative(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
    x_operative_token: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
    store: SessionStore = Depends(get_session_store),
) -> User:
    token = x_operative_token or (creds.credentials if creds else None)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Operative session required. Please log in again.")
    session = store.get(token)
    if session is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Session expired or invalid. Please log in again.")
    user = db.query(User).filter(User.id == session.user_id, User.company_id == session.company_id).first()
    if user is None or not user.active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=DEACTIVATED_MESSAGE)
    return user
