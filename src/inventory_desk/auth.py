"""Authentication helpers for API handlers."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from . import crud, security
from .config import get_settings
from .dependencies import get_db

logger = logging.getLogger(__name__)

SESSION_COOKIE = "inventory_desk_session"


def _token_from_request(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization", "")
    scheme, _, credentials = header.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials.strip()
    return request.cookies.get(SESSION_COOKIE)


def login(db: Session, username: str, password: str) -> Optional[tuple[str, security.SessionInfo]]:
    """Check credentials and return a fresh token with its session."""

    user = crud.authenticate_user(db, username, password)
    if not user:
        logger.warning("Rejected login for %r", username)
        return None
    settings = get_settings()
    token = security.issue_session(user.username, settings.secret_key)
    session = security.read_session(token, settings.secret_key, settings.session_max_age)
    if session is None:  # pragma: no cover - only with a non-positive session lifetime
        return None
    logger.info("User %s signed in", user.username)
    return token, session


def resolve_session(request: Request, db: Session) -> Optional[security.SessionInfo]:
    token = _token_from_request(request)
    if not token:
        return None

    settings = get_settings()
    session = security.read_session(token, settings.secret_key, settings.session_max_age)
    if not session:
        return None

    user = crud.get_user_by_username(db, session.username)
    if not user or not user.is_active:
        return None
    return session


def get_current_session(request: Request, db: Session = Depends(get_db)) -> security.SessionInfo:
    """Require a valid, unexpired session from the cookie or bearer header."""

    session = resolve_session(request, db)
    if not session:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    return session
