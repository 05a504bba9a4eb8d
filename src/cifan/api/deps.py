from __future__ import annotations

from collections.abc import Callable, Generator

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from cifan.config import get_settings
from cifan.core.identity import IdentityService
from cifan.core.review import is_admin, permissions_for
from cifan.db.session import get_db_session
from cifan.types import Identity, Language

SESSION_COOKIE = "cifan_session"


def get_db() -> Generator[Session, None, None]:
    yield from get_db_session()


def get_language(request: Request, accept_language: str | None = Header(default=None)) -> Language:
    requested = request.query_params.get("lang") or (accept_language or "")[:2].lower()
    if requested in ("th", "en"):
        return requested  # type: ignore[return-value]
    return get_settings().default_language  # type: ignore[return-value]


def session_token(request: Request, authorization: str | None = Header(default=None)) -> str | None:
    if authorization and authorization.lower().startswith("bearer "):
        return authorization[7:].strip() or None
    return request.cookies.get(SESSION_COOKIE)


def get_identity(
    token: str | None = Depends(session_token),
    db: Session = Depends(get_db),
) -> Identity | None:
    return IdentityService(db).current_identity(token)


def require_identity(identity: Identity | None = Depends(get_identity)) -> Identity:
    if identity is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return identity


def require_verified(identity: Identity = Depends(require_identity)) -> Identity:
    if get_settings().email_verification_required and not identity.email_verified:
        raise HTTPException(status_code=403, detail="Please verify your email before submitting")
    return identity


def require_admin(identity: Identity = Depends(require_identity)) -> Identity:
    if not is_admin(identity):
        raise HTTPException(status_code=403, detail="Admin access required")
    return identity


def require_permission(permission: str) -> Callable[..., Identity]:
    def dependency(identity: Identity = Depends(require_admin)) -> Identity:
        if permission not in permissions_for(identity.role):
            raise HTTPException(status_code=403, detail=f"Missing admin permission: {permission}")
        return identity

    return dependency
