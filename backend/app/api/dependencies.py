from functools import lru_cache

from fastapi import Depends, HTTPException, status, Request
from jose import JWTError

from ..database import get_db  # noqa: F401  re-exported for routers
from ..services.attachment_store import AttachmentStore, R2AttachmentStore
from ..services.dispute_access import Identity
from ..utils.notifications import NotificationDispatcher, build_default_dispatcher
from .auth import oauth2_scheme, decode_access_token


def get_current_identity(token: str = Depends(oauth2_scheme), request: Request = None) -> Identity:
    """Resolve the caller from a bearer token (or the ``access_token`` cookie).

    Claims: ``sub`` is the user id, ``admin`` marks platform administrators.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    jwt_token = token or (request.cookies.get("access_token") if request else None)
    if not jwt_token:
        raise credentials_exception
    try:
        payload = decode_access_token(jwt_token)
        user_id = payload.get("sub")
        if user_id is None or not str(user_id).strip():
            raise credentials_exception
    except JWTError:
        raise credentials_exception
    return Identity(id=str(user_id).strip(), is_admin=bool(payload.get("admin", False)))


@lru_cache(maxsize=1)
def _attachment_store() -> R2AttachmentStore:
    return R2AttachmentStore()


def get_attachment_store() -> AttachmentStore:
    return _attachment_store()


@lru_cache(maxsize=1)
def _dispatcher() -> NotificationDispatcher:
    return build_default_dispatcher()


def get_dispatcher() -> NotificationDispatcher:
    return _dispatcher()
