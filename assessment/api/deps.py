"""FastAPI dependencies shared across routes."""

import uuid

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from assessment.core.clock import Clock, utcnow
from assessment.core.errors import UnauthorizedError
from assessment.core.security import decode_access_token
from assessment.db.models import User
from assessment.db.session import get_db

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/users/login")


def get_clock() -> Clock:
    """Server clock; tests override this with a frozen one."""
    return utcnow


def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> User:
    """Decode JWT and return the authenticated user, or 401."""
    payload = decode_access_token(token)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    user_id = payload.get("sub")
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload"
        )
    try:
        user_uuid = uuid.UUID(user_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload"
        )
    user = db.query(User).filter(User.id == user_uuid).first()
    if user is None or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive",
        )
    return user


def require_staff(current_user: User = Depends(get_current_user)) -> User:
    """Raise 403 unless the caller is an instructor or admin."""
    if not current_user.is_staff:
        raise UnauthorizedError("Instructor or admin access required")
    return current_user
