"""Authentication helpers and FastAPI security dependencies.

`get_current_user` validates the bearer token and returns the matching
`User` row; `get_current_admin` additionally requires the stored user to
still carry the admin flag. Failures are raised as `careerbot.errors`
exceptions (401 for credential problems, 403 for missing privilege) and
rendered as JSON envelopes by the application's exception handlers.
"""

from typing import Optional

from fastapi import Depends, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from . import models
from .database import get_session
from .services import AuthService

# auto_error=False so a missing header becomes our own 401 envelope
bearer_scheme = HTTPBearer(auto_error=False)


def _token(credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    return credentials.credentials if credentials else None


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
    db: Session = Depends(get_session),
) -> models.User:
    """FastAPI dependency that returns the authenticated user."""
    return AuthService(db).resolve(_token(credentials))


def get_current_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
    db: Session = Depends(get_session),
) -> models.User:
    """FastAPI dependency for `/admin` routes."""
    return AuthService(db).require_admin(_token(credentials))
