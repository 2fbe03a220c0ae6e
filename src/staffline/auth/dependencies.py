"""FastAPI auth dependencies.

Learn: Used as Depends() in route handlers to resolve the user making
the request. Every notification and call-log query is scoped to it.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException

from staffline.auth.jwt import TokenError, verify_token


@dataclass(frozen=True)
class CurrentIdentity:
    """The authenticated user behind a request."""
    user_id: str


def get_current_user_optional(
    authorization: Optional[str] = Header(None),
) -> Optional[CurrentIdentity]:
    """Soft auth — None when no Bearer token was sent."""
    if not authorization or not authorization.startswith("Bearer "):
        return None
    try:
        payload = verify_token(authorization[7:])
    except TokenError as e:
        raise HTTPException(
            status_code=401,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )
    return CurrentIdentity(user_id=str(payload["sub"]))


def get_current_user(
    identity: Optional[CurrentIdentity] = Depends(get_current_user_optional),
) -> CurrentIdentity:
    """Hard auth — 401 when no valid token."""
    if not identity:
        raise HTTPException(
            status_code=401,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return identity
