from datetime import timedelta
from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, Request
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from . import config
from .database import get_db
from ..api.users import crud as users_crud
from ..api.users import models as user_models
from ..utils.dates import utcnow

ACCESS_TOKEN_EXPIRE_MINUTES = 60

# tokens are issued by the main application; this service only verifies them
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/users/login", auto_error=False)


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    to_encode = data.copy()
    expire = utcnow() + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, config.SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def decode_claims(token: str) -> Dict[str, Any]:
    """Raises JWTError on a bad signature, a bad format or an expired token."""
    return jwt.decode(token, config.SECRET_KEY, algorithms=[config.JWT_ALGORITHM])


def decode_token(token: str) -> str:
    """Returns the email (`sub`) of a valid access token."""
    try:
        payload = decode_claims(token)
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    email: Optional[str] = payload.get("sub")
    if email is None:
        raise HTTPException(status_code=401, detail="Invalid token payload")
    return email


async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_db),
    token: Optional[str] = Depends(oauth2_scheme),
) -> user_models.User:
    # browser redirects (e.g. /quickbooks/connect) cannot set a header
    token = token or request.query_params.get("token")
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    email = decode_token(token)
    user = await users_crud.get_user_by_email(db, email)
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return user


async def get_current_admin(
    current_user: user_models.User = Depends(get_current_user),
) -> user_models.User:
    if not current_user.is_admin:
        raise HTTPException(status_code=403, detail="Admin only")
    return current_user
