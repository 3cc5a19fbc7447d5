# src/dependencies/auth.py
import os
from dataclasses import dataclass
from typing import Optional

import structlog
from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt

from src.services.errors import AdminRequiredError, AuthenticationError

logger = structlog.get_logger(__name__)

SECRET_KEY = os.getenv("SECRET_KEY", "change_me_now")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "").lower()

# callbacks come straight from the provider without a bearer token, so no auto 401
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


@dataclass(frozen=True)
class CallerIdentity:
    user_id: str
    is_admin: bool
    email: Optional[str] = None


def decode_caller(token: Optional[str]) -> CallerIdentity:
    if not token:
        raise AuthenticationError("Unauthorized: missing access token.")
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.warning("token_decode_failed", error=str(e))
        raise AuthenticationError("Unauthorized: invalid access token.")

    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError("Unauthorized: invalid access token.")
    email = (payload.get("email") or "").lower() or None
    is_admin = bool(payload.get("is_admin")) or bool(ADMIN_EMAIL and email == ADMIN_EMAIL)
    return CallerIdentity(user_id=str(user_id), is_admin=is_admin, email=email)


def require_admin(token: Optional[str]) -> CallerIdentity:
    caller = decode_caller(token)
    if not caller.is_admin:
        logger.warning("admin_required", user_id=caller.user_id)
        raise AdminRequiredError("Forbidden: admin access required.")
    return caller


async def get_bearer_token(token: Optional[str] = Depends(oauth2_scheme)) -> Optional[str]:
    return token
