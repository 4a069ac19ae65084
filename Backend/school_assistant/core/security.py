"""
Session security — HS256 JWT in an HttpOnly cookie, plus the shared-secret
guard for the internal job trigger.
"""
import hmac
import logging
import time
from typing import Optional

import jwt
from fastapi import Depends, Header, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field

from school_assistant.core.config import ConfigurationError, Settings, settings

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"


class AuthError(Exception):
    """Raised when a request has no valid session."""


class UserProfile(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    email: str
    picture: str = ""
    is_admin: bool = Field(default=False, alias="isAdmin")


def get_settings() -> Settings:
    return settings


def create_session_token(profile: UserProfile, secret: Optional[str], max_age_seconds: int) -> str:
    if not secret:
        raise ConfigurationError("JWT_SECRET environment variable is not set. Cannot create session.")
    now = int(time.time())
    payload = profile.model_dump(by_alias=True)
    payload.update({"iat": now, "exp": now + max_age_seconds})
    return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)


def verify_session_token(token: str, secret: Optional[str]) -> Optional[UserProfile]:
    if not secret:
        logger.error("JWT_SECRET is not available. Cannot verify session token.")
        return None
    try:
        payload = jwt.decode(token, secret, algorithms=[JWT_ALGORITHM])
    except jwt.PyJWTError as e:
        # Expired or tampered tokens are routine, not server errors.
        logger.info(f"Token verification failed: {e}")
        return None
    try:
        return UserProfile.model_validate(payload)
    except ValueError as e:
        logger.info(f"Session payload is not a user profile: {e}")
        return None


def require_user(request: Request, cfg: Settings = Depends(get_settings)) -> UserProfile:
    """FastAPI dependency: the authenticated user, or AuthError (401)."""
    token = request.cookies.get(cfg.SESSION_COOKIE_NAME)
    if not token:
        raise AuthError("Unauthorized: No session token found.")
    user = verify_session_token(token, cfg.JWT_SECRET)
    if user is None:
        raise AuthError("Unauthorized: Invalid or expired session token.")
    return user


def require_internal_secret(
    x_internal_api_secret: Optional[str] = Header(default=None),
    cfg: Settings = Depends(get_settings),
) -> None:
    """Only the orchestrator's trigger may reach the processing endpoint."""
    expected = cfg.INTERNAL_API_SECRET
    if not expected or not x_internal_api_secret:
        raise HTTPException(status_code=403, detail="Forbidden")
    if not hmac.compare_digest(x_internal_api_secret.encode(), expected.encode()):
        raise HTTPException(status_code=403, detail="Forbidden")
