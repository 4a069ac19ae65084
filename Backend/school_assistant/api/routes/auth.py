"""
Auth Routes — Google Workspace callback, admin password login, session
verification and logout.
"""
import hmac
import logging
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse

from school_assistant.api.deps import get_google_transport
from school_assistant.api.schemas import AdminLoginRequest
from school_assistant.core.config import ConfigurationError, Settings
from school_assistant.core.limiter import LOGIN_LIMIT, limiter
from school_assistant.core.security import UserProfile, create_session_token, get_settings, require_user
from school_assistant.services.google_auth import GoogleAuthError, WorkspaceDomainError, fetch_workspace_profile

logger = logging.getLogger(__name__)
router = APIRouter()

ADMIN_PROFILE = UserProfile(
    id="admin",
    name="Administrator",
    email="admin@localhost",
    picture="",
    isAdmin=True,
)


def _set_session_cookie(response: Response, token: str, cfg: Settings) -> None:
    response.set_cookie(
        key=cfg.SESSION_COOKIE_NAME,
        value=token,
        max_age=cfg.SESSION_MAX_AGE_SECONDS,
        httponly=True,
        secure=cfg.COOKIE_SECURE,
        samesite="lax",
        path="/",
    )


@router.post("/auth/admin")
@limiter.limit(LOGIN_LIMIT)
async def admin_login(request: Request, payload: AdminLoginRequest, cfg: Settings = Depends(get_settings)):
    if not cfg.ADMIN_PASSWORD:
        logger.error("ADMIN_PASSWORD is not configured; admin login is unavailable.")
        return JSONResponse(status_code=500, content={"error": "Admin login is not configured."})
    if not payload.password:
        return JSONResponse(status_code=400, content={"error": "Password is required."})
    if not hmac.compare_digest(payload.password.encode(), cfg.ADMIN_PASSWORD.encode()):
        logger.warning("Admin login failed: wrong password.")
        return JSONResponse(status_code=401, content={"error": "Invalid password."})

    try:
        token = create_session_token(ADMIN_PROFILE, cfg.JWT_SECRET, cfg.SESSION_MAX_AGE_SECONDS)
    except ConfigurationError as e:
        logger.error(f"Admin login failed: {e}")
        return JSONResponse(status_code=500, content={"error": str(e)})

    response = JSONResponse(content={"success": True, "user": ADMIN_PROFILE.model_dump(by_alias=True)})
    _set_session_cookie(response, token, cfg)
    logger.info("Admin session created.")
    return response


@router.get("/auth-callback")
async def google_callback(
    code: Optional[str] = Query(default=None),
    cfg: Settings = Depends(get_settings),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_google_transport),
):
    """
    Redirect target of the Google consent screen. Plain-text errors, since
    the browser lands here directly rather than through the frontend.
    """
    if not code:
        return PlainTextResponse("Authorization code is missing.", status_code=400)

    try:
        profile = await fetch_workspace_profile(code, cfg, transport=transport)
        token = create_session_token(profile, cfg.JWT_SECRET, cfg.SESSION_MAX_AGE_SECONDS)
    except ConfigurationError as e:
        logger.error(f"Google login unavailable: {e}")
        return PlainTextResponse(str(e), status_code=500)
    except WorkspaceDomainError as e:
        return PlainTextResponse(str(e), status_code=403)
    except (GoogleAuthError, httpx.HTTPError) as e:
        logger.error(f"Authentication callback error: {e}")
        return PlainTextResponse(f"An error occurred: {e}", status_code=500)

    response = RedirectResponse("/", status_code=302)
    _set_session_cookie(response, token, cfg)
    logger.info(f"Google session created for {profile.email}.")
    return response


@router.get("/auth/verify")
async def verify_session(user: UserProfile = Depends(require_user)):
    return user.model_dump(by_alias=True)


@router.post("/auth/logout")
async def logout(cfg: Settings = Depends(get_settings)):
    response = JSONResponse(content={"success": True})
    response.delete_cookie(cfg.SESSION_COOKIE_NAME, path="/")
    return response
