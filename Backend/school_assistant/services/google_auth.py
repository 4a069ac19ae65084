"""
Google Workspace sign-in: trade the OAuth authorization code for an ID token,
read the token's claims and admit only accounts of the school's domain.
"""
import logging
from typing import Optional

import httpx

from school_assistant.core.config import ConfigurationError, Settings
from school_assistant.core.security import UserProfile

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_TOKENINFO_URL = "https://oauth2.googleapis.com/tokeninfo"
CALLBACK_PATH = "/api/auth-callback"


class GoogleAuthError(Exception):
    """The code exchange or the token lookup failed."""


class WorkspaceDomainError(GoogleAuthError):
    def __init__(self, domain: str):
        self.domain = domain
        super().__init__(f"Login failed. Please use an account from the @{domain} domain.")


def google_login_configured(cfg: Settings) -> bool:
    return bool(cfg.GOOGLE_CLIENT_ID and cfg.GOOGLE_CLIENT_SECRET and cfg.GOOGLE_WORKSPACE_DOMAIN and cfg.APP_BASE_URL)


def callback_url(cfg: Settings) -> str:
    """Must match the redirect URI registered for the OAuth client exactly."""
    return f"{cfg.APP_BASE_URL.rstrip('/')}{CALLBACK_PATH}"


async def fetch_workspace_profile(
    code: str,
    cfg: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> UserProfile:
    if not google_login_configured(cfg):
        raise ConfigurationError(
            "Server configuration error: Google Auth or App Base URL variables are missing."
        )

    redirect_uri = callback_url(cfg)
    async with httpx.AsyncClient(timeout=cfg.DATA_FETCH_TIMEOUT_SECONDS, transport=transport) as client:
        token_response = await client.post(
            GOOGLE_TOKEN_URL,
            json={
                "code": code,
                "client_id": cfg.GOOGLE_CLIENT_ID,
                "client_secret": cfg.GOOGLE_CLIENT_SECRET,
                "redirect_uri": redirect_uri,
                "grant_type": "authorization_code",
            },
        )
        if token_response.is_error:
            body = _json_or_empty(token_response)
            if body.get("error") == "redirect_uri_mismatch":
                logger.error(f"Google rejected the redirect URI; register exactly {redirect_uri!r}.")
            logger.error(f"Google token exchange failed ({token_response.status_code}): {body}")
            reason = body.get("error_description") or token_response.reason_phrase
            raise GoogleAuthError(f"Google token exchange failed: {reason}.")

        id_token = _json_or_empty(token_response).get("id_token")
        if not id_token:
            raise GoogleAuthError("Google token exchange returned no ID token.")

        info_response = await client.get(GOOGLE_TOKENINFO_URL, params={"id_token": id_token})
        if info_response.is_error:
            raise GoogleAuthError("Failed to get user info from Google.")
        claims = _json_or_empty(info_response)

    if claims.get("hd") != cfg.GOOGLE_WORKSPACE_DOMAIN:
        logger.warning(f"Google login refused for {claims.get('email')!r}: domain {claims.get('hd')!r}.")
        raise WorkspaceDomainError(cfg.GOOGLE_WORKSPACE_DOMAIN)

    return UserProfile(
        id=str(claims.get("sub", "")),
        name=claims.get("name") or claims.get("email") or "",
        email=claims.get("email") or "",
        picture=claims.get("picture") or "",
    )


def _json_or_empty(response: httpx.Response) -> dict:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}
