"""
Meta Routes — public config, upstream connectivity and prompt starters.
"""
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from school_assistant.api.deps import get_data_cache, get_gateway
from school_assistant.api.schemas import PromptStartersResponse
from school_assistant.core.config import Settings
from school_assistant.core.limiter import STARTERS_LIMIT, limiter
from school_assistant.core.security import UserProfile, get_settings, require_user
from school_assistant.services.data_cache import DataCache
from school_assistant.services.gemini_client import GeminiGateway
from school_assistant.services.google_auth import google_login_configured
from school_assistant.services.health import service_status
from school_assistant.services.prompt_starters import generate_prompt_starters

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/config")
async def public_config(cfg: Settings = Depends(get_settings)):
    """Values the frontend needs before login. No secrets."""
    return {
        "schoolNameFull": cfg.SCHOOL_NAME_FULL,
        "schoolNameShort": cfg.SCHOOL_NAME_SHORT,
        "appVersion": cfg.APP_VERSION,
        "googleClientId": cfg.GOOGLE_CLIENT_ID,
        "isGoogleLoginConfigured": google_login_configured(cfg),
        "appBaseUrl": cfg.APP_BASE_URL,
        "allowedModels": cfg.allowed_models,
        "defaultModel": cfg.DEFAULT_MODEL,
    }


@router.get("/status")
async def upstream_status(
    cfg: Settings = Depends(get_settings),
    gateway: GeminiGateway = Depends(get_gateway),
):
    return await service_status(cfg, gateway)


@router.get("/prompt-starters", response_model=PromptStartersResponse)
@limiter.limit(STARTERS_LIMIT)
async def prompt_starters(
    request: Request,
    user: UserProfile = Depends(require_user),
    cache: DataCache = Depends(get_data_cache),
    gateway: GeminiGateway = Depends(get_gateway),
    cfg: Settings = Depends(get_settings),
):
    try:
        questions = await generate_prompt_starters(cache, gateway, cfg.DEFAULT_MODEL)
    except Exception as e:
        logger.error(f"Prompt starter generation failed: {e}")
        return JSONResponse(status_code=500, content={"error": str(e)})
    return PromptStartersResponse(questions=questions)
