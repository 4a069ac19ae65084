from fastapi import APIRouter

from school_assistant.api.routes import auth, chat, meta

router = APIRouter()

router.include_router(chat.router, tags=["chat"])
router.include_router(auth.router, tags=["auth"])
router.include_router(meta.router, tags=["meta"])
