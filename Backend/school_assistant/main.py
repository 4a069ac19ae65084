import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from school_assistant.api import endpoints
from school_assistant.api.deps import get_key_rotator
from school_assistant.core.config import settings
from school_assistant.core.limiter import limiter, polling_endpoint
from school_assistant.core.security import AuthError

logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logging.getLogger("school_assistant").setLevel(settings.LOG_LEVEL.upper())
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if not settings.data_sources():
        logger.warning("ORGANIZATION_DATA_SOURCES is empty; chat jobs will fail until it is configured.")
    if not settings.gemini_api_keys:
        logger.warning("GEMINI_API_KEYS is empty; chat jobs will fail until it is configured.")
    yield
    await get_key_rotator().aclose()


app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)

# Rate Limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
# Applies RATE_LIMIT_DEFAULT to routes without their own limit.
app.add_middleware(SlowAPIMiddleware)


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError):
    return JSONResponse(status_code=401, content={"error": str(exc)})


# Set all CORS enabled origins
_cors_origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()]
if settings.COOKIE_SECURE and any("localhost" in o for o in _cors_origins):
    logger.warning(
        "⚠ CORS allows localhost origins while secure cookies are on (production?). "
        "Set CORS_ORIGINS env var to restrict origins in production."
    )

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(endpoints.router, prefix="/api", tags=["api"])


@app.get("/health")
@polling_endpoint
def health_check():
    return {"status": "healthy", "project": settings.PROJECT_NAME}
