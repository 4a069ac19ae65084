from dataclasses import dataclass

from pydantic_settings import BaseSettings


class ConfigurationError(RuntimeError):
    """Raised when a required setting (credential, source URL, secret) is missing."""


@dataclass(frozen=True)
class DataSource:
    name: str
    url: str


class Settings(BaseSettings):
    PROJECT_NAME: str = "Asisten Guru AI"
    REDIS_URL: str = "redis://localhost:6379/0"
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_DEFAULT: str = "120/minute"
    LOG_LEVEL: str = "INFO"

    # ⚠ SECURITY WARNING: These defaults are for local development ONLY.
    # In production, you MUST override CORS_ORIGINS via environment variable to restrict access.
    CORS_ORIGINS: str = "http://localhost:5173,http://localhost:3000"

    # ─── Session / Auth ──────────────────────────────────────────────────
    JWT_SECRET: str | None = None
    ADMIN_PASSWORD: str | None = None
    SESSION_COOKIE_NAME: str = "app_session"
    SESSION_MAX_AGE_SECONDS: int = 60 * 60 * 24
    COOKIE_SECURE: bool = False

    # ─── Job Pipeline ────────────────────────────────────────────────────
    INTERNAL_API_SECRET: str | None = None
    APP_BASE_URL: str | None = None
    JOB_DISPATCH_MODE: str = "celery"  # "celery", "http" or "inline"
    JOB_TTL_SECONDS: int = 3600

    # ─── Gemini ──────────────────────────────────────────────────────────
    GEMINI_API_KEYS: str = ""
    DEFAULT_MODEL: str = "gemini-2.5-flash"
    ALLOWED_MODELS: str = "gemini-2.5-flash,gemini-2.5-pro,gemini-1.5-flash"
    LLM_TIMEOUT_SECONDS: float = 60.0

    # ─── School Data (Google Sheets published as CSV) ────────────────────
    ORGANIZATION_DATA_SOURCES: str = ""
    SHEET_NAMES: str = ""
    SHEET_RELATIONSHIPS: str = ""
    DATA_CACHE_TTL_SECONDS: int = 600
    DATA_FETCH_TIMEOUT_SECONDS: float = 30.0
    SCHEMA_SAMPLE_ROWS: int = 2
    FULL_DATA_FALLBACK: bool = False

    # ─── Public Profile ──────────────────────────────────────────────────
    SCHOOL_NAME_FULL: str | None = None
    SCHOOL_NAME_SHORT: str | None = None
    APP_VERSION: str | None = None
    GOOGLE_CLIENT_ID: str | None = None
    GOOGLE_CLIENT_SECRET: str | None = None
    GOOGLE_WORKSPACE_DOMAIN: str | None = None

    class Config:
        env_file = ".env"

    @property
    def gemini_api_keys(self) -> list[str]:
        return [k.strip() for k in self.GEMINI_API_KEYS.split(",") if k.strip()]

    @property
    def allowed_models(self) -> list[str]:
        return [m.strip() for m in self.ALLOWED_MODELS.split(",") if m.strip()]

    def data_sources(self) -> list[DataSource]:
        """
        Pair ORGANIZATION_DATA_SOURCES with SHEET_NAMES by position.
        Missing names default to DATA_<n>.
        """
        urls = [u.strip() for u in self.ORGANIZATION_DATA_SOURCES.split(",") if u.strip()]
        names = [n.strip().upper() for n in self.SHEET_NAMES.split(",") if n.strip()]
        return [
            DataSource(name=names[i] if i < len(names) else f"DATA_{i + 1}", url=url)
            for i, url in enumerate(urls)
        ]


settings = Settings()
