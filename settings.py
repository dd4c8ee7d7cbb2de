# settings.py
from pydantic import BaseModel, Field
from dotenv import load_dotenv
import os

# Load variables from .env at import time
load_dotenv()


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes"}


class Settings(BaseModel):
    # Replicate (image generation)
    replicate_api_token: str = Field(default=os.getenv("REPLICATE_API_TOKEN", ""))
    replicate_model_version: str = Field(default=os.getenv(
        "REPLICATE_MODEL_VERSION",
        "bytedance/flux-pulid:8baa7ef2255075b46f4d91cd238c21d31181b3e6a864463f967960bb0112525b",
    ))
    # Base URL Replicate calls back into (…/webhook). Empty means unconfigured.
    public_base_url: str = Field(default=os.getenv("PUBLIC_BASE_URL", ""))
    # Frontend origin used for shareable /view links
    site_url: str = Field(default=os.getenv("SITE_URL", "https://kpopdemonz.com"))

    # Email + CAPTCHA
    resend_api_key: str = Field(default=os.getenv("RESEND_API_KEY", ""))
    email_from: str = Field(default=os.getenv("EMAIL_FROM", "Demon Hunter <onboarding@resend.dev>"))
    hcaptcha_secret_key: str = Field(default=os.getenv("HCAPTCHA_SECRET_KEY", ""))
    admin_api_key: str = Field(default=os.getenv("ADMIN_API_KEY", ""))

    # Storage
    redis_url: str = Field(default=os.getenv("REDIS_URL", ""))
    database_url: str = Field(default=os.getenv("DATABASE_URL", "sqlite:///./kpopdemonz.db"))
    r2_access_key_id: str = Field(default=os.getenv("R2_ACCESS_KEY_ID", ""))
    r2_secret_access_key: str = Field(default=os.getenv("R2_SECRET_ACCESS_KEY", ""))
    r2_endpoint_url: str = Field(default=os.getenv("R2_ENDPOINT_URL", ""))
    r2_bucket: str = Field(default=os.getenv("R2_BUCKET", "kpopdemonz"))
    r2_public_base: str = Field(default=os.getenv("R2_PUBLIC_BASE", ""))

    # Lifetimes
    job_ttl_seconds: int = Field(default=int(os.getenv("JOB_TTL_SECONDS", "86400")))
    feed_ttl_seconds: int = Field(default=int(os.getenv("FEED_TTL_SECONDS", str(86400 * 7))))
    feed_max_items: int = Field(default=int(os.getenv("FEED_MAX_ITEMS", "50")))
    notify_delay_seconds: float = Field(default=float(os.getenv("NOTIFY_DELAY_SECONDS", "0.5")))

    cors_origins: str = Field(default=os.getenv("CORS_ORIGINS", "*"))
    log_level: str = Field(default=os.getenv("LOG_LEVEL", "INFO"))
    debug: bool = Field(default=_flag("DEBUG"))

settings = Settings()
