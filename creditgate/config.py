# creditgate/config.py
from __future__ import annotations

import os
from pydantic import BaseModel, Field


def _env(name: str, default: str) -> str:
    return (os.getenv(name, default) or default).strip()


def _csv(raw: str) -> list[str]:
    return [p.strip() for p in raw.split(",") if p.strip()]


DEFAULT_ALLOWED_ACTIONS = (
    "image.gen,video.gen,mask.gen,emotionmask,preset,presets,"
    "custom,ghiblireact,neotokyoglitch"
)


class Settings(BaseModel):
    # -----------------------------
    # App / Environment
    # -----------------------------
    env: str = Field(default_factory=lambda: _env("ENV", "development"))
    app_name: str = Field(default_factory=lambda: _env("APP_NAME", "creditgate"))
    log_level: str = Field(default_factory=lambda: _env("LOG_LEVEL", "INFO"))

    # -----------------------------
    # Database
    # -----------------------------
    database_url: str = Field(
        default_factory=lambda: _env("DATABASE_URL", "sqlite:///./credits.db")
    )

    # -----------------------------
    # CORS
    # -----------------------------
    cors_origins: str = Field(
        default_factory=lambda: _env("CORS_ORIGINS", "*")
    )

    # -----------------------------
    # Credits
    # -----------------------------
    daily_cap: int = Field(
        default_factory=lambda: int(_env("DAILY_CAP", "50"))
    )
    starter_credits: int = Field(
        default_factory=lambda: int(_env("STARTER_CREDITS", "30"))
    )
    allowed_actions: list[str] = Field(
        default_factory=lambda: _csv(_env("ALLOWED_ACTIONS", DEFAULT_ALLOWED_ACTIONS))
    )

    # abandoned reservations older than this get refunded by the sweeper
    reservation_ttl_minutes: int = Field(
        default_factory=lambda: int(_env("RESERVATION_TTL_MINUTES", "60"))
    )

    # -----------------------------
    # Referrals
    # -----------------------------
    referral_referrer_bonus: int = Field(
        default_factory=lambda: int(_env("REFERRAL_REFERRER_BONUS", "50"))
    )
    referral_new_bonus: int = Field(
        default_factory=lambda: int(_env("REFERRAL_NEW_BONUS", "25"))
    )

    # -----------------------------
    # Admin / Ops
    # -----------------------------
    admin_secret: str = Field(
        default_factory=lambda: _env("ADMIN_SECRET", "")
    )


settings = Settings()


def assert_runtime_config() -> None:
    """
    Refuse to boot in production with unsafe settings.
    Call on startup.
    """
    if settings.env == "production":
        if settings.cors_origins.strip() in {"*", ""}:
            raise RuntimeError(
                "PROD CONFIG ERROR: CORS_ORIGINS cannot be '*'. List your domains."
            )
        if settings.admin_secret.strip() == "":
            raise RuntimeError(
                "PROD CONFIG ERROR: ADMIN_SECRET cannot be empty."
            )
    if settings.daily_cap <= 0:
        raise RuntimeError("CONFIG ERROR: DAILY_CAP must be positive.")
