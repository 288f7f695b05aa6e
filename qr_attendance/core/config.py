from __future__ import annotations
from pydantic_settings import BaseSettings
from pydantic import Field, field_validator

MAX_CLOCK_SKEW_MS = 5000

class Settings(BaseSettings):
    database_url: str = Field(..., alias="DATABASE_URL")

    auth_jwks_url: str = Field(..., alias="AUTH_JWKS_URL")
    token_issuer: str = Field("authentication-svc", alias="TOKEN_ISSUER")

    # Rotating attendance token
    token_marker: str = Field("ATTEND", alias="TOKEN_MARKER")
    token_ttl_seconds: int = Field(default=30, alias="TOKEN_TTL_SECONDS")
    token_rotate_seconds: int = Field(default=30, alias="TOKEN_ROTATE_SECONDS")
    token_clock_skew_ms: int = Field(default=500, alias="TOKEN_CLOCK_SKEW_MS")
    countdown_tick_seconds: int = Field(default=1, alias="COUNTDOWN_TICK_SECONDS")

    # NATS
    enable_nats: bool = Field(default=True, alias="ENABLE_NATS")
    nats_urls: str = Field("nats://127.0.0.1:4222", alias="NATS_URLS")
    nats_subject_tokens: str = Field("attendance.tokens", alias="NATS_SUBJECT_TOKENS")
    nats_subject_recorded: str = Field("attendance.recorded", alias="NATS_SUBJECT_RECORDED")

    log_level: str = Field("INFO", alias="LOG_LEVEL")
    cors_origins: str = Field(
        "http://localhost:5173,http://127.0.0.1:5173,http://localhost:3000,http://127.0.0.1:3000",
        alias="CORS_ORIGINS",
    )

    class Config:
        env_file = ".env"
        env_prefix = ""
        case_sensitive = False

    @field_validator("token_clock_skew_ms")
    @classmethod
    def _skew_is_small(cls, v: int) -> int:
        if v < 0 or v > MAX_CLOCK_SKEW_MS:
            raise ValueError(f"TOKEN_CLOCK_SKEW_MS must be between 0 and {MAX_CLOCK_SKEW_MS}")
        return v

    @field_validator("token_ttl_seconds", "token_rotate_seconds", "countdown_tick_seconds")
    @classmethod
    def _positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("interval must be positive")
        return v

    @property
    def token_ttl_ms(self) -> int:
        return self.token_ttl_seconds * 1000

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

_settings: Settings | None = None
def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
