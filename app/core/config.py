import os
from typing import List, Union

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # API Configuration
    api_v1_prefix: str = Field(default="/api/v1")
    api_title: str = Field(default="Advisor CAS API")
    api_version: str = Field(default="1.0.0")
    port: int = Field(default=8000)
    log_level: str = Field(default="INFO")

    # Environment (for conditional validation)
    environment: str = Field(default="development")

    # CAS password encryption. 64 hex chars are used as raw key bytes,
    # anything else is zero-padded / truncated to 32 bytes.
    cas_encryption_key: str = Field(default="")

    # CAS document staging
    cas_upload_dir: str = Field(default="uploads/cas")
    cas_max_upload_bytes: int = Field(default=10 * 1024 * 1024)

    # Where the blocking parse runs: "background" (in-process) or "rq" (worker queue)
    cas_parse_backend: str = Field(default="background")

    # Client aggregate persistence: "memory" or "supabase"
    repository_backend: str = Field(default="memory")

    # Supabase
    supabase_url: str = Field(default="")
    supabase_service_key: str = Field(default="")
    supabase_clients_table: str = Field(default="clients")

    # Redis (RQ parse queue)
    redis_url: str = Field(default="redis://localhost:6379")

    # CORS
    cors_origins: Union[str, List[str]] = Field(default="http://localhost:3000")
    cors_allow_credentials: bool = Field(default=True)

    # Rate Limiting
    rate_limit_requests: int = Field(default=100)

    # Operator-only endpoints (stuck-parse reset)
    internal_api_secret: str = Field(default="")

    @model_validator(mode="after")
    def validate_production_encryption_key(self):
        """Ensure CAS_ENCRYPTION_KEY is explicitly set in production"""
        if self.environment == "production":
            env_key = os.getenv("CAS_ENCRYPTION_KEY") or self.cas_encryption_key
            if not env_key:
                raise ValueError(
                    "CAS_ENCRYPTION_KEY must be explicitly set via environment variable in production. "
                    "Generate one with: openssl rand -hex 32"
                )
        return self

    @model_validator(mode="after")
    def validate_backends(self):
        if self.cas_parse_backend not in ("background", "rq"):
            raise ValueError(f"Unknown CAS_PARSE_BACKEND: {self.cas_parse_backend}")
        if self.repository_backend not in ("memory", "supabase"):
            raise ValueError(f"Unknown REPOSITORY_BACKEND: {self.repository_backend}")
        if self.cas_parse_backend == "rq" and self.repository_backend == "memory":
            # An RQ worker runs in another process and cannot see an in-memory store
            raise ValueError("CAS_PARSE_BACKEND=rq requires REPOSITORY_BACKEND=supabase")
        if self.repository_backend == "supabase" and not (
            self.supabase_url and self.supabase_service_key
        ):
            raise ValueError(
                "SUPABASE_URL and SUPABASE_SERVICE_KEY are required when REPOSITORY_BACKEND=supabase"
            )
        return self

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            # Handle comma-separated string
            return [origin.strip() for origin in v.split(",")]
        return v

    @field_validator("cors_origins", mode="after")
    @classmethod
    def ensure_cors_is_list(cls, v):
        if isinstance(v, str):
            return [v]
        return v


settings = Settings()
