"""
Configuration for Bear Court
============================

Environment variables:
- ORACLE_MODE: none|deepseek|proxy (default: none)
- DEEPSEEK_API_KEY: API key for DeepSeek
- DEEPSEEK_MODEL: Model to use (default: deepseek-chat)
- JUDGE_PROXY_URL: Judge proxy endpoint for ORACLE_MODE=proxy
- STORE_BACKEND: memory|redis (default: memory)
- REDIS_URL: Redis connection URL for STORE_BACKEND=redis
- ADJUDICATION_DEBOUNCE_SECONDS: Minimum spacing between verdict requests (default: 5)
- RATE_LIMIT_COOLDOWN_SECONDS: Cooldown after provider throttling (default: 60)
- JWT_SECRET_KEY: Secret for anonymous identity tokens
- DEV_MODE: Expose the maintainer reset endpoint (default: false)
"""

from typing import Optional, List
from pydantic_settings import BaseSettings
from functools import lru_cache

from .schemas import OracleMode, StoreBackend


class Settings(BaseSettings):
    """Application settings from environment variables"""

    # Oracle
    oracle_mode: OracleMode = OracleMode.NONE
    deepseek_api_key: Optional[str] = None
    deepseek_model: str = "deepseek-chat"
    deepseek_base_url: str = "https://api.deepseek.com"
    judge_proxy_url: Optional[str] = None
    oracle_temperature: float = 1.3
    oracle_max_tokens: int = 4096
    llm_timeout: int = 60

    # Store
    store_backend: StoreBackend = StoreBackend.MEMORY
    redis_url: str = "redis://localhost:6379/0"
    app_id: str = "bear-judge-app-v3"
    stats_doc_id: str = "--GLOBAL-STATS--"
    case_code_length: int = 6

    # Guard
    adjudication_debounce_seconds: float = 5.0
    rate_limit_cooldown_seconds: float = 60.0

    # Identity
    jwt_secret_key: str = "dev-secret-key-change-in-production"
    jwt_algorithm: str = "HS256"
    identity_token_ttl_days: int = 365

    # Service
    dev_mode: bool = False
    cors_allow_origins: str = "http://localhost:5173,http://127.0.0.1:5173,http://localhost:3000"
    service_version: str = "5.6.0"

    class Config:
        env_prefix = ""
        case_sensitive = False
        env_file = ".env"
        env_file_encoding = "utf-8"

    def validate_oracle_config(self) -> List[str]:
        """Validate oracle configuration, return list of warnings"""
        warnings = []

        if self.oracle_mode == OracleMode.DEEPSEEK:
            if not self.deepseek_api_key:
                warnings.append("ORACLE_MODE=deepseek but DEEPSEEK_API_KEY not set")

        elif self.oracle_mode == OracleMode.PROXY:
            if not self.judge_proxy_url:
                warnings.append("ORACLE_MODE=proxy but JUDGE_PROXY_URL not set")

        elif self.oracle_mode == OracleMode.NONE:
            warnings.append("ORACLE_MODE=none, adjudication requests will fail")

        if self.jwt_secret_key == "dev-secret-key-change-in-production" and not self.dev_mode:
            warnings.append("JWT_SECRET_KEY is the development default")

        return warnings

    def cors_origins(self) -> List[str]:
        origins: List[str] = []
        for item in self.cors_allow_origins.split(","):
            origin = item.strip().strip('"').strip("'").rstrip("/")
            if origin:
                origins.append(origin)
        return origins


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
