from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Access gate settings.

    Notes:
    - Every field can be overridden with an ``ACCESS_GATE_`` environment variable
      (e.g. ``ACCESS_GATE_CACHE_TTL_SECONDS=60``). List fields take JSON.
    - ``auth_secret`` has no default. Requests to protected paths fail with a
      configuration error until it is set.
    """

    model_config = SettingsConfigDict(env_prefix="ACCESS_GATE_", extra="ignore")

    db_url: str | None = None
    rules_path: str | None = None
    log_level: str = "INFO"

    # Identity resolution
    auth_secret: str | None = None
    authorization_header: str = "Authorization"
    bearer_prefix: str = "Bearer"

    # Permission cache
    cache_ttl_seconds: float = Field(default=300.0, gt=0)
    max_cache_size: int = Field(default=1000, ge=1)
    enable_cache: bool = True

    # Gate behaviour
    detailed_logging: bool = False
    unauthorized_path: str = "/dashboard/unauthorized"
    signin_path: str = "/auth/signin"
    public_paths: list[str] = Field(default_factory=lambda: ["/auth", "/api/auth", "/"])

    # Profile loader
    check_timeout_seconds: float = Field(default=5.0, gt=0)
    loader_workers: int = Field(default=4, ge=1)

    def resolved_db_url(self) -> str:
        if self.db_url:
            return self.db_url

        repo_root = Path(__file__).resolve().parents[1]
        db_path = repo_root / "access_gate.db"
        return f"sqlite:///{db_path}"

    def resolved_rules_path(self) -> Path:
        if self.rules_path:
            return Path(self.rules_path)

        repo_root = Path(__file__).resolve().parents[1]
        return repo_root / "config" / "access_rules.yaml"


@lru_cache
def get_settings() -> Settings:
    return Settings()
