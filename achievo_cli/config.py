import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from achievo_cli.errors import ConfigurationError

ENV_PREFIX = "ACHIEVO_"


class LocalScoringConfig(BaseModel):
    """Tunables for turning a raw diff score into a history-aware local score."""

    model_config = ConfigDict(frozen=True)

    cold_start_n: int = Field(3, ge=0)          # samples needed before percentile ranking
    window_days: int = Field(30, ge=1)          # history window for the percentile path
    alpha: float = Field(0.65, ge=0.0, le=1.0)  # weight of today vs yesterday when smoothing
    cap_cold: int = Field(98, ge=0, le=100)
    cap_stable: int = Field(85, ge=0, le=100)
    winsor_p_low: float = Field(0.05, ge=0.0, le=1.0)
    winsor_p_high: float = Field(0.95, ge=0.0, le=1.0)
    normal_mean: float = 88.0
    normal_std: float = Field(14.0, gt=0.0)
    regression_cap_after_high: int = Field(80, ge=0, le=100)
    high_threshold: int = Field(95, ge=0, le=100)

    @model_validator(mode="after")
    def _check_winsor(self):
        if self.winsor_p_low > self.winsor_p_high:
            raise ValueError("winsor_p_low must not exceed winsor_p_high")
        return self


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    app_name: str = "achievo"
    repo_path: Optional[str] = None
    data_dir: Path = Field(default_factory=lambda: Path.home() / ".achievo")

    # Tracker
    poll_seconds: int = Field(30, ge=1)

    # Base score ratchet: max growth per day as a fraction of yesterday's base
    daily_cap_ratio: float = Field(0.35, ge=0.0, le=1.0)

    local_scoring: LocalScoringConfig = Field(default_factory=LocalScoringConfig)

    # Summarization
    ai_model: str = "claude-3-5-haiku-latest"
    ai_api_key: Optional[str] = None
    ai_max_chunk_chars: int = Field(12000, ge=1000)
    offline_mode: bool = False

    # Logging
    log_level: str = "info"
    log_namespaces: List[str] = Field(default_factory=list)
    log_to_file: bool = False
    log_file_name: str = "achievo.log"

    @classmethod
    def from_env(cls, **overrides) -> "Settings":
        """Build settings from ACHIEVO_* environment variables (and .env), then apply overrides."""
        load_dotenv()
        values = {}

        def env(name):
            return os.getenv(ENV_PREFIX + name)

        if env("REPO_PATH"):
            values["repo_path"] = env("REPO_PATH")
        if env("DATA_DIR"):
            values["data_dir"] = Path(env("DATA_DIR")).expanduser()
        if env("POLL_SECONDS"):
            values["poll_seconds"] = env("POLL_SECONDS")
        if env("DAILY_CAP_RATIO"):
            values["daily_cap_ratio"] = env("DAILY_CAP_RATIO")
        if env("AI_MODEL"):
            values["ai_model"] = env("AI_MODEL")
        api_key = env("AI_API_KEY") or os.getenv("ANTHROPIC_API_KEY")
        if api_key:
            values["ai_api_key"] = api_key
        if env("AI_MAX_CHUNK_CHARS"):
            values["ai_max_chunk_chars"] = env("AI_MAX_CHUNK_CHARS")
        if env("OFFLINE"):
            values["offline_mode"] = env("OFFLINE").lower() in ("1", "true", "yes")
        if env("LOG_LEVEL"):
            values["log_level"] = env("LOG_LEVEL").lower()
        if env("LOG_NAMESPACES"):
            values["log_namespaces"] = [n.strip() for n in env("LOG_NAMESPACES").split(",") if n.strip()]
        if env("LOG_TO_FILE"):
            values["log_to_file"] = env("LOG_TO_FILE").lower() in ("1", "true", "yes")

        scoring = {}
        for field in LocalScoringConfig.model_fields:
            raw = env("LS_" + field.upper())
            if raw is not None:
                scoring[field] = raw
        if scoring:
            values["local_scoring"] = scoring

        values.update({k: v for k, v in overrides.items() if v is not None})
        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid settings: {e}") from e

    def require_repo(self) -> str:
        if not self.repo_path:
            raise ConfigurationError("No repository path set (use --repo or ACHIEVO_REPO_PATH)")
        return self.repo_path

    def with_repo(self, repo_path: str) -> "Settings":
        return self.model_copy(update={"repo_path": repo_path})
