"""Configuration management for the Suggestion Engine."""

from functools import lru_cache

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from .env file (only if accessible)
try:
    load_dotenv()
except (PermissionError, OSError):
    # Sandboxed environments may block .env; variables must then be set directly
    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Environment
    SUGGESTION_ENGINE_ENV: str = Field(default="dev", description="Environment: dev, staging, prod")
    DATA_DIR: str = Field(default="data", description="Root directory for stores and audit artifacts")

    # Stores
    STORE_BACKEND: str = Field(default="local", description="Store backend: local or supabase")
    SUPABASE_URL: str | None = Field(default=None, description="Supabase project URL")
    SUPABASE_SERVICE_ROLE_KEY: str | None = Field(default=None, description="Supabase service role key")

    # Text generation
    LLM_PROVIDER: str = Field(default="anthropic", description="Text generation provider: anthropic or openai")
    ANTHROPIC_API_KEY: str | None = Field(default=None, description="Anthropic API key")
    OPENAI_API_KEY: str | None = Field(default=None, description="OpenAI API key")
    ANTHROPIC_MODEL: str = Field(default="claude-haiku-4-5-20251001", description="Anthropic model")
    OPENAI_MODEL: str = Field(default="gpt-4o-mini", description="OpenAI model")
    LLM_MAX_ATTEMPTS: int = Field(default=3, description="Attempts per generation call")
    LLM_RETRY_BASE_SECONDS: float = Field(
        default=1.0, description="Linear backoff base; attempt n waits base * n"
    )
    LLM_TIMEOUT_SECONDS: float = Field(default=60.0, description="Per-request timeout")

    # Stage strategies: heuristic or llm
    GATE_STRATEGY: str = Field(default="heuristic", description="Concentration gate strategy")
    GENERATION_STRATEGY: str = Field(default="llm", description="Suggestion generation strategy")
    SCORING_STRATEGY: str = Field(default="heuristic", description="Utility scoring strategy")
    DEDUP_STRATEGY: str = Field(
        default="heuristic", description="Dedup strategy: jaccard, heuristic or llm"
    )

    # Scoring & filtering
    SCORING_POLICY: str = Field(default="composite", description="Filter policy: composite or cutoff")
    SCORING_DIMENSION_FLOOR: float = Field(default=0.5, description="Composite policy per-dimension floor")
    SCORING_COMPOSITE_CUTOFF: float = Field(default=0.6, description="Composite policy cutoff")
    GENERATION_CONFIDENCE_FLOOR: float = Field(default=0.5, description="Candidates below are discarded")

    # Deduplication
    DEDUP_JACCARD_THRESHOLD: float = Field(default=0.7, description="Two-class duplicate threshold")

    # Retrieval
    RETRIEVAL_TOP_N: int = Field(default=3, description="Past observations fed as context")
    RETRIEVAL_LAMBDA: float = Field(default=0.3, description="MMR relevance/diversity balance")
    RETRIEVAL_ALPHA: float = Field(default=0.05, description="Recency decay rate per day")

    # Scheduling
    PIPELINE_INTERVAL_SECONDS: float = Field(default=15.0, description="Seconds between pipeline ticks")
    PIPELINE_INITIAL_DELAY_SECONDS: float = Field(default=5.0, description="Delay before the first run")
    GATE_RECENT_OBSERVATIONS: int = Field(default=5, description="Observations fetched for the gate")
    PIPELINE_AUTOSTART: bool = Field(default=True, description="Schedule runs when the API starts")


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings instance
    """
    return Settings()
