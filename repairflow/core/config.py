
from pydantic import Field
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    """Application configuration loaded from environment variables / .env file."""

    app_name: str = "RepairFlow API"
    app_env: str = "development"
    frontend_url: str = "http://localhost:3000"

    # Persistence: "memory" keeps everything in-process, "sql" uses DATABASE_URL
    storage_backend: str = Field(default="memory", alias="STORAGE_BACKEND")
    database_url: str = Field(
        default="sqlite+aiosqlite:///./repairflow_dev.db",
        alias="DATABASE_URL",
    )

    # Workflow budgets
    latency_budget_ms: float = Field(
        default=500.0, alias="LATENCY_BUDGET_MS",
    )  # Operations slower than this emit a slow_operation signal
    dependency_timeout_seconds: float = Field(
        default=5.0, alias="DEPENDENCY_TIMEOUT_SECONDS",
    )  # Upper bound for any single repository, directory or notifier call
    ai_timeout_seconds: float = Field(
        default=30.0, alias="AI_TIMEOUT_SECONDS",
    )  # Damage assessment and resolution advice; vision calls run long
    broadcast_max_concurrency: int = Field(
        default=10, alias="BROADCAST_MAX_CONCURRENCY",
    )
    reminder_offsets_hours: list[int] = Field(
        default_factory=lambda: [24, 1], alias="REMINDER_OFFSETS_HOURS",
    )  # First offset is the "warning" reminder, the last one the "final" reminder

    # OpenAI
    openai_api_key: str | None = Field(default=None, alias="OPENAI_API_KEY")
    openai_model: str = Field(default="gpt-4.1-mini", alias="OPENAI_MODEL")
    openai_max_tokens: int = Field(default=1500, alias="OPENAI_MAX_TOKENS")
    openai_timeout: int = Field(default=30, alias="OPENAI_TIMEOUT")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "populate_by_name": True,
    }

    @property
    def ai_enabled(self) -> bool:
        """AI features are available only when an OpenAI key is configured."""
        return bool(self.openai_api_key)

settings = Settings()
