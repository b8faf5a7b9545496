"""Configuration settings for the application."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Pydantic settings class for the application."""

    # Define the settings with default values and types
    # These will be loaded from environment variables or a .env file if not provided
    LOG_LEVEL: str = "info"  # Options: debug, info, warning, error, critical

    # LLM Configuration
    BACKEND: str = "openai"  # Options: openai, anthropic
    OPENAI_API_KEY: str | None = None
    OPENAI_BASE_URL: str | None = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    ANTHROPIC_API_KEY: str | None = None
    ANTHROPIC_MODEL: str = "claude-3-5-haiku-latest"
    MAX_TOKENS: int = 4096

    # Agent loop
    MAX_ITERATIONS: int = 10
    STOP_ON_FINISH: bool = True
    TEMPERATURE: float = 0.7
    TOOL_CALL_POLICY: str = "first"  # Options: first, sequential, concurrent

    # Retry / backoff for backend calls
    RETRY_MAX_RETRIES: int = 3
    RETRY_INITIAL_DELAY: float = 1.0
    RETRY_MAX_DELAY: float = 60.0
    RETRY_BACKOFF_MULTIPLIER: float = 2.0

    # Multi-agent coordination
    COORDINATION_STRATEGY: str = "sequential"  # Options: sequential, parallel, hierarchical, collaborative
    COMMUNICATION_MODE: str = "shared"  # Options: shared, directed, broadcast
    MAX_CONCURRENT_TASKS: int = 5
    COLLABORATION_ROUNDS: int = 3
    PARALLEL_RESULT_ORDER: str = "registration"  # Options: registration, completion

    class Config:
        """Configuration for Pydantic settings."""

        # Load environment variables from a .env file
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
