"""
Application configuration loader and it handles:
- Environment variables
- LLM provider settings
- Retry / concurrency limits
- Database and auth configuration

And, the main purpose:
Central place for system configuration.
"""


from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite+aiosqlite:///./studyplan.db"

    # LLM provider
    OPENAI_API_KEY: str = ""
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"
    OPENAI_MODEL: str = "gpt-4o"
    OPENAI_TIMEOUT_SECONDS: float = 60.0
    OPENAI_TEMPERATURE: float = 0.7
    OPENAI_MAX_TOKENS: int = 2000

    # Retry + shared pool
    LLM_MAX_RETRIES: int = 2
    LLM_BACKOFF_BASE_SECONDS: float = 0.5
    LLM_MAX_CONCURRENCY: int = 8
    LLM_MAX_BACKLOG: int = 32

    # Whole create() pipeline, LLM call included
    CREATE_DEADLINE_SECONDS: float = 200.0

    # Bearer tokens
    JWT_SECRET_KEY: str = "change-me-in-production"
    JWT_ALGORITHM: str = "HS256"

    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        extra = "ignore"

settings = Settings()
