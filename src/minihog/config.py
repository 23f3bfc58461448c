from functools import lru_cache
from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Core API Settings
    api_host: str = Field("0.0.0.0", alias="API_HOST")
    api_port: int = Field(8000, alias="API_PORT")
    environment: str = Field("development", alias="ENVIRONMENT")
    app_env: str = Field("dev", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    # Stores: append-only events engine + metadata engine for flags/decisions
    events_database_url: str = Field("sqlite:///./data/analytics.db", alias="EVENTS_DATABASE_URL")
    metadata_database_url: str = Field("sqlite:///./data/metadata.db", alias="METADATA_DATABASE_URL")
    redis_url: str = Field("redis://localhost:6379/0", alias="REDIS_URL")

    # Analytics defaults
    default_funnel_window: str = Field("7d", alias="DEFAULT_FUNNEL_WINDOW")
    default_retention_range: str = Field("90d", alias="DEFAULT_RETENTION_RANGE")
    default_insights_period: str = Field("7d", alias="DEFAULT_INSIGHTS_PERIOD")
    query_in_chunk_size: int = Field(500, alias="QUERY_IN_CHUNK_SIZE")  # bound params per IN (...) list

    # Ingestion limits
    ingest_max_batch: int = Field(1000, alias="INGEST_MAX_BATCH")
    max_event_properties: int = Field(100, alias="MAX_EVENT_PROPERTIES")

    # Natural language query collaborator (OpenAI-compatible chat completions endpoint)
    nl_query_api_url: str = Field("https://api.cerebras.ai/v1/chat/completions", alias="NL_QUERY_API_URL")
    nl_query_api_key: str | None = Field(None, alias="NL_QUERY_API_KEY")
    nl_query_model: str = Field("llama3.1-8b", alias="NL_QUERY_MODEL")
    nl_query_timeout_seconds: float = Field(30.0, alias="NL_QUERY_TIMEOUT_SECONDS")
    nl_query_max_sql_length: int = Field(5000, alias="NL_QUERY_MAX_SQL_LENGTH")
    nl_query_max_question_length: int = Field(500, alias="NL_QUERY_MAX_QUESTION_LENGTH")

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "allow"  # Allow extra environment variables
        populate_by_name = True


@lru_cache
def get_settings() -> Settings:
    return Settings()
