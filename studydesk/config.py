"""Configuration from .env file."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Credentials are optional here; the clients that need them fail fast.
    OPENAI_API_KEY: str | None = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    OPENAI_TEMPERATURE: float = 0.7
    OPENAI_MAX_TOKENS: int = 1000
    EMBEDDING_MODEL: str = "text-embedding-ada-002"

    SUPABASE_URL: str | None = None
    SUPABASE_KEY: str | None = None
    PDF_BUCKET: str = "pdfs"

    # Retrieval: chunks below this score are treated as unrelated to the question.
    SIMILARITY_THRESHOLD: float = 0.82
    MATCH_COUNT: int = 5

    # Ingestion
    CHUNK_SIZE: int = 1000
    CHUNK_OVERLAP: int = 200
    EMBED_BATCH_SIZE: int = 20  # Rows per insert; large inserts time out
    DOWNLOAD_TIMEOUT: float = 60.0

    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"


settings = Settings()
