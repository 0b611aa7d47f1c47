"""
Configuration for the genpaper-citation-server.

Uses Pydantic Settings for environment variable support.
All settings can be overridden via environment variables with
the GENPAPER_ prefix.
"""

from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings with environment variable support.

    Environment variables are prefixed with GENPAPER_.
    Example: GENPAPER_OPENAI_API_KEY=your-key

    Storage:
        Paper records and chunks are stored as JSON files at:
        ~/.genpaper/papers/{paper_id}/
        Project citation libraries live at:
        ~/.genpaper/citations/{project_id}/
    """

    model_config = SettingsConfigDict(
        env_prefix="GENPAPER_",
        extra="ignore",
    )

    # Application info
    APP_NAME: str = "genpaper-citation-server"
    APP_VERSION: str = "0.1.0"

    # Storage configuration
    STORAGE_PATH: Path = Path.home() / ".genpaper" / "citations"
    PAPERS_PATH: Path = Path.home() / ".genpaper" / "papers"
    ANALYSIS_PATH: Path = Path.home() / ".genpaper" / "analyses"
    STYLES_PATH: Path = Path.home() / ".genpaper" / "styles"

    # Citation styles
    STYLE_REPOSITORY_URL: str = (
        "https://raw.githubusercontent.com/citation-style-language/styles/master"
    )
    DEFAULT_STYLE: str = "apa"
    REQUEST_TIMEOUT: int = 30  # Seconds, remote style fetch

    # Hosted language model
    OPENAI_API_KEY: Optional[str] = None
    LLM_BASE_URL: Optional[str] = None  # For OpenAI-compatible gateways
    LLM_MODEL: str = "gpt-4o-mini"
    GENERATION_TIMEOUT: int = 120  # Seconds before a model call is aborted
    LLM_MAX_RETRIES: int = 3  # Retries on rate limits / connection errors

    # Ingestion
    CHUNK_SIZE: int = 1000  # Characters per chunk
    CHUNK_OVERLAP: int = 100  # Characters shared with the previous chunk

    # Retrieval
    MAX_CONTEXT_TOKENS: int = 8000
    MAX_CHUNKS_PER_PAPER: int = 6
    MAX_RETRIEVED_CHUNKS: int = 25

    # Matching and analysis
    MIN_MATCH_CONFIDENCE: float = 0.6
    MAX_CLAIMS: int = 20  # Claims kept per extraction call
    RELATIONSHIP_BATCH_SIZE: int = 10  # Literature claims per relationship call

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # Ensure storage directories exist
        self.STORAGE_PATH.mkdir(parents=True, exist_ok=True)
        self.PAPERS_PATH.mkdir(parents=True, exist_ok=True)
        self.ANALYSIS_PATH.mkdir(parents=True, exist_ok=True)
        self.STYLES_PATH.mkdir(parents=True, exist_ok=True)
