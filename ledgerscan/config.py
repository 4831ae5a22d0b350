"""Configuration management for ledgerscan."""

import os
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


def _redact(secret: str) -> str:
    if not secret:
        return "✗ Not set"
    return f"✓ Set ({secret[:8]}...{secret[-4:]})"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Extraction model; "none" always uses the regex fallback
    llm_provider: Literal["openai", "ollama", "none"] = "openai"
    openai_api_key: str = ""
    openai_model: str = "gpt-4o"
    ollama_host: str = "http://localhost:11434"
    ollama_model: str = "llama3.2"
    llm_timeout_seconds: float = 60.0
    llm_max_retries: int = 2

    # Selects the dev or prod database file
    dev_mode: bool = True

    # Extraction limits
    max_stored_text_chars: int = 50_000
    max_prompt_chars: int = 12_000
    user_context_max_chars: int = 2_000
    description_max_chars: int = 300
    min_abs_amount: float = 0.01  # Anything smaller is parsing noise
    max_abs_amount: float = 100_000.0

    # OCR languages passed to tesseract
    ocr_languages: str = "heb+eng"

    # Optional JSON file overriding the keyword vocabulary
    vocabulary_path: Path | None = None

    data_dir: Path = Path.home() / ".ledgerscan"

    api_host: str = "0.0.0.0"
    api_port: int = 8000

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,  # LLM_PROVIDER and llm_provider both work
        extra="ignore",
    )

    @property
    def db_path(self) -> Path:
        """SQLite file, separate for dev and prod."""
        return self.data_dir / f"ledgerscan_{'dev' if self.dev_mode else 'prod'}.db"

    @property
    def uploads_path(self) -> Path:
        """Root of stored upload files (one subdirectory per household)."""
        return self.data_dir / "uploads"

    def ensure_directories(self) -> None:
        """Create necessary directories if they don't exist."""
        for directory in (self.data_dir, self.uploads_path):
            directory.mkdir(parents=True, exist_ok=True)

    def log_config(self) -> None:
        """Print the effective configuration with the API key redacted."""
        rows = [
            ("Working Directory", os.getcwd()),
            (".env present", Path(".env").exists()),
            ("LLM Provider", self.llm_provider),
            ("OpenAI API Key", _redact(self.openai_api_key)),
            ("OpenAI Model", self.openai_model),
            ("Ollama", f"{self.ollama_model} @ {self.ollama_host}"),
            ("LLM Timeout", f"{self.llm_timeout_seconds}s x {self.llm_max_retries} attempts"),
            ("OCR Languages", self.ocr_languages),
            ("Vocabulary", self.vocabulary_path or "built-in"),
            ("Database", self.db_path),
            ("Uploads", self.uploads_path),
            ("API", f"{self.api_host}:{self.api_port}"),
        ]
        env_override = os.getenv("LLM_PROVIDER")

        print("\n" + "=" * 60)
        print("📋 LEDGERSCAN CONFIGURATION")
        print("=" * 60)
        for label, value in rows:
            print(f"{label + ':':<21}{value}")
        if env_override:
            print(f"⚠️  LLM_PROVIDER set in environment: {env_override}")
        print("=" * 60 + "\n")


# Global settings instance
settings = Settings()
