"""Configuration management for chapterlens."""

from dataclasses import dataclass, field
from pathlib import Path


@dataclass
class Config:
    """Central configuration with path properties, stage thresholds and caps."""

    base_dir: Path = field(default_factory=lambda: Path.home() / ".chapterlens")

    # Embedding
    embedding_model: str = "Qwen/Qwen3-Embedding-0.6B"
    embedding_dim: int = 1024
    embedding_device: str = "cpu"

    # Relevance analysis
    analysis_model: str = "claude-haiku-4-5"
    analysis_max_tokens: int = 2048
    analysis_top_k: int = 10

    # Retrieval stages (thresholds are similarities on a 0-1 scale)
    summary_threshold: float = 0.5
    summary_limit: int = 50
    chapter_threshold: float = 0.4
    chapter_limit: int = 25
    fulltext_limit: int = 20
    substring_limit: int = 20
    substring_score: float = 0.5

    # Timeouts
    stage_timeout_s: float = 10.0
    analysis_timeout_s: float = 30.0

    # HTTP service
    host: str = "127.0.0.1"
    port: int = 8737

    @property
    def db_path(self) -> Path:
        return self.base_dir / "chapterlens.db"

    @property
    def lance_path(self) -> Path:
        return self.base_dir / "lance"

    @property
    def log_dir(self) -> Path:
        return self.base_dir / "logs"

    def ensure_dirs(self) -> None:
        """Create directory tree if it doesn't exist."""
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.log_dir.mkdir(parents=True, exist_ok=True)
