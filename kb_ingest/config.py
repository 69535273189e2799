"""Configuration for KB Ingest, read from ``KB_INGEST_*`` environment variables or ``.env``."""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Paths
    data_dir: Path = Path("data")
    chunks_dir: Path = Path("data/chunks")
    guide_path: Path = Path("data/guide.yaml")
    manifest_path: Path = Path("source-manifest.json")
    reports_dir: Path = Path("data/reports")

    # Segmentation
    min_segment_chars: int = 300
    max_segment_chars: int = 8000
    lines_per_page: int = 300
    min_text_length_for_segmentation: int = 200

    # Generation calls
    max_output_tokens: int = 16000
    llm_retries: int = 2
    retry_base_delay_s: float = 1.0
    retry_max_delay_s: float = 30.0
    retry_jitter: bool = True
    single_retry_delay_s: float = 2.0
    call_timeout_s: float = 120.0

    # Circuit breaker
    breaker_threshold: int = 5
    breaker_reset_s: float = 30.0

    # Post-extraction stages
    quality_gate: bool = False
    max_related: int = 3

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="KB_INGEST_",
        env_file=".env",
        extra="ignore",
    )

    @classmethod
    def for_data_dir(cls, data_dir: Path, **overrides) -> "Settings":
        """Settings with every output path placed under ``data_dir``."""
        data_dir = Path(data_dir)
        paths = {
            "data_dir": data_dir,
            "chunks_dir": data_dir / "chunks",
            "guide_path": data_dir / "guide.yaml",
            "manifest_path": data_dir / "source-manifest.json",
            "reports_dir": data_dir / "reports",
        }
        paths.update(overrides)
        return cls(**paths)


@lru_cache
def get_settings() -> Settings:
    return Settings()


def configure_logging(level: str = "INFO") -> None:
    """Install a single timestamped stream handler on the ``kb_ingest`` logger."""
    root = logging.getLogger("kb_ingest")
    root.setLevel(level.upper())
    if any(getattr(handler, "_kb_ingest", False) for handler in root.handlers):
        return
    handler = logging.StreamHandler()
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")
    )
    handler._kb_ingest = True
    root.addHandler(handler)
