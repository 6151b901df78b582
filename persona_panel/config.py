"""Explicit runtime configuration, owned by the caller and passed to the analyzers."""
import os
from dataclasses import dataclass


@dataclass
class PanelConfig:
    api_key: str | None = None
    model: str = "gpt-4o"
    base_url: str | None = None       # None = OpenAI hosted default
    max_tokens: int = 1000
    inter_persona_delay: float = 1.0  # seconds between model calls
    batch_size: int = 3               # personas per progress batch
    progress_ttl_seconds: int = 3600
    db_path: str = "persona_panel.db"
    progress_backend: str = "sqlite"

    @classmethod
    def from_env(cls) -> "PanelConfig":
        return cls(
            api_key=os.getenv("OPENAI_API_KEY"),
            model=os.getenv("PERSONA_PANEL_MODEL", "gpt-4o"),
            base_url=os.getenv("OPENAI_BASE_URL") or None,
            max_tokens=int(os.getenv("PERSONA_PANEL_MAX_TOKENS", "1000")),
            inter_persona_delay=float(os.getenv("PERSONA_PANEL_DELAY", "1.0")),
            batch_size=int(os.getenv("PERSONA_PANEL_BATCH_SIZE", "3")),
            progress_ttl_seconds=int(os.getenv("PROGRESS_TTL_SECONDS", "3600")),
            db_path=os.getenv("DB_PATH", "persona_panel.db"),
            progress_backend=os.getenv("PROGRESS_BACKEND", "sqlite").lower(),
        )
