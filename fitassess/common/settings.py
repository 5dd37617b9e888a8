from __future__ import annotations
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


@dataclass(frozen=True)
class Settings:
    db_path: Path = Path("./fitassess.db")
    tick_ms: int = 100
    log_level: str = "INFO"
    camera_index: int = 0


def load_settings(env_file: str | None = None) -> Settings:
    # Load environment variables from .env file
    load_dotenv(env_file)
    return Settings(
        db_path=Path(os.getenv("FITASSESS_DB_PATH", "./fitassess.db")),
        tick_ms=int(os.getenv("FITASSESS_TICK_MS", "100")),
        log_level=os.getenv("FITASSESS_LOG_LEVEL", "INFO"),
        camera_index=int(os.getenv("FITASSESS_CAMERA_INDEX", "0")),
    )
