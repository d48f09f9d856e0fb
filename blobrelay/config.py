# Relay settings, read from the environment (a local .env file is honoured).
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

DEFAULT_MEDIA_KEY_PATTERN = r"""blob:[^\s"'<>()\[\],]*[^\s"'<>()\[\],.;:!?]"""


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    return int(raw) if raw else default


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    return float(raw) if raw else default


@dataclass
class Settings:
    host: str = "0.0.0.0"
    port: int = 5000
    public_dir: Path = Path("./uploads/public")
    archive_dir: Path = Path("./uploads/archive")
    public_base_url: str = "http://localhost:5000"
    sweep_interval_s: float = 300.0
    max_file_age_s: float = 600.0
    pending_ttl_s: float = 600.0
    media_key_pattern: str = DEFAULT_MEDIA_KEY_PATTERN
    notify_webhook_url: Optional[str] = None
    notify_timeout_s: float = 10.0
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        origins = (os.getenv("RELAY_CORS_ORIGINS") or "*").split(",")
        return cls(
            host=(os.getenv("RELAY_HOST") or "0.0.0.0").strip(),
            port=_env_int("RELAY_PORT", 5000),
            public_dir=Path(os.getenv("RELAY_PUBLIC_DIR") or "./uploads/public").resolve(),
            archive_dir=Path(os.getenv("RELAY_ARCHIVE_DIR") or "./uploads/archive").resolve(),
            public_base_url=(os.getenv("RELAY_PUBLIC_BASE_URL") or "http://localhost:5000").strip().rstrip("/"),
            sweep_interval_s=_env_float("RELAY_SWEEP_INTERVAL_S", 300.0),
            max_file_age_s=_env_float("RELAY_MAX_FILE_AGE_S", 600.0),
            pending_ttl_s=_env_float("RELAY_PENDING_TTL_S", 600.0),
            media_key_pattern=os.getenv("RELAY_MEDIA_KEY_PATTERN") or DEFAULT_MEDIA_KEY_PATTERN,
            notify_webhook_url=(os.getenv("RELAY_NOTIFY_WEBHOOK_URL") or "").strip() or None,
            notify_timeout_s=_env_float("RELAY_NOTIFY_TIMEOUT_S", 10.0),
            cors_origins=[o.strip() for o in origins if o.strip()],
            log_level=(os.getenv("RELAY_LOG_LEVEL") or "INFO").strip().upper(),
        )

    def file_url(self, name: str) -> str:
        return f"{self.public_base_url.rstrip('/')}/files/{name}"
