"""Application configuration — environment variables and defaults.

Runtime knobs (paths, server bind, timers, HTTP timeouts) live HERE.
The user-facing dashboard configuration (symbols, sources, display
preferences) is NOT kept here — it is owned by ConfigStore and persisted
to ``CONFIG_PATH``.
"""

import os
from pathlib import Path


class Settings:
    """Central configuration pulled from environment with safe defaults."""

    # Paths
    BASE_DIR: Path = Path(__file__).resolve().parent.parent
    DATA_DIR: Path = Path(os.getenv("CANDLEBAR_DATA_DIR", str(BASE_DIR / "data")))
    LOGS_DIR: Path = Path(os.getenv("CANDLEBAR_LOGS_DIR", str(BASE_DIR / "logs")))

    # Persisted dashboard document (symbols, sources, display settings)
    CONFIG_PATH: Path = DATA_DIR / "candlebar_config.json"

    # Server
    HOST: str = os.getenv("CANDLEBAR_HOST", "127.0.0.1")
    PORT: int = int(os.getenv("CANDLEBAR_PORT", "8765"))

    # ── Timers ─────────────────────────────────────────────────────
    # Seconds between rotation ticks in "cycle" display mode
    ROTATION_INTERVAL: float = float(os.getenv("CANDLEBAR_ROTATION_INTERVAL", "5"))

    # ── Data sources ───────────────────────────────────────────────
    HTTP_TIMEOUT: float = float(os.getenv("CANDLEBAR_HTTP_TIMEOUT", "10"))
    # yfinance history window used to find the previous close
    STOCK_HISTORY_PERIOD: str = os.getenv("CANDLEBAR_STOCK_PERIOD", "5d")

    # ── Logging ────────────────────────────────────────────────────
    # Console threshold; files always get DEBUG
    LOG_LEVEL: str = os.getenv("CANDLEBAR_LOG_LEVEL", "INFO").upper()
    # false = console only (e.g. when the host shell captures stderr itself)
    LOG_TO_FILE: bool = os.getenv("CANDLEBAR_LOG_TO_FILE", "true").lower() == "true"
    MAX_LOG_FILES: int = int(os.getenv("CANDLEBAR_MAX_LOG_FILES", "10"))

    # Feature flags
    PERSIST_CONFIG: bool = os.getenv("CANDLEBAR_PERSIST", "true").lower() == "true"

    def __init__(self) -> None:
        """Ensure runtime directories exist."""
        self.DATA_DIR.mkdir(parents=True, exist_ok=True)
        self.LOGS_DIR.mkdir(parents=True, exist_ok=True)

    @property
    def server_url(self) -> str:
        """Computed: local URL of the control API."""
        return f"http://{self.HOST}:{self.PORT}"


settings = Settings()
