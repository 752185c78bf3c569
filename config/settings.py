"""Application settings loaded from .env file."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from dotenv import load_dotenv


def _project_root() -> Path:
    return Path(__file__).resolve().parent.parent


@dataclass
class Settings:
    """Process-wide configuration for the portfolio tracker.

    Per-user integration keys (FMP, Resend, notification email) are not
    here: they live in each user's portfolio settings document.
    """

    # Paths
    project_root: Path = field(default_factory=_project_root)
    db_path: Path = field(default=None)
    log_dir: Path = field(default=None)

    # Logging
    log_level: str = "INFO"

    # Local user the CLI acts as
    user_id: str = "local"

    # External services
    fmp_base_url: str = "https://financialmodelingprep.com/stable"
    resend_api_url: str = "https://api.resend.com/emails"
    alert_from_address: str = "Price Alerts <onboarding@resend.dev>"
    http_timeout: float = 15.0

    # Scheduler
    alert_check_minutes: int = 15

    def __post_init__(self):
        if self.db_path is None:
            self.db_path = self.project_root / "data" / "portfolio_tracker.db"
        if self.log_dir is None:
            self.log_dir = self.project_root / "data" / "logs"

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.log_dir.mkdir(parents=True, exist_ok=True)


_settings: Settings | None = None


def get_settings() -> Settings:
    """Load settings from .env and the environment (cached)."""
    global _settings
    if _settings is not None:
        return _settings

    root = _project_root()
    load_dotenv(root / ".env")

    _settings = Settings(
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        user_id=os.getenv("PORTFOLIO_USER", "local"),
        fmp_base_url=os.getenv("FMP_BASE_URL", "https://financialmodelingprep.com/stable"),
        resend_api_url=os.getenv("RESEND_API_URL", "https://api.resend.com/emails"),
        alert_from_address=os.getenv("ALERT_FROM_ADDRESS", "Price Alerts <onboarding@resend.dev>"),
        http_timeout=float(os.getenv("HTTP_TIMEOUT", "15")),
        alert_check_minutes=int(os.getenv("ALERT_CHECK_MINUTES", "15")),
        db_path=Path(os.getenv("DB_PATH", root / "data" / "portfolio_tracker.db")),
        log_dir=Path(os.getenv("LOG_DIR", root / "data" / "logs")),
    )
    return _settings

