"""Centralized configuration using pydantic-settings."""

from dataclasses import dataclass
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic_settings import BaseSettings

from journal_digest.cron import CronExpression
from journal_digest.exceptions import ConfigurationError

ANALYZER_BACKENDS = ("lexicon", "gemini")
NOTIFIER_BACKENDS = ("gmail", "log")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Deployment profile (e.g. "dev", "prod")
    environment: str = "dev"

    # Cadence: sec min hour day-of-month month day-of-week [year]
    digest_cron: str = "0 0 9 ? * SUN"
    digest_timezone: str = "UTC"
    window_days: int = 7
    run_on_startup: bool = False

    # SQLite database with users, journal entries and the run log
    db_path: str = "output/journal.db"

    # Sentiment analysis
    analyzer_backend: str = "lexicon"
    gemini_api_key: str = ""
    analyze_timeout_seconds: float = 30.0

    # Notification (Gmail API OAuth token from scripts/gmail_auth.py)
    notifier_backend: str = "gmail"
    gmail_credentials_json: str = ""
    gmail_token_json: str = ""
    mail_sender: str = ""
    notify_timeout_seconds: float = 30.0

    max_concurrency: int = 1

    # Address for `python main.py`
    host: str = "0.0.0.0"
    port: int = 8000

    # Secret for external cron trigger (e.g. cron-job.org)
    cron_secret: str = ""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


settings = Settings()


@dataclass(frozen=True)
class DigestConfig:
    """Validated digest configuration, resolved once at process start."""

    environment: str
    cron: CronExpression
    timezone: ZoneInfo
    window_days: int
    run_on_startup: bool
    db_path: Path
    analyzer_backend: str
    gemini_api_key: str
    analyze_timeout: float
    notifier_backend: str
    gmail_token_json: str
    mail_sender: str
    notify_timeout: float
    max_concurrency: int
    cron_secret: str


def load_digest_config(source: Settings | None = None) -> DigestConfig:
    """Validate settings and build the DigestConfig.

    Raises:
        ConfigurationError: On any invalid or missing value. Nothing is
            deferred to dispatch time.
    """
    s = source or settings

    try:
        zone = ZoneInfo(s.digest_timezone)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigurationError(f"Unknown timezone: {s.digest_timezone!r}") from e

    analyzer = s.analyzer_backend.strip().lower()
    if analyzer not in ANALYZER_BACKENDS:
        raise ConfigurationError(
            f"Unknown analyzer backend {s.analyzer_backend!r} (expected one of {', '.join(ANALYZER_BACKENDS)})"
        )
    if analyzer == "gemini" and not s.gemini_api_key:
        raise ConfigurationError("analyzer_backend=gemini requires GEMINI_API_KEY.")

    notifier = s.notifier_backend.strip().lower()
    if notifier not in NOTIFIER_BACKENDS:
        raise ConfigurationError(
            f"Unknown notifier backend {s.notifier_backend!r} (expected one of {', '.join(NOTIFIER_BACKENDS)})"
        )
    if notifier == "gmail" and not s.gmail_token_json:
        raise ConfigurationError("notifier_backend=gmail requires GMAIL_TOKEN_JSON.")

    if s.window_days < 1:
        raise ConfigurationError("window_days must be at least 1.")
    if s.analyze_timeout_seconds <= 0 or s.notify_timeout_seconds <= 0:
        raise ConfigurationError("Timeouts must be positive.")
    if s.max_concurrency < 1:
        raise ConfigurationError("max_concurrency must be at least 1.")

    return DigestConfig(
        environment=s.environment,
        cron=CronExpression(s.digest_cron),
        timezone=zone,
        window_days=s.window_days,
        run_on_startup=s.run_on_startup,
        db_path=Path(s.db_path),
        analyzer_backend=analyzer,
        gemini_api_key=s.gemini_api_key,
        analyze_timeout=s.analyze_timeout_seconds,
        notifier_backend=notifier,
        gmail_token_json=s.gmail_token_json,
        mail_sender=s.mail_sender,
        notify_timeout=s.notify_timeout_seconds,
        max_concurrency=s.max_concurrency,
        cron_secret=s.cron_secret,
    )
