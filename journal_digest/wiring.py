"""Build the pipeline and scheduler from a resolved DigestConfig."""

import logging

from config import DigestConfig
from journal_digest.database import SQLiteUserDataSource
from journal_digest.exceptions import ConfigurationError
from journal_digest.notifier import GmailNotifier, LogNotifier, Notifier
from journal_digest.pipeline import DigestPipeline
from journal_digest.scheduler import DigestScheduler
from journal_digest.sentiment import GeminiSentimentAnalyzer, LexiconSentimentAnalyzer, SentimentAnalyzer

logger = logging.getLogger(__name__)


def build_analyzer(config: DigestConfig) -> SentimentAnalyzer:
    if config.analyzer_backend == "gemini":
        return GeminiSentimentAnalyzer(config.gemini_api_key, timeout=int(config.analyze_timeout))
    if config.analyzer_backend == "lexicon":
        return LexiconSentimentAnalyzer()
    raise ConfigurationError(f"Unknown analyzer backend: {config.analyzer_backend}")


def build_notifier(config: DigestConfig, dry_run: bool = False) -> Notifier:
    if dry_run or config.notifier_backend == "log":
        return LogNotifier()
    if config.notifier_backend == "gmail":
        return GmailNotifier(config.gmail_token_json, sender=config.mail_sender)
    raise ConfigurationError(f"Unknown notifier backend: {config.notifier_backend}")


def build_pipeline(config: DigestConfig, dry_run: bool = False) -> DigestPipeline:
    """Wire data source, analyzer and notifier into a pipeline."""
    pipeline = DigestPipeline(
        data_source=SQLiteUserDataSource(config.db_path),
        analyzer=build_analyzer(config),
        notifier=build_notifier(config, dry_run=dry_run),
        window_days=config.window_days,
        analyze_timeout=config.analyze_timeout,
        notify_timeout=config.notify_timeout,
        max_concurrency=config.max_concurrency,
        db_path=config.db_path,
    )
    logger.info(
        "[%s] Pipeline ready: analyzer=%s, notifier=%s, window=%d days",
        config.environment, config.analyzer_backend,
        "log" if dry_run else config.notifier_backend, config.window_days,
    )
    return pipeline


def build_scheduler(config: DigestConfig, pipeline: DigestPipeline) -> DigestScheduler:
    return DigestScheduler(pipeline, config.cron, tz=config.timezone)
