"""Orchestrator — run the weekly sentiment digest once, outside the scheduler.

Usage:
    python generate.py             # send digests with the configured notifier
    python generate.py --dry-run   # log messages instead of sending them
"""

import argparse
import asyncio
import json
import logging
import sys

from config import load_digest_config, settings
from journal_digest.exceptions import ConfigurationError, DataSourceError
from journal_digest.models import RunOutcome
from journal_digest.wiring import build_pipeline

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(name)s] %(levelname)s: %(message)s")
logger = logging.getLogger(__name__)


async def generate_digests(dry_run: bool = False) -> RunOutcome:
    """Run the digest pipeline once and return its outcome.

    Raises:
        ConfigurationError: If the settings are invalid.
        DataSourceError: If eligible users cannot be loaded.
    """
    source = settings.model_copy(update={"notifier_backend": "log"}) if dry_run else settings
    config = load_digest_config(source)
    pipeline = build_pipeline(config, dry_run=dry_run)
    return await pipeline.run()


def main(argv: list[str] | None = None) -> None:
    """Entry point for a one-shot digest run."""
    parser = argparse.ArgumentParser(description="Send the weekly journal sentiment digest.")
    parser.add_argument("--dry-run", action="store_true", help="log messages instead of sending them")
    args = parser.parse_args(argv)

    try:
        outcome = asyncio.run(generate_digests(dry_run=args.dry_run))
    except ConfigurationError as e:
        logger.error("Invalid configuration: %s", e)
        sys.exit(2)
    except DataSourceError as e:
        logger.error("Digest run failed: %s", e)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Digest run interrupted.")
        sys.exit(0)

    print(json.dumps(outcome.summary(), indent=2))


if __name__ == "__main__":
    main()
