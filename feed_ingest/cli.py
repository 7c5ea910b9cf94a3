"""Command-line interface for the feed_ingest service."""

from __future__ import annotations

import argparse
import logging
import os
import signal
import threading
from pathlib import Path
from typing import List, Optional

from . import db
from .config import AppConfig, apply_env_overrides, parse_app_config, parse_env_config
from .errors import StorageError
from .scheduler import Scheduler

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Create the CLI argument parser."""
    parser = argparse.ArgumentParser(
        description="Poll RSS, Atom and JSON feeds and store new items."
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to the configuration XML file. Defaults apply when omitted.",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (e.g. DEBUG, INFO, WARNING). Overrides config.",
    )
    parser.add_argument(
        "--log-file",
        default=None,
        help="Optional path to a log file. Overrides config.",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("run", help="Poll due feeds until interrupted.")

    fetch = commands.add_parser("fetch", help="Fetch feeds now, ignoring intervals.")
    fetch.add_argument(
        "--feed-id",
        type=int,
        action="append",
        dest="feed_ids",
        metavar="ID",
        help="Feed to fetch; repeat for several. All feeds when omitted.",
    )

    add = commands.add_parser("add", help="Register a feed and fetch it once.")
    add.add_argument("url", help="Feed URL.")
    add.add_argument("--name", default=None, help="Display name (defaults to the URL).")
    add.add_argument(
        "--interval",
        type=int,
        default=None,
        metavar="MINUTES",
        help="Per-feed fetch interval. Defaults to the global cadence.",
    )

    return parser


def configure_logging(level_name: str, log_file: Optional[str] = None) -> None:
    """Initialise logging according to options."""
    log_level = getattr(logging, level_name.upper(), None)
    if not isinstance(log_level, int):
        raise ValueError(f"Unsupported log level: {level_name}")

    formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    root_logger.setLevel(log_level)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    root_logger.addHandler(stream_handler)

    if log_file:
        log_path = Path(log_file)
        if log_path.parent and not log_path.parent.exists():
            log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # urllib3 logs every connection at DEBUG
    logging.getLogger("urllib3").setLevel(max(log_level, logging.INFO))


def load_config(path: Optional[str]) -> AppConfig:
    """Read the config file (if any), its env file, then environment overrides."""
    config = parse_app_config(path) if path else AppConfig()
    if config.env_file:
        os.environ.update(parse_env_config(config.env_file))
    return apply_env_overrides(config, os.environ)


def _install_signal_handlers(stop_event: threading.Event) -> None:
    def handle(signum, _frame):
        logger.info("Received signal %d; shutting down after the current feed", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, handle)
    signal.signal(signal.SIGTERM, handle)


def _print_outcomes(outcomes) -> int:
    exit_code = 0
    for outcome in outcomes:
        if outcome.ok:
            print(
                f"feed {outcome.feed_id}: success "
                f"({outcome.items_seen} entries, {outcome.items_stored} new)"
            )
        else:
            print(f"feed {outcome.feed_id}: error: {outcome.message}")
            exit_code = 1
    return exit_code


def _run(scheduler: Scheduler) -> int:
    stop_event = threading.Event()
    _install_signal_handlers(stop_event)
    scheduler.run(stop_event)
    return 0


def _fetch(scheduler: Scheduler, feed_ids: Optional[List[int]]) -> int:
    if feed_ids:
        outcomes = [scheduler.refresh(feed_id) for feed_id in feed_ids]
    else:
        outcomes = scheduler.refresh_all()
    return _print_outcomes(outcome for outcome in outcomes if outcome is not None)


def _add(scheduler: Scheduler, config: AppConfig, args: argparse.Namespace) -> int:
    interval = config.fetch.interval_minutes if args.interval is None else args.interval
    if interval <= 0:
        raise ValueError("--interval must be positive.")
    with scheduler.session_factory() as session:
        feed = db.create_feed(session, args.name or args.url, args.url, interval)
    print(f"feed {feed.id}: registered {feed.url}")
    outcome = scheduler.trigger(feed.id).result()
    return _print_outcomes([outcome] if outcome is not None else [])


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    scheduler = None
    try:
        config = load_config(args.config)
        configure_logging(
            args.log_level or config.logging.level, args.log_file or config.logging.file
        )

        engine = db.init_engine(config.database.connection_string)
        scheduler = Scheduler(
            db.get_session_factory(engine),
            interval_minutes=config.fetch.interval_minutes,
            timeout=config.fetch.timeout_seconds,
            max_workers=config.fetch.concurrency,
        )

        if args.command == "run":
            return _run(scheduler)
        if args.command == "fetch":
            return _fetch(scheduler, args.feed_ids)
        return _add(scheduler, config, args)
    except ValueError as exc:
        parser.error(str(exc))
    except (StorageError, FileNotFoundError) as exc:
        logger.error("%s", exc)
        return 1
    except Exception:  # noqa: BLE001
        logger.exception("Unexpected error during execution.")
        return 1
    finally:
        if scheduler is not None:
            scheduler.shutdown()
