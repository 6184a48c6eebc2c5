#!/usr/bin/env python3
"""CLI runner for clinical alert generation.

Usage:
    python -m dialysis_care.runner --once               # One pass, then exit
    python -m dialysis_care.runner --once --dry-run     # Show alerts without creating them
    python -m dialysis_care.runner --daemon             # Run continuously
    python -m dialysis_care.runner --daemon --interval 600
"""

import argparse
import logging
import sys
import time

from .alert_store import AlertStore
from .config import config
from .notifications import TeamsNotifier
from .rules import AlertRuleEngine, GenerationResult
from .store import ClinicStore

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging.

    Args:
        verbose: If True, use DEBUG level.
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )


def build_engine(
    clinic_db: str | None = None,
    alert_db: str | None = None,
) -> AlertRuleEngine:
    return AlertRuleEngine.from_store(
        ClinicStore(db_path=clinic_db),
        AlertStore(db_path=alert_db),
        notifier=TeamsNotifier(),
    )


def print_result(result: GenerationResult, dry_run: bool = False) -> None:
    print("=" * 60)
    print("CLINICAL ALERT GENERATION" + (" - DRY RUN" if dry_run else ""))
    print("=" * 60)
    print(f"Patients evaluated: {result.patients_evaluated}")

    if dry_run:
        print(f"Alerts that would be raised: {len(result.candidates)}\n")
        for candidate in result.candidates:
            print(f"  [{candidate.severity.value.upper()}] {candidate.title}")
            print(f"    Patient: {candidate.patient_id}")
            print(f"    Type: {candidate.alert_type.value}")
            if candidate.description:
                print(f"    {candidate.description}")
    else:
        print(f"Alerts created: {len(result.created)}")
        for alert_type, count in sorted(result.created_by_type.items()):
            print(f"  {alert_type}: {count}")
        print(f"Duplicates skipped: {result.skipped_duplicates}")

    if result.errors:
        print(f"\nErrors ({len(result.errors)}):")
        for error in result.errors:
            print(f"  Patient {error['patient_id']}: {error['error']}")


def run_once(engine: AlertRuleEngine, dry_run: bool = False) -> GenerationResult:
    """Run one generation pass and print a summary."""
    result = engine.generate(dry_run=dry_run)
    print_result(result, dry_run=dry_run)
    return result


def run_daemon(engine: AlertRuleEngine, interval_seconds: int | None = None) -> None:
    """Run generation passes until interrupted.

    Args:
        engine: The configured rule engine.
        interval_seconds: Seconds between passes (default from config).
    """
    interval = interval_seconds or config.ALERT_POLL_INTERVAL

    print("=" * 60)
    print("CLINICAL ALERT GENERATION - DAEMON MODE")
    print(f"Running every {interval} seconds")
    print("Press Ctrl+C to stop")
    print("=" * 60)

    try:
        while True:
            try:
                engine.generate()
            except Exception as e:
                logger.error(f"Error during alert generation: {e}")

            logger.info(f"Sleeping for {interval} seconds...")
            time.sleep(interval)

    except KeyboardInterrupt:
        print("\nShutting down...")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Generate clinical alerts for active dialysis patients",
    )
    mode = parser.add_mutually_exclusive_group(required=True)
    mode.add_argument("--once", action="store_true", help="Run a single pass and exit")
    mode.add_argument("--daemon", action="store_true", help="Run continuously")
    parser.add_argument(
        "--interval", type=int, default=None,
        help=f"Seconds between passes in daemon mode (default: {config.ALERT_POLL_INTERVAL})",
    )
    parser.add_argument("--dry-run", action="store_true", help="Evaluate rules without creating alerts")
    parser.add_argument("--clinic-db", default=None, help="Override CLINIC_DB_PATH")
    parser.add_argument("--alert-db", default=None, help="Override ALERT_DB_PATH")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    engine = build_engine(args.clinic_db, args.alert_db)

    if args.daemon:
        run_daemon(engine, args.interval)
        return 0

    result = run_once(engine, dry_run=args.dry_run)
    return 1 if result.errors else 0


if __name__ == "__main__":
    sys.exit(main())
