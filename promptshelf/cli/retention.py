# promptshelf/cli/retention.py
"""
CLI commands for retention management.

Usage:
    python -m promptshelf.cli.retention status
    python -m promptshelf.cli.retention sweep --dry-run
    python -m promptshelf.cli.retention sweep --confirm
    python -m promptshelf.cli.retention tombstone experiences 42 --reason "user request"
    python -m promptshelf.cli.retention reconcile --execute
    python -m promptshelf.cli.retention archived comments
"""

import argparse
import json
import logging
import sys
import time

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


def get_service():
    """Build a retention service from environment configuration."""
    from promptshelf.config import get_settings
    from promptshelf.logging_config import configure_logging
    from promptshelf.services.retention.service import RetentionService

    settings = get_settings()
    configure_logging(json_format=settings.LOG_JSON, level=settings.LOG_LEVEL)
    return RetentionService.from_settings(settings)


def _print_cleanup(results) -> bool:
    """Print sweep results. Returns True when no pass reported errors."""
    ok = True
    for result in results:
        print(f"{result.operation}{' (dry run)' if result.dry_run else ''}")
        print(f"  Processed: {result.records_processed}")
        print(f"  Deleted: {result.records_deleted}")
        print(f"  Archived: {result.records_archived}")
        print(f"  Duration: {result.duration_ms}ms")
        if result.related_records:
            print("  Records by type:")
            for table, count in result.related_records.items():
                print(f"    {table}: {count}")
        if result.errors:
            ok = False
            print("  Errors:")
            for error in result.errors:
                print(f"    - {error}")
    return ok


def _print_cascade(result) -> None:
    print(f"{result.operation} {result.entity_type.value} {result.record_id}")
    print(f"  Affected: {result.total_affected}")
    for table, count in result.affected_by_type().items():
        print(f"    {table}: {count}")
    for entity_type, count in result.removed.items():
        print(f"  Removed {entity_type.value}: {count}")


def _run_cascade(operation):
    """Run one direct lifecycle operation, reporting errors instead of tracebacks."""
    from promptshelf.services.retention.errors import RetentionError

    service = get_service()
    try:
        result = operation(service)
        _print_cascade(result)
    except (RetentionError, ValueError) as e:
        print(f"Error: {e}")
        sys.exit(1)
    finally:
        service.close()


def cmd_status(args):
    """Show retention statistics and pending work."""
    service = get_service()
    try:
        stats = service.get_retention_stats()
        preview = service.preview()

        print("\n=== Retention Status ===\n")
        for entity_type, counts in stats.items():
            pending = preview.get(entity_type, {})
            print(f"{entity_type.value}")
            print(f"  Total: {counts['total']}")
            print(f"  Active: {counts['active']}")
            print(f"  Tombstoned: {counts['tombstoned']}")
            print(f"  Eligible for purge: {counts['eligible_for_purge']}")
            print(f"  Pending tombstone: {pending.get('pending_tombstone', 0)}")
        print()
    finally:
        service.close()


def cmd_policies(args):
    """List retention policies in effect."""
    from promptshelf.services.retention.policy_service import describe_policies

    service = get_service()
    try:
        print("\n=== Retention Policies ===\n")
        for name, policy in describe_policies(service.get_policies()).items():
            print(name)
            print(f"  Max age: {policy['max_age_days']} days")
            print(f"  Grace period: {policy['grace_period_days']} days")
            print(f"  Archive before purge: {policy['enable_archiving']}")
            print(f"  Batch size: {policy['batch_size']}")
            print()
    finally:
        service.close()


def cmd_preview(args):
    """Show what the next sweep would tombstone and purge."""
    service = get_service()
    try:
        preview = service.preview()
        print("\n=== Sweep Preview ===\n")
        for entity_type, counts in preview.items():
            print(f"{entity_type.value}")
            print(f"  Pending tombstone: {counts['pending_tombstone']}")
            print(f"  Pending purge: {counts['pending_purge']}")
            print(f"  Batch size: {counts['batch_size']}")
        print()
    finally:
        service.close()


def cmd_sweep(args):
    """Run a full retention sweep."""
    if not args.dry_run and not args.confirm:
        print("Error: Sweep requires --confirm flag for non-dry-run operations")
        print("Use --dry-run to preview what would be processed")
        sys.exit(1)

    service = get_service()
    try:
        print(f"\n{'DRY RUN - ' if args.dry_run else ''}Running retention sweep...\n")
        results = service.run_sweep(dry_run=args.dry_run)
        ok = _print_cleanup(results)
    finally:
        service.close()

    if not ok:
        sys.exit(1)


def cmd_tombstone(args):
    """Tombstone a record and its descendants."""
    _run_cascade(lambda service: service.tombstone(args.entity_type, args.id, reason=args.reason))


def cmd_restore(args):
    """Restore a tombstoned record and its cascade."""
    _run_cascade(lambda service: service.restore(args.entity_type, args.id))


def cmd_takedown(args):
    """Moderation takedown: tombstone and drop reactions immediately."""
    _run_cascade(lambda service: service.takedown(args.entity_type, args.id, args.reason))


def cmd_reconcile(args):
    """Repair orphaned records."""
    service = get_service()
    try:
        print(f"\n{'DRY RUN - ' if args.dry_run else ''}Reconciling orphaned records...\n")
        result = service.reconcile(dry_run=args.dry_run)
        ok = _print_cleanup([result])
    finally:
        service.close()

    if not ok:
        sys.exit(1)


def cmd_export_user(args):
    """Export all data for one user as JSON."""
    from promptshelf.services.retention.errors import RecordNotFound

    service = get_service()
    try:
        data = service.export_user_data(args.id)
    except RecordNotFound as e:
        print(f"Error: {e}")
        sys.exit(1)
    finally:
        service.close()

    print(json.dumps(data, indent=2))


def cmd_archived(args):
    """List archived batches for an entity type."""
    service = get_service()
    try:
        batches = service.read_archive(args.entity_type)
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)
    finally:
        service.close()

    if args.json:
        print(json.dumps(batches, indent=2))
        return

    print(f"\nArchived {args.entity_type}: {len(batches)} batches")
    for batch in batches:
        print(f"  {batch['archived_at']}  {batch['batch_id']}  {batch['record_count']} records")


def cmd_schedule(args):
    """Run sweeps on a fixed interval until interrupted."""
    from promptshelf.config import get_settings

    interval_hours = args.interval_hours or get_settings().RETENTION_SWEEP_INTERVAL_HOURS
    service = get_service()
    runs = 0
    try:
        while True:
            results = service.run_sweep()
            runs += 1
            errors = sum(len(r.errors) for r in results)
            logger.info(f"Scheduled sweep {runs} finished with {errors} errors")
            if args.max_runs and runs >= args.max_runs:
                break
            time.sleep(interval_hours * 3600)
    except KeyboardInterrupt:
        print("Scheduler stopped")
    finally:
        service.close()


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="promptshelf Retention Management CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Check current status
  python -m promptshelf.cli.retention status

  # Preview a sweep, then run it
  python -m promptshelf.cli.retention sweep --dry-run
  python -m promptshelf.cli.retention sweep --confirm

  # Direct operations
  python -m promptshelf.cli.retention tombstone experiences 42 --reason spam
  python -m promptshelf.cli.retention restore experiences 42
  python -m promptshelf.cli.retention takedown experiences 42 --reason "abusive content"

  # Repair orphans
  python -m promptshelf.cli.retention reconcile --execute

  # Inspect archived batches
  python -m promptshelf.cli.retention archived experiences
        """,
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    status_parser = subparsers.add_parser("status", help="Show retention status")
    status_parser.set_defaults(func=cmd_status)

    policies_parser = subparsers.add_parser("policies", help="List retention policies")
    policies_parser.set_defaults(func=cmd_policies)

    preview_parser = subparsers.add_parser("preview", help="Preview the next sweep")
    preview_parser.set_defaults(func=cmd_preview)

    sweep_parser = subparsers.add_parser("sweep", help="Run a full retention sweep")
    sweep_parser.add_argument("--dry-run", action="store_true", help="Preview only, don't modify records")
    sweep_parser.add_argument("--confirm", action="store_true", help="Confirm sweep operation")
    sweep_parser.set_defaults(func=cmd_sweep)

    for name, func, help_text in (
        ("tombstone", cmd_tombstone, "Tombstone a record and its descendants"),
        ("restore", cmd_restore, "Restore a tombstoned record"),
        ("takedown", cmd_takedown, "Moderation takedown of a record"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("entity_type", help="Entity type (e.g. experiences, users)")
        sub.add_argument("id", type=int, help="Record id")
        if name == "tombstone":
            sub.add_argument("--reason", default=None, help="Why the record is being removed")
        elif name == "takedown":
            sub.add_argument("--reason", required=True, help="Moderation reason")
        sub.set_defaults(func=func)

    reconcile_parser = subparsers.add_parser("reconcile", help="Repair orphaned records")
    reconcile_parser.add_argument("--dry-run", action="store_true", default=True, help="Preview only (default: true)")
    reconcile_parser.add_argument("--execute", action="store_true", help="Actually repair orphaned records")
    reconcile_parser.set_defaults(func=cmd_reconcile)

    export_parser = subparsers.add_parser("export-user", help="Export a user's data as JSON")
    export_parser.add_argument("id", type=int, help="User id")
    export_parser.set_defaults(func=cmd_export_user)

    archived_parser = subparsers.add_parser("archived", help="List archived batches for an entity type")
    archived_parser.add_argument("entity_type", help="Entity type (e.g. experiences, users)")
    archived_parser.add_argument("--json", action="store_true", help="Print full batch documents")
    archived_parser.set_defaults(func=cmd_archived)

    schedule_parser = subparsers.add_parser("schedule", help="Run sweeps periodically")
    schedule_parser.add_argument("--interval-hours", type=int, default=None, help="Hours between sweeps")
    schedule_parser.add_argument("--max-runs", type=int, default=0, help="Stop after N sweeps (default: run forever)")
    schedule_parser.set_defaults(func=cmd_schedule)

    args = parser.parse_args(argv)

    # Handle --execute flag for reconcile
    if hasattr(args, "execute") and args.execute:
        args.dry_run = False

    args.func(args)


if __name__ == "__main__":
    main()
