# app/cli/lifecycle.py
"""
CLI commands for snapshot lifecycle management.

Usage:
    python -m app.cli.lifecycle init-db
    python -m app.cli.lifecycle policies ORG_ID
    python -m app.cli.lifecycle dry-run POLICY_ID
    python -m app.cli.lifecycle enforce POLICY_ID --confirm
    python -m app.cli.lifecycle enforce-all --confirm
    python -m app.cli.lifecycle deletions ORG_ID --limit 20
    python -m app.cli.lifecycle hold place ORG_ID SNAPSHOT_ID --reason "litigation 2024-17"
    python -m app.cli.lifecycle hold lift ORG_ID SNAPSHOT_ID
    python -m app.cli.lifecycle reconcile POLICY_ID
"""

import argparse

# Set up database URL before importing models
import sys
import uuid

from dotenv import load_dotenv

load_dotenv()


def get_db_session():
    """Get a database session."""
    from app.database import SessionLocal

    return SessionLocal()


def _fail(message: str) -> None:
    print(f"Error: {message}")
    sys.exit(1)


def _format_bytes(size: int) -> str:
    value = float(size)
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if value < 1024 or unit == "TB":
            return f"{value:.1f} {unit}" if unit != "B" else f"{int(value)} B"
        value /= 1024
    return f"{size} B"


def _print_enforcement(result) -> None:
    if result.skipped:
        print(f"Policy {result.policy_id}: skipped ({result.skip_reason})")
        return

    print(f"Policy {result.policy_id} (run {result.run_id}, mode {result.enforcement_mode})")
    print(f"  Evaluated: {result.snapshots_evaluated}")
    print(f"  Targeted: {result.snapshots_targeted}")
    print(f"  Deleted: {result.snapshots_deleted}")
    print(f"  Already deleted: {result.snapshots_already_deleted}")
    print(f"  Held during run: {result.snapshots_held}")
    print(f"  Failed: {result.snapshots_failed}")
    print(f"  Reclaimed: {_format_bytes(result.bytes_reclaimed)}")
    if result.cancelled:
        print("  Cancelled before completion")
    if result.aborted:
        print("  Aborted: snapshot source unavailable")

    if result.errors:
        print("\n  Errors:")
        for error in result.errors:
            print(f"    - {error}")


def cmd_init_db(args):
    """Create lifecycle tables (local development; use alembic elsewhere)."""
    from app.database import init_db

    init_db()
    print("Lifecycle tables created")


def cmd_policies(args):
    """List lifecycle policies of an organization."""
    from app.services.lifecycle import list_policies

    db = get_db_session()
    try:
        policies = list_policies(db, args.org_id)

        print(f"\n=== Lifecycle Policies ({args.org_id}) ===\n")
        if not policies:
            print("No policies")
        for policy in policies:
            print(f"{policy.name} [{policy.status.upper()}] {policy.id}")
            print(f"  Enforcement mode: {policy.enforcement_mode}")
            if policy.repository_ids:
                print(f"  Repositories: {', '.join(policy.repository_ids)}")
            if policy.schedule_ids:
                print(f"  Schedules: {', '.join(policy.schedule_ids)}")
            for row in policy.rules:
                retention = row["retention"]
                max_days = retention["max_days"] or "none"
                print(f"  {row['level']}: min {retention['min_days']}d, max {max_days}")
                for override in row.get("data_type_overrides") or []:
                    window = override["retention"]
                    print(
                        f"    +{override['data_type']}: min {window['min_days']}d, "
                        f"max {window['max_days'] or 'none'}"
                    )
            print(f"  Deleted: {policy.deletion_count} ({_format_bytes(policy.bytes_reclaimed or 0)})")
            print()
    finally:
        db.close()


def cmd_dry_run(args):
    """Preview what enforcing a policy would do."""
    from app.services.lifecycle import LifecycleError, dry_run
    from app.snapshots import get_snapshot_source

    db = get_db_session()
    try:
        try:
            result = dry_run(db, get_snapshot_source(), args.policy_id)
        except LifecycleError as e:
            _fail(str(e))

        print(f"\n=== Dry Run ({result.evaluated_at.isoformat()}) ===\n")
        print(f"Snapshots: {result.total_snapshots}")
        print(f"  keep: {result.keep_count}")
        print(f"  can_delete: {result.can_delete_count}")
        print(f"  must_delete: {result.must_delete_count}")
        print(f"  hold: {result.hold_count}")
        print(f"Size to delete: {_format_bytes(result.total_size_to_delete)}")

        evaluations = result.evaluations if args.all else [e for e in result.evaluations if e.is_deletion_candidate]
        if evaluations:
            print()
        for e in evaluations:
            print(f"  {e.snapshot_id} [{e.action.value}] {e.reason}")
        print()
    finally:
        db.close()


def cmd_enforce(args):
    """Enforce one policy now."""
    from app.constants import EnforcementDefaults
    from app.services.lifecycle import LifecycleError, run_enforcement
    from app.snapshots import get_snapshot_source

    if not args.confirm:
        print("Error: Enforcement requires --confirm flag; it permanently deletes snapshots")
        print("Use dry-run to preview what would be deleted")
        sys.exit(1)

    db = get_db_session()
    try:
        try:
            result = run_enforcement(
                db,
                get_snapshot_source(),
                args.policy_id,
                initiated_by=EnforcementDefaults.INITIATED_BY_CLI,
            )
        except LifecycleError as e:
            _fail(str(e))

        print()
        _print_enforcement(result)
        print()

        if not result.success:
            sys.exit(1)
    finally:
        db.close()


def cmd_enforce_all(args):
    """Run one scheduler cycle over every active policy."""
    from app.services.lifecycle import run_scheduled_cycle
    from app.snapshots import get_snapshot_source

    if not args.confirm:
        print("Error: enforce-all requires --confirm flag; it permanently deletes snapshots")
        sys.exit(1)

    db = get_db_session()
    try:
        results = run_scheduled_cycle(db, get_snapshot_source())

        print(f"\n=== Enforcement Cycle ({len(results)} active policies) ===\n")
        for result in results:
            _print_enforcement(result)
            print()

        if not all(r.success for r in results):
            sys.exit(1)
    finally:
        db.close()


def cmd_deletions(args):
    """Show recent deletion events."""
    from app.services.lifecycle import list_policy_deletions, list_recent_deletions

    db = get_db_session()
    try:
        if args.policy:
            events = list_policy_deletions(db, args.policy, limit=args.limit)
        else:
            events = list_recent_deletions(db, args.org_id, limit=args.limit)

        print(f"\n=== Deletions ({len(events)}) ===\n")
        for event in events:
            print(
                f"{event.deleted_at.isoformat()} {event.snapshot_id} "
                f"{_format_bytes(event.size_bytes)} by {event.deleted_by} (policy {event.policy_id})"
            )
            print(f"  {event.reason}")
        print()
    finally:
        db.close()


def cmd_hold(args):
    """Place, lift or list legal holds."""
    from app.constants import EnforcementDefaults
    from app.services.lifecycle import LifecycleError, lift_hold, list_holds, place_hold

    db = get_db_session()
    try:
        try:
            if args.hold_command == "place":
                hold = place_hold(
                    db,
                    args.org_id,
                    args.snapshot_id,
                    reason=args.reason,
                    placed_by=args.placed_by or EnforcementDefaults.INITIATED_BY_CLI,
                )
                print(f"Legal hold on {hold.snapshot_id}: {hold.reason}")
            elif args.hold_command == "lift":
                lift_hold(db, args.org_id, args.snapshot_id)
                print(f"Lifted legal hold on {args.snapshot_id}")
            else:
                holds = list_holds(db, args.org_id)
                print(f"\n=== Legal Holds ({len(holds)}) ===\n")
                for hold in holds:
                    print(f"{hold.snapshot_id} placed {hold.placed_at.isoformat()} by {hold.placed_by}")
                    print(f"  {hold.reason}")
                print()
        except LifecycleError as e:
            _fail(str(e))
    finally:
        db.close()


def cmd_reconcile(args):
    """Rebuild a policy's counters from the deletion log."""
    from app.services.lifecycle import LifecycleError, reconcile_counters

    db = get_db_session()
    try:
        try:
            policy = reconcile_counters(db, args.policy_id)
        except LifecycleError as e:
            _fail(str(e))

        print(f"Policy {policy.name}: {policy.deletion_count} deletions, {_format_bytes(policy.bytes_reclaimed)}")
    finally:
        db.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Snapshot Lifecycle Management CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Preview a policy
  python -m app.cli.lifecycle dry-run 2f1c...

  # Enforce one policy now
  python -m app.cli.lifecycle enforce 2f1c... --confirm

  # Scheduler entry point (cron)
  python -m app.cli.lifecycle enforce-all --confirm

  # Put a snapshot on legal hold
  python -m app.cli.lifecycle hold place 9d0e... snap-123 --reason "audit 2025-Q1"
        """,
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # init-db command
    init_parser = subparsers.add_parser("init-db", help="Create tables (local development)")
    init_parser.set_defaults(func=cmd_init_db)

    # policies command
    policies_parser = subparsers.add_parser("policies", help="List policies of an organization")
    policies_parser.add_argument("org_id", type=uuid.UUID, help="Organization id")
    policies_parser.set_defaults(func=cmd_policies)

    # dry-run command
    dry_run_parser = subparsers.add_parser("dry-run", help="Preview a policy")
    dry_run_parser.add_argument("policy_id", type=uuid.UUID, help="Policy id")
    dry_run_parser.add_argument("--all", action="store_true", help="List every evaluation, not just deletions")
    dry_run_parser.set_defaults(func=cmd_dry_run)

    # enforce command
    enforce_parser = subparsers.add_parser("enforce", help="Enforce one policy now")
    enforce_parser.add_argument("policy_id", type=uuid.UUID, help="Policy id")
    enforce_parser.add_argument("--confirm", action="store_true", help="Confirm deletion")
    enforce_parser.set_defaults(func=cmd_enforce)

    # enforce-all command
    cycle_parser = subparsers.add_parser("enforce-all", help="Enforce every active policy (scheduler cycle)")
    cycle_parser.add_argument("--confirm", action="store_true", help="Confirm deletion")
    cycle_parser.set_defaults(func=cmd_enforce_all)

    # deletions command
    deletions_parser = subparsers.add_parser("deletions", help="Show recent deletion events")
    deletions_parser.add_argument("org_id", type=uuid.UUID, help="Organization id")
    deletions_parser.add_argument("--policy", type=uuid.UUID, help="Only events of this policy")
    deletions_parser.add_argument("--limit", type=int, default=100, help="Max events (default: 100)")
    deletions_parser.set_defaults(func=cmd_deletions)

    # hold command
    hold_parser = subparsers.add_parser("hold", help="Manage legal holds")
    hold_subparsers = hold_parser.add_subparsers(dest="hold_command", required=True)

    place_parser = hold_subparsers.add_parser("place", help="Place a legal hold")
    place_parser.add_argument("org_id", type=uuid.UUID, help="Organization id")
    place_parser.add_argument("snapshot_id", help="Snapshot id")
    place_parser.add_argument("--reason", required=True, help="Why the snapshot is held")
    place_parser.add_argument("--placed-by", help="Actor recorded on the hold (default: cli)")

    lift_parser = hold_subparsers.add_parser("lift", help="Lift a legal hold")
    lift_parser.add_argument("org_id", type=uuid.UUID, help="Organization id")
    lift_parser.add_argument("snapshot_id", help="Snapshot id")

    list_parser = hold_subparsers.add_parser("list", help="List legal holds")
    list_parser.add_argument("org_id", type=uuid.UUID, help="Organization id")

    hold_parser.set_defaults(func=cmd_hold)

    # reconcile command
    reconcile_parser = subparsers.add_parser("reconcile", help="Rebuild policy counters from the deletion log")
    reconcile_parser.add_argument("policy_id", type=uuid.UUID, help="Policy id")
    reconcile_parser.set_defaults(func=cmd_reconcile)

    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    args.func(args)


if __name__ == "__main__":
    main()
