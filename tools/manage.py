#!/usr/bin/env python3
"""
VoteChain Management CLI

Commands for managing the ledger:
- init-db: Create the PostgreSQL schema (tables, indexes, append-only trigger)
- verify-chain: Verify ledger chain integrity
- export-entries: Export entries to JSON for offline verification
- tally: Print the results of a vote

The store is selected from the environment exactly as the server does
(ENTRYSTORE_DRIVER, DATABASE_URL, DATABASE_HOST, ...).

Usage:
    python -m tools.manage <command> [options]

Examples:
    python -m tools.manage init-db
    python -m tools.manage verify-chain
    python -m tools.manage export-entries -o ledger_export.json
    python -m tools.manage tally budget-2025
"""

import argparse
import json
import sys
from datetime import datetime, timezone

from tools.verify import build_export


def cmd_init_db(args):
    """Create the database schema."""
    from votechain.db.config import DatabaseConfig, get_database_url
    from votechain.api.shared_ledger import create_postgres_store

    db_url = get_database_url()
    if db_url is None:
        print("Error: No database configured. Set DATABASE_URL or DATABASE_HOST.")
        return 1

    config = DatabaseConfig.from_url(db_url) if "://" in db_url else DatabaseConfig.from_env()
    print(f"Creating schema on {config.host}:{config.port}/{config.database}...")
    create_postgres_store(config)
    print("[OK] Schema ready")
    return 0


def cmd_verify_chain(args):
    """Verify the integrity of the ledger chain."""
    from votechain.api.shared_ledger import create_ledger

    print("Loading ledger...")
    ledger = create_ledger()
    result = ledger.validate_chain()

    print(f"Ledger loaded: {result.entry_count} entries")

    if result.valid:
        print("[OK] Chain integrity verified OK")
        tail = ledger.store.get_tail()
        if tail.last_entry_hash:
            print(f"  Chain tail: {tail.last_entry_hash[:16]}...")
        return 0

    print("[FAIL] Chain integrity verification FAILED!")
    print(f"  Reason: {result.reason.value if result.reason else 'unknown'}")
    print(f"  Offending index: {result.offending_index}")
    print(f"  {result.message}")
    return 1


def cmd_export_entries(args):
    """Export all entries to a JSON file."""
    from votechain.api.shared_ledger import create_ledger

    print("Loading entries...")
    entries = create_ledger().store.list_all()
    print(f"Found {len(entries)} entries")

    export_data = build_export(entries, exported_at=datetime.now(timezone.utc).isoformat())

    output_file = args.output or "ledger_export.json"
    with open(output_file, "w", encoding="utf-8") as f:
        json.dump(export_data, f, indent=2)

    print(f"[OK] Exported {len(entries)} entries to {output_file}")
    return 0


def cmd_tally(args):
    """Print the results of one vote."""
    from votechain.api.shared_ledger import create_ledger
    from votechain.core import VoteNotFound

    try:
        results = create_ledger().tally(args.vote_id)
    except VoteNotFound:
        print(f"Error: No such vote: {args.vote_id}")
        return 1

    status = "open" if results.is_active else "closed"
    print(f"{results.title} ({results.vote_id}, {status})")
    width = max((len(option) for option in results.results), default=0)
    for option, count in results.results.items():
        print(f"  {option:<{width}}  {count}")
    print(f"  Total votes: {results.total_votes}")
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="VoteChain Management CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # init-db
    subparsers.add_parser(
        "init-db",
        help="Create the PostgreSQL schema"
    )

    # verify-chain
    subparsers.add_parser(
        "verify-chain",
        help="Verify ledger chain integrity"
    )

    # export-entries
    p_export = subparsers.add_parser(
        "export-entries",
        help="Export all entries to JSON"
    )
    p_export.add_argument("--output", "-o", help="Output file (default: ledger_export.json)")

    # tally
    p_tally = subparsers.add_parser(
        "tally",
        help="Print the results of a vote"
    )
    p_tally.add_argument("vote_id", help="Vote to tally")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    commands = {
        "init-db": cmd_init_db,
        "verify-chain": cmd_verify_chain,
        "export-entries": cmd_export_entries,
        "tally": cmd_tally,
    }

    return commands[args.command](args) or 0


if __name__ == "__main__":
    sys.exit(main())
