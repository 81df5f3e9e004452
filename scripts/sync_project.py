#!/usr/bin/env python3
"""
Command-line project sync.

Applies a project declaration file against the configured store and the
persisted snapshots, then prints which keys changed or failed.
"""

import argparse
import json
import sys
from pathlib import Path

# Add the parent directory to sys.path to import our modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from varsync.core.errors import ConfigurationError
from varsync.core.runtime import SyncRuntime
from varsync.core.schema import DeclarationClass, InstanceStatus


def load_declarations(path: str):
    """Read {"variables": {...}, "secrets": {...}} from a JSON file."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    if not isinstance(data, dict):
        raise ValueError("declaration file must contain a JSON object")

    declarations = {}
    for section in ("variables", "secrets"):
        values = data.get(section, {}) or {}
        if not isinstance(values, dict) or not all(isinstance(v, str) for v in values.values()):
            raise ValueError(f"'{section}' must map names to string values")
        declarations[section] = values
    return declarations


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Reconcile project variables and secrets",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s project.json             # Apply declarations
  %(prog)s --retrigger              # Re-apply the last persisted declarations

Environment variables:
- DB_PATH=./data/varsync.db
- STORE_BACKEND=sqlite
- SECRET_ENCRYPTION_ENABLED=false
        """
    )
    parser.add_argument("config_path", nargs="?", help="JSON file with variables and secrets")
    parser.add_argument("--db-path", help="Override DB_PATH")
    parser.add_argument("--retrigger", action="store_true",
                        help="Re-apply persisted snapshots instead of reading a file")

    args = parser.parse_args(argv)

    if not args.retrigger and not args.config_path:
        parser.error("config_path is required unless --retrigger is given")

    try:
        runtime = SyncRuntime.from_config(args.db_path)
    except ConfigurationError as e:
        print(f"❌ {e}")
        return 2

    if args.retrigger:
        outcome = runtime.project.retrigger()
    else:
        try:
            declarations = load_declarations(args.config_path)
        except (OSError, ValueError) as e:
            print(f"❌ Could not read {args.config_path}: {e}")
            return 2
        outcome = runtime.project.on_config_change(declarations["variables"], declarations["secrets"])

    for declaration_class in DeclarationClass:
        result = outcome.results[declaration_class]
        print(f"{declaration_class.value}: changed={sorted(result.changed_keys)} failed={sorted(result.failed_keys)}")

    if outcome.status is InstanceStatus.FAILED:
        print(f"❌ {outcome.description}")
        return 1

    print("✅ Project declarations applied")
    return 0


if __name__ == "__main__":
    sys.exit(main())
