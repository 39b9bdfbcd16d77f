"""
vendorvault CLI — entry point for operator tasks.

Usage:
    vendorvault migrate status          # Show applied vs pending migrations
    vendorvault migrate apply [VER]     # Apply pending migrations
    vendorvault vendors                 # List vendor credential schemas
    vendorvault handlers                # List registered handlers + capabilities
    vendorvault health                  # Per-vendor configuration summary
    vendorvault audit [--vendor V]      # Recent credential audit entries
    vendorvault serve                   # Start the HTTP service
    vendorvault version                 # Show version
"""

from __future__ import annotations

import argparse
import json
import logging
import sys


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="vendorvault",
        description="vendorvault — scoped vendor credential vault and connection tester.",
    )
    parser.add_argument("--version", action="store_true", help="Show version and exit")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command")

    # migrate
    migrate_parser = subparsers.add_parser("migrate", help="Database migrations")
    migrate_sub = migrate_parser.add_subparsers(dest="migrate_command")
    migrate_sub.add_parser("status", help="Show applied vs pending migrations")
    apply_parser = migrate_sub.add_parser("apply", help="Apply pending migrations")
    apply_parser.add_argument("target", nargs="?", help="Apply only this version")
    apply_parser.add_argument("--dry-run", action="store_true", help="List without executing")

    # vendors
    vendors_parser = subparsers.add_parser("vendors", help="List vendor credential schemas")
    vendors_parser.add_argument(
        "--scope", choices=["admin", "tenant"], default="tenant", help="Scope to describe"
    )
    vendors_parser.add_argument("--json", action="store_true", help="JSON output")

    # handlers
    handlers_parser = subparsers.add_parser("handlers", help="List registered vendor handlers")
    handlers_parser.add_argument(
        "--register",
        metavar="DOTTED_PATH",
        action="append",
        default=[],
        help="Also register a handler class (package.module:Class)",
    )

    # health
    health_parser = subparsers.add_parser("health", help="Per-vendor configuration summary")
    health_parser.add_argument("--json", action="store_true", help="JSON output")

    # audit
    audit_parser = subparsers.add_parser("audit", help="Show recent audit entries")
    audit_parser.add_argument("--vendor", help="Filter by vendor id")
    audit_parser.add_argument("--tenant", help="Filter by tenant id")
    audit_parser.add_argument("--action", choices=["read", "write", "delete", "test"])
    audit_parser.add_argument("--limit", type=int, default=20)

    # serve
    serve_parser = subparsers.add_parser("serve", help="Start the HTTP service")
    serve_parser.add_argument("--host", default=None, help="Bind address")
    serve_parser.add_argument("--port", type=int, default=None, help="Port")

    # version
    subparsers.add_parser("version", help="Show version")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.version or args.command == "version":
        from vendorvault import __version__

        print(f"vendorvault {__version__}")
        return 0

    if args.command == "migrate":
        return _cmd_migrate(args)
    elif args.command == "vendors":
        return _cmd_vendors(args)
    elif args.command == "handlers":
        return _cmd_handlers(args)
    elif args.command == "health":
        return _cmd_health(args)
    elif args.command == "audit":
        return _cmd_audit(args)
    elif args.command == "serve":
        return _cmd_serve(args)
    else:
        parser.print_help()
        return 0


def _cmd_migrate(args: argparse.Namespace) -> int:
    from vendorvault.db import migrate

    if args.migrate_command == "apply":
        try:
            applied = migrate.apply(version=args.target, dry_run=args.dry_run)
        except Exception as e:
            print(f"Migration failed: {e}", file=sys.stderr)
            return 1
        if not applied:
            print("No pending migrations.")
        for v in applied:
            print(f"{'Would apply' if args.dry_run else 'Applied'} {v}")
        return 0

    try:
        rows = migrate.status()
    except Exception as e:
        print(f"Cannot read migration status: {e}", file=sys.stderr)
        return 1
    for row in rows:
        applied_at = row["applied_at"].isoformat() if row["applied_at"] else ""
        print(f"  {row['version']:<6} {row['status']:<8} {row['filename']:<40} {applied_at}")
    return 0


def _cmd_vendors(args: argparse.Namespace) -> int:
    from vendorvault.vault.models import ScopeKind
    from vendorvault.vault.schema import get_schema_registry

    scope = ScopeKind(args.scope)
    views = [d.schema_view(scope) for d in get_schema_registry().all()]
    if args.json:
        print(json.dumps(views, indent=2))
        return 0

    for view in views:
        shared = " (shared)" if view["shared"] else ""
        print(f"{view['vendorId']:<16} {view['displayName']}{shared}")
        print(f"    auth: {view['authenticationMethod']}  capabilities: {', '.join(view['capabilities'])}")
        for f in view["fields"]:
            flags = []
            if f["required"]:
                flags.append("required")
            if f["sensitive"]:
                flags.append("sensitive")
            aliases = f" aliases: {', '.join(f['aliases'])}" if f["aliases"] else ""
            print(f"    - {f['name']:<18} {f['kind']:<7} {' '.join(flags)}{aliases}")
    return 0


def _cmd_handlers(args: argparse.Namespace) -> int:
    from vendorvault.vendors.registry import get_registry

    registry = get_registry()
    for path in args.register:
        try:
            registry.register_path(path)
        except (ImportError, ValueError) as e:
            print(f"Cannot register {path}: {e}", file=sys.stderr)
            return 1

    handlers = registry.list_handlers()
    if not handlers:
        print("No handlers registered.")
        return 1
    for info in handlers:
        caps = ", ".join(sorted(c.value for c in info.capabilities))
        print(f"{info.vendor_id:<16} {caps:<40} {info.handler_class}")
    return 0


def _cmd_health(args: argparse.Namespace) -> int:
    from vendorvault.vault.service import get_vault

    try:
        summary = get_vault().health_summary()
    except Exception as e:
        print(f"Cannot read credential store: {e}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps(summary, indent=2))
        return 0
    for row in summary:
        admin = row["adminConnectionStatus"] or ("configured" if row["hasAdminCredentials"] else "-")
        print(f"{row['vendorId']:<16} admin: {admin:<14} tenants: {row['tenantCount']}")
    return 0


def _cmd_audit(args: argparse.Namespace) -> int:
    from vendorvault.audit.logger import query_log

    entries = query_log(
        limit=args.limit, vendor_id=args.vendor, tenant_id=args.tenant, action=args.action
    )
    if not entries:
        print("No audit entries.")
        return 0
    for e in entries:
        scope = f"tenant:{e.tenant_id}" if e.tenant_id else e.scope_kind
        print(
            f"{e.timestamp.isoformat()}  {e.action:<6} {e.outcome:<9} "
            f"{e.vendor_id:<14} {scope:<20} {e.actor}"
        )
    return 0


def _cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    from vendorvault.api.app import create_app
    from vendorvault.config import get_config
    from vendorvault.errors import ConfigurationError
    from vendorvault.vault.service import get_vault

    cfg = get_config()
    host = args.host or cfg.api_host
    port = args.port or cfg.api_port

    try:
        get_vault().check_ready()
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(f"Starting vendorvault on {host}:{port}...")
    uvicorn.run(create_app(), host=host, port=port)
    return 0


if __name__ == "__main__":
    sys.exit(main())
