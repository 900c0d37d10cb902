"""
Command line interface for ledger-sync.

Usage:
    ledger-sync serve --config config.yaml
    ledger-sync reconcile --collection agenda --dry-run
    ledger-sync ping agenda --url https://sync.example.com
    ledger-sync alerts --output alert_rules.yml
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ledger_sync.config import SyncSettings, load_settings
from ledger_sync.monitoring.alerts import AlertRuleGenerator
from ledger_sync.utils.logging_config import configure_logging
from ledger_sync.webhook.client import WebhookClient

logger = logging.getLogger(__name__)


async def reconcile_once(settings: SyncSettings, collection: str, dry_run: bool = False) -> Dict[str, Any]:
    """
    Run one reconciliation outside the scheduler.

    Args:
        settings: Loaded settings
        collection: Collection key
        dry_run: Compute the diff without committing

    Returns:
        JSON-serializable report
    """
    from ledger_sync.webhook.app import build_scheduler

    if collection not in settings.collections:
        raise ValueError(f"Unknown collection: {collection}. Must be one of {sorted(settings.collections)}")

    scheduler = build_scheduler(settings)
    start_time = datetime.now(timezone.utc)

    result = await scheduler.reconciler.reconcile(collection)

    report = {
        "collection": collection,
        "dry_run": dry_run,
        "changed": result.changed,
        "summary": result.summary,
        "records": len(result.next_state),
        "committed": False,
    }

    if result.changed and not dry_run:
        outcome = await scheduler.retry_executor.retry(
            lambda: scheduler.ledger_store.commit(collection, result.next_state),
            label="commit"
        )
        report["committed"] = True
        report["transaction_hash"] = outcome.transaction_hash
    elif result.changed:
        logger.info("DRY RUN mode - no changes applied")
        report["next_state"] = result.next_state

    report["duration_seconds"] = (datetime.now(timezone.utc) - start_time).total_seconds()
    return report


def _serve(settings: SyncSettings) -> int:
    import uvicorn

    from ledger_sync.webhook.app import create_app_from_settings

    app = create_app_from_settings(settings)
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)
    return 0


def _ping(settings: SyncSettings, webhook_type: str, url: str, body: str) -> int:
    secrets = {
        key: c.mac_secret for key, c in settings.collections.items() if c.mac_secret
    }
    client = WebhookClient(url, secrets, timeout=settings.request_timeout_seconds)
    result = client.send(webhook_type, body.encode("utf-8"))
    print(json.dumps(result, indent=2))
    return 0 if result["status_code"] == 200 else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ledger-sync",
        description="Sync table collections onto a ledger contract",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument("--config", help="YAML config file (defaults to LEDGER_SYNC_CONFIG)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    serve_parser = subparsers.add_parser("serve", help="Run the webhook service")
    serve_parser.add_argument("--host", help="Bind address")
    serve_parser.add_argument("--port", type=int, help="Bind port")

    reconcile_parser = subparsers.add_parser("reconcile", help="Reconcile one collection now")
    reconcile_parser.add_argument("--collection", required=True, help="Collection key")
    reconcile_parser.add_argument("--dry-run", action="store_true", help="Dry run mode")

    ping_parser = subparsers.add_parser("ping", help="Send a signed webhook to a running service")
    ping_parser.add_argument("type", help="Webhook type (collection key)")
    ping_parser.add_argument("--url", required=True, help="Service base URL")
    ping_parser.add_argument("--body", default="{}", help="Raw request body")

    alerts_parser = subparsers.add_parser("alerts", help="Print Prometheus alert rules")
    alerts_parser.add_argument("--output", help="Write rules to this YAML file")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    configure_logging(
        level=logging.DEBUG if args.verbose else logging.INFO,
        json_logging=True if args.json_logs else None
    )

    try:
        if args.command == "alerts":
            generator = AlertRuleGenerator()
            if args.output:
                generator.export_to_yaml(args.output)
            else:
                print(generator.to_yaml())
            return 0

        settings = load_settings(args.config)
        if settings.json_logging and not args.json_logs:
            configure_logging(
                level=logging.DEBUG if args.verbose else logging.INFO,
                json_logging=True
            )

        if args.command == "serve":
            if args.host:
                settings.host = args.host
            if args.port:
                settings.port = args.port
            return _serve(settings)

        if args.command == "reconcile":
            report = asyncio.run(reconcile_once(settings, args.collection, dry_run=args.dry_run))
            print(json.dumps(report, indent=2, default=str))
            return 0

        if args.command == "ping":
            return _ping(settings, args.type, args.url, args.body)

        return 1

    except Exception as e:
        logger.error(f"Error: {e}", exc_info=args.verbose)
        return 1


if __name__ == "__main__":
    sys.exit(main())
