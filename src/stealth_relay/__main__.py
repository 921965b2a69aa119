"""CLI entry point for stealth-relay."""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from pathlib import Path

from stealth_relay.app import StealthRelayApp
from stealth_relay.config import AppConfig, load_config
from stealth_relay.log import setup_logging
from stealth_relay.storage.database import Database
from stealth_relay.storage.ledger import ForwardLedger


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="stealth-relay",
        description="Multi-account relay that archives view-once and deleted messages to a vault",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    for name, help_text in (
        ("start", "Start all enabled accounts"),
        ("config-check", "Validate configuration"),
        ("stats", "Show forwarded-item counts from the ledger"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("-c", "--config", default="config.yaml", help="Path to config file")
        sub.add_argument("-e", "--env", default=".env", help="Path to .env file")

    args = parser.parse_args()

    if args.command is None:
        # Default to start
        args.command = "start"
        args.config = "config.yaml"
        args.env = ".env"

    if args.command == "config-check":
        _check_config(args.config, args.env)
    elif args.command == "stats":
        _stats(args.config, args.env)
    elif args.command == "start":
        _run(args.config, args.env)


def _load_or_exit(config_path: str, env_path: str) -> AppConfig:
    try:
        return load_config(config_path, env_path)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Copy config.example.yaml to config.yaml and edit it", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)


def _check_config(config_path: str, env_path: str) -> None:
    """Validate configuration and print summary."""
    config = _load_or_exit(config_path, env_path)
    print(f"Configuration valid: {config_path}")
    print(f"  Data directory: {config.data_dir}")
    print(f"  Temp storage: {config.storage.temp_root}")
    ledger = config.storage.ledger_path if config.storage.ledger_enabled else "(disabled)"
    print(f"  Ledger: {ledger}")
    print(f"  Cleanup every: {config.cleanup.interval_minutes} min")
    print(f"  Accounts configured: {len(config.accounts)}")
    for account in config.accounts:
        state = "enabled" if account.enabled else "disabled"
        vault = account.vault_destination or "(no vault)"
        retention = account.stealth.retention
        print(f"    - {account.id} [{state}] session={account.session or '(none)'} vault={vault}")
        if account.stealth.enabled:
            print(
                f"        text cache {account.stealth.max_text_cache} entries, "
                f"status {retention.status_cache_duration_ms // 3_600_000}h, "
                f"media {retention.media_cache_duration_ms // 3_600_000}h, "
                f"text {retention.text_cache_duration_ms // 3_600_000}h"
            )
            if account.stealth.excluded_groups:
                print(f"        excluded: {', '.join(account.stealth.excluded_groups)}")
        else:
            print("        stealth capture disabled")


def _stats(config_path: str, env_path: str) -> None:
    """Print per-account ledger counts."""
    config = _load_or_exit(config_path, env_path)
    if not config.storage.ledger_enabled:
        print("Ledger is disabled in configuration.")
        return
    if not Path(config.storage.ledger_path).exists():
        print(f"No ledger found at {config.storage.ledger_path}")
        return

    async def _read() -> dict[str, dict[str, int]]:
        db = Database(config.storage.ledger_path)
        await db.initialize()
        try:
            return await ForwardLedger(db).counts()
        finally:
            await db.close()

    counts = asyncio.run(_read())
    print("Forwarded items")
    print("=" * 50)
    if not counts:
        print("  (none)")
    for account_id, by_kind in sorted(counts.items()):
        summary = ", ".join(f"{kind}={n}" for kind, n in sorted(by_kind.items()))
        print(f"  {account_id}: {summary}")


def _run(config_path: str, env_path: str) -> None:
    """Load config and start the application."""
    config = _load_or_exit(config_path, env_path)
    setup_logging(config.log_level, json_output=config.log_json)

    async def _async_main() -> None:
        loop = asyncio.get_running_loop()
        stop_event = asyncio.Event()

        def _signal_handler() -> None:
            stop_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, _signal_handler)
            except NotImplementedError:
                # Windows doesn't support add_signal_handler
                signal.signal(sig, lambda s, f: _signal_handler())

        app = StealthRelayApp(config)
        await app.start()
        try:
            await stop_event.wait()
        finally:
            await app.stop()

    asyncio.run(_async_main())


if __name__ == "__main__":
    main()
