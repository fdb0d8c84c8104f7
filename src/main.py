# src/main.py — v3
"""CLI entry point — fetch, watch, cookie commands.

Usage:
    quotabar fetch [-p PROVIDER ...] [--user-action] [--json]
    quotabar watch [--interval SECONDS]
    quotabar cookie clear PROVIDER
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from quotabar.version import __version__

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    from quotabar.config.settings import ConfigurationError, load_settings

    try:
        settings = load_settings(**({"log_level": "DEBUG"} if args.verbose else {}))
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2
    _setup_logging(settings)

    try:
        return asyncio.run(args.func(args, settings))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except Exception as exc:
        logger.error("Fatal error: %s", exc, exc_info=args.verbose)
        return 1


def _build_parser() -> argparse.ArgumentParser:
    """Build CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="quotabar",
        description=f"quotabar v{__version__} — AI coding plan usage poller",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command")

    # --- fetch ---
    p_fetch = subparsers.add_parser("fetch", help="Fetch usage once")
    p_fetch.add_argument(
        "-p", "--provider", dest="providers", action="append", default=None,
        help="Provider to fetch (repeatable; default: all enabled)",
    )
    p_fetch.add_argument(
        "--user-action", action="store_true",
        help="Treat the fetch as user initiated (may show keychain prompts)",
    )
    p_fetch.add_argument("--json", action="store_true", help="Print JSON")
    p_fetch.set_defaults(func=_cmd_fetch)

    # --- watch ---
    p_watch = subparsers.add_parser("watch", help="Poll in the background until interrupted")
    p_watch.add_argument(
        "--interval", type=float, default=None,
        help="Seconds between refreshes (default: REFRESH_INTERVAL_S)",
    )
    p_watch.set_defaults(func=_cmd_watch)

    # --- cookie ---
    p_cookie = subparsers.add_parser("cookie", help="Manage cached cookie headers")
    cookie_sub = p_cookie.add_subparsers(dest="cookie_command", required=True)
    p_clear = cookie_sub.add_parser("clear", help="Forget the cached cookie of a provider")
    p_clear.add_argument("provider")
    p_clear.set_defaults(func=_cmd_cookie_clear)

    return parser


async def _cmd_fetch(args: argparse.Namespace, settings) -> int:
    from quotabar.pipeline.orchestrator import UsageOrchestrator

    orchestrator = UsageOrchestrator(settings)
    try:
        results = await orchestrator.refresh(
            "foreground" if args.user_action else "background",
            providers=args.providers,
        )
    finally:
        await orchestrator.aclose()

    if args.json:
        payload = {
            name: {
                "snapshot": r.snapshot.model_dump(mode="json") if r.snapshot else None,
                "error": r.error_message,
            }
            for name, r in results.items()
        }
        print(json.dumps(payload, indent=2))
    else:
        _print_results(results)
    return 0 if all(r.ok for r in results.values()) else 1


async def _cmd_watch(args: argparse.Namespace, settings) -> int:
    from quotabar.pipeline.orchestrator import UsageOrchestrator

    orchestrator = UsageOrchestrator(settings)
    try:
        await orchestrator.run_forever(args.interval, on_results=_print_results)
    finally:
        await orchestrator.aclose()
    return 0


async def _cmd_cookie_clear(args: argparse.Namespace, settings) -> int:
    from quotabar.pipeline.orchestrator import build_deps

    deps = build_deps(settings)
    try:
        await deps.cookie_cache.clear(args.provider)
    finally:
        await deps.http.aclose()
    print(f"Cleared cached cookie for {args.provider}")
    return 0


def _print_results(results: dict) -> None:
    """Print a human-readable line per provider."""
    for name, result in results.items():
        if result.snapshot is None:
            print(f"{name:<11} error: {result.error_message}")
            continue
        snap = result.snapshot
        parts = []
        for label, window in (("session", snap.primary), ("weekly", snap.secondary), ("extra", snap.tertiary)):
            if window is not None:
                parts.append(f"{label} {window.used_percent:.0f}%")
        if snap.credits_remaining is not None:
            parts.append(f"credits {snap.credits_remaining:,.2f}")
        who = snap.identity.login_method if snap.identity and snap.identity.login_method else ""
        print(f"{name:<11} {', '.join(parts) or 'no data'}  {who}".rstrip())


def _setup_logging(settings) -> None:
    """Configure logging for CLI usage."""
    from quotabar.logging.logger import setup_logging

    setup_logging(
        level=settings.log_level,
        log_format=settings.log_format,
        log_file=str(settings.log_file) if settings.log_file else None,
        rotation=settings.log_rotation,
        retention=settings.log_retention,
    )


if __name__ == "__main__":
    sys.exit(main())
