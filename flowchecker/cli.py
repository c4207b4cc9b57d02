"""FlowChecker CLI: entry point for the hub and one-shot checks."""

import argparse
import sys


def main():
    parser = argparse.ArgumentParser(
        prog="flowchecker",
        description="FlowChecker: watches Homey flows and logic variables for breakage",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Start the hub: scheduler, REST API and WebSocket")
    serve_parser.add_argument("--port", type=int, default=8002, help="Port (default: 8002)")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Host (default: 127.0.0.1)")
    serve_parser.add_argument("--verbose", action="store_true", help="Enable DEBUG logging")
    serve_parser.add_argument("--quiet", action="store_true", help="Only show WARNING and above")

    check_parser = subparsers.add_parser("check", help="Run one check pass against Homey and exit")
    check_parser.add_argument("--json", action="store_true", dest="json_output", help="Output as JSON")
    check_parser.add_argument("--verbose", action="store_true", help="Enable DEBUG logging")

    status_parser = subparsers.add_parser("status", help="Show status of a running hub")
    status_parser.add_argument("--json", action="store_true", dest="json_output", help="Output as JSON")
    status_parser.add_argument("--url", default="http://127.0.0.1:8002", help="Hub URL")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    _dispatch(args)


def _dispatch(args):
    """Route CLI commands."""
    if args.command == "serve":
        log_level = "INFO"
        if args.verbose:
            log_level = "DEBUG"
        elif args.quiet:
            log_level = "WARNING"
        _serve(args.host, args.port, log_level)

    elif args.command == "check":
        _check(json_output=args.json_output, log_level="DEBUG" if args.verbose else "WARNING")

    elif args.command == "status":
        _status(args.url, json_output=args.json_output)

    else:
        print(f"Unknown command: {args.command}")
        sys.exit(1)


def _setup_logging(log_level: str):
    import logging

    logging.basicConfig(
        level=getattr(logging, log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _data_dir():
    import os
    from pathlib import Path

    data_dir = Path(os.path.expanduser(os.environ.get("FLOWCHECKER_DATA_DIR", "~/.flowchecker")))
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir


async def _build_hub():
    """Create and initialize the hub plus its FlowChecker module.

    Returns:
        (hub, module), or (None, None) when Homey credentials are missing
    """
    import logging

    from flowchecker.homey.client import HomeyClient, HomeyConfig
    from flowchecker.hub.config_defaults import CONFIG_CHECK_REQUEST_TIMEOUT, seed_config_defaults
    from flowchecker.hub.core import FlowCheckerHub
    from flowchecker.modules.flow_checker import FlowCheckerModule

    logger = logging.getLogger("flowchecker.serve")

    homey_config = HomeyConfig.from_env()
    if not homey_config.token:
        logger.error(f"HOMEY_TOKEN environment variable required (Homey URL: {homey_config.url})")
        return None, None

    cache_path = str(_data_dir() / "hub.db")
    logger.info(f"Cache: {cache_path}")
    logger.info(f"Homey: {homey_config.url}")

    hub = FlowCheckerHub(cache_path)
    await hub.initialize()

    try:
        seeded = await seed_config_defaults(hub.cache)
        if seeded:
            logger.info(f"Seeded {seeded} new config parameter(s)")
    except Exception as e:
        logger.warning(f"Config seeding failed (non-fatal): {e}")

    timeout = await hub.cache.get_config_value(CONFIG_CHECK_REQUEST_TIMEOUT, 15)
    homey = HomeyClient(homey_config.url, homey_config.token, timeout=timeout)
    module = FlowCheckerModule(hub, homey, trigger_webhook=homey_config.trigger_webhook)
    hub.register_module(module)
    return hub, module


def _serve(host: str, port: int, log_level: str = "INFO"):
    """Start the FlowChecker hub."""
    import asyncio
    import logging

    _setup_logging(log_level)
    logger = logging.getLogger("flowchecker.serve")

    import uvicorn

    from flowchecker import __version__
    from flowchecker.hub.api import create_api

    async def start():
        logger.info("=" * 70)
        logger.info(f"FlowChecker {__version__}")
        logger.info(f"Server: http://{host}:{port}")
        logger.info(f"WebSocket: ws://{host}:{port}/ws")
        logger.info("=" * 70)

        hub, module = await _build_hub()
        if hub is None:
            return

        try:
            await module.initialize()
            hub.mark_module_running(module.module_id)
        except Exception as e:
            hub.mark_module_failed(module.module_id)
            logger.error(f"FlowChecker module failed to start: {e}")

        app = create_api(hub)
        config = uvicorn.Config(
            app,
            host=host,
            port=port,
            log_level=log_level.lower(),
            access_log=(log_level != "WARNING"),
        )
        server = uvicorn.Server(config)

        try:
            await server.serve()
        finally:
            if hub.is_running():
                await hub.shutdown()

    asyncio.run(start())


def _check(json_output: bool = False, log_level: str = "WARNING"):
    """Run a single pass, wait for its triggers, print the report."""
    import asyncio
    import json

    _setup_logging(log_level)

    async def run():
        hub, module = await _build_hub()
        if hub is None:
            return None
        try:
            await module.homey.open()
            await module.store.load()
            report = await module.run_check()
            await module.wait_for_dispatches()
            return report
        finally:
            await hub.shutdown()

    report = asyncio.run(run())
    if report is None:
        sys.exit(1)

    if json_output:
        print(json.dumps(report, indent=2))
    else:
        print("FlowChecker check")
        print("=" * 40)
        print(f"  Status: {report['status']}")
        if report["status"] != "ok":
            print(f"  Error:  {report.get('error')}")
        for cat in report["categories"]:
            marker = "*" if cat["changed"] else " "
            print(f" {marker} {cat['category']:<16} {cat['count']}")
            for item in cat["added"]:
                print(f"      + {item['name']} ({item['id']})")
            for item in cat["removed"]:
                print(f"      - {item['name']} ({item['id']})")

    if report["status"] != "ok":
        sys.exit(2)


def _status(url: str, json_output: bool = False):
    """Show hub status by querying /health and /api/status."""
    import json
    import urllib.error
    import urllib.request

    result = {"hub_running": False, "health": None, "status": None}

    # Check if hub is running by hitting /health
    try:
        req = urllib.request.Request(f"{url}/health", method="GET")
        with urllib.request.urlopen(req, timeout=3) as resp:
            result["health"] = json.loads(resp.read())
            result["hub_running"] = True

        req = urllib.request.Request(f"{url}/api/status", method="GET")
        with urllib.request.urlopen(req, timeout=3) as resp:
            result["status"] = json.loads(resp.read())
    except (OSError, urllib.error.URLError, ValueError):
        pass

    if json_output:
        print(json.dumps(result, indent=2))
        return

    print("FlowChecker Status")
    print("=" * 40)
    print(f"  Hub:       {'running' if result['hub_running'] else 'stopped'}")
    if result["health"]:
        uptime = result["health"].get("uptime_seconds", 0)
        hours, remainder = divmod(int(uptime), 3600)
        minutes, secs = divmod(remainder, 60)
        print(f"  Uptime:    {hours}h {minutes}m {secs}s")
    status = result["status"]
    if status:
        print(f"  Interval:  {status['interval_minutes']} min ({'on' if status['enabled'] else 'off'})")
        for category, count in status["counts"].items():
            print(f"  {category:<16} {count}")
        last = status.get("last_check") or {}
        print(f"  Last pass: {last.get('timestamp', 'never')} ({last.get('status', '-')})")


if __name__ == "__main__":
    main()
