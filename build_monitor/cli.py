from __future__ import annotations

import argparse
import asyncio
import os
import sys

import structlog

from build_monitor.config import AppConfig, ConfigError, load_config
from build_monitor.dashboard import DashboardRenderer
from build_monitor.logging_setup import configure_logging, shutdown_logging
from build_monitor.monitor import Monitor


logger = structlog.get_logger(__name__)


async def run_once(config: AppConfig) -> int:
    monitor = Monitor.from_config(config)
    try:
        snapshot = await monitor.poll_all_once()
    finally:
        await monitor.stop()

    renderer = DashboardRenderer(
        monitor.store,
        monitor.hosts,
        window_size=config.stability_window,
        clear_screen=False,
    )
    renderer.draw()
    return 0 if snapshot and all(s.is_healthy for s in snapshot.values()) else 1


async def run_forever(config: AppConfig) -> int:
    monitor = Monitor.from_config(config)
    renderer = DashboardRenderer(
        monitor.store,
        monitor.hosts,
        window_size=config.stability_window,
        interval_ms=config.render_interval,
    )
    await monitor.run(renderer)
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Live build stability dashboard")
    parser.add_argument(
        "--config",
        default=os.getenv("BUILD_MONITOR_CONFIG", "config.toml"),
        help="Path to TOML or YAML config",
    )
    parser.add_argument("--once", action="store_true", help="Poll every host once, print the dashboard and exit")
    parser.add_argument("--log-level", default=None, help="Logging level (DEBUG, INFO, WARNING, ...)")
    parser.add_argument("--no-bell", action="store_true", help="Disable the terminal bell")
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"build-monitor: {e}", file=sys.stderr)
        return 2

    if args.log_level:
        config.log_level = args.log_level
    if args.no_bell:
        config.enable_bell = False

    configure_logging(config.log_level, config.log_file)
    if not config.hosts:
        logger.warning("No hosts configured", config=args.config)

    try:
        if args.once:
            return asyncio.run(run_once(config))
        return asyncio.run(run_forever(config))
    except KeyboardInterrupt:
        return 130
    finally:
        shutdown_logging()


if __name__ == "__main__":
    raise SystemExit(main())
