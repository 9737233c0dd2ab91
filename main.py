"""Main entry point for the build monitor."""

from build_monitor.cli import main


if __name__ == "__main__":
    raise SystemExit(main())
