"""Local build-info endpoint for trying the monitor without a real deployment."""

from __future__ import annotations

import argparse
from datetime import datetime, timezone

import uvicorn
from fastapi import FastAPI


def _now_rfc3339() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def create_app(*, fresh: bool = False) -> FastAPI:
    """
    GET / answers {"buildAt": ...}.

    By default the build time is fixed at startup, so the monitor sees a stable build;
    with fresh=True every request reports the current time and never settles.
    POST /rebuild moves the fixed build time to now.
    """
    app = FastAPI(title="Build Monitor Dev Server", version="0.1.0")
    app.state.build_at = _now_rfc3339()
    app.state.fresh = fresh

    @app.get("/")
    async def build_info():
        if app.state.fresh:
            return {"buildAt": _now_rfc3339()}
        return {"buildAt": app.state.build_at}

    @app.post("/rebuild")
    async def rebuild():
        app.state.build_at = _now_rfc3339()
        return {"buildAt": app.state.build_at}

    return app


def main() -> int:
    parser = argparse.ArgumentParser(description="Serve a fake buildAt endpoint")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--fresh", action="store_true", help="Report the current time on every request")
    args = parser.parse_args()

    uvicorn.run(create_app(fresh=bool(args.fresh)), host=args.host, port=args.port, log_level="warning")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
