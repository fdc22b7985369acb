"""Relay process entry point.

``uvicorn relay_backend.main:app`` serves an app configured from ``RELAY_*``
environment variables; ``platform-relay`` does the same with command-line
overrides.
"""
import argparse
import os

import uvicorn

from relay_backend.app_factory import DEFAULT_API_PORT, AppContext, create_app

app = create_app()


def _parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a platform relay instance")
    parser.add_argument("--instance-id", default=None, help="Override RELAY_INSTANCE_ID")
    parser.add_argument("--host", default=os.getenv("RELAY_API_HOST", "0.0.0.0"))
    parser.add_argument("--port", type=int, default=int(os.getenv("RELAY_API_PORT", str(DEFAULT_API_PORT))))
    parser.add_argument("--seed-demo", action="store_true", help="Create the demo platform on startup")
    return parser.parse_args(argv)


def main(argv=None) -> None:
    args = _parse_args(argv)
    context = AppContext(api_port=args.port)
    if args.seed_demo:
        context.seed_demo = True
    uvicorn.run(
        create_app(instance_id=args.instance_id, context=context),
        host=args.host,
        port=args.port,
        log_level=os.getenv("RELAY_LOG_LEVEL", "info").lower(),
    )


if __name__ == "__main__":
    main()
