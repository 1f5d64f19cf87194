"""
CLI entry point for the Bedrock Builder API server.

Run:  python -m web [--port 8765] [--dir /path/to/project]
"""

import argparse
import logging
import os

import web.state as _state
from config import app_config


def main():
    import uvicorn

    parser = argparse.ArgumentParser(description="Bedrock Builder HTTP API")
    parser.add_argument("--port", type=int, default=8765, help="Server port (default: 8765)")
    parser.add_argument("--host", default="127.0.0.1", help="Server host (default: 127.0.0.1)")
    parser.add_argument("--dir", default=app_config.working_directory, help="Project directory actions apply to")
    args = parser.parse_args()

    working_directory = os.path.abspath(os.path.expanduser(args.dir))
    if not os.path.isdir(working_directory):
        print(f"\n  Error: directory not found: {working_directory}")
        print(f"  Hint: use the full path, e.g. --dir ~/Desktop/my-project\n")
        raise SystemExit(1)
    _state.reset(working_directory)

    print("\n  Bedrock Builder HTTP API")
    print(f"  http://{args.host}:{args.port}")
    print(f"  Working directory: {working_directory}\n")

    # uvicorn's log_level only affects its own loggers
    level = getattr(logging, app_config.log_level.upper(), logging.INFO)
    for name in ("web", "pipeline"):
        log = logging.getLogger(name)
        log.setLevel(level)
        if not log.handlers:
            h = logging.StreamHandler()
            h.setLevel(level)
            h.setFormatter(logging.Formatter(f"%(asctime)s %(levelname)s [{name}] %(message)s"))
            log.addHandler(h)

    from web import app
    uvicorn.run(app, host=args.host, port=args.port, log_level="warning")
