#!/usr/bin/env python3
"""
MPM HTTP server launcher

Serves the command surface (GET /COMMAND/ARG0/ARG1/...) with uvicorn.

Environment variables:
    MPM_ROOT        — Project root (overridden by --root)
    MPM_LOG_LEVEL   — Log level (default: info)
"""

import argparse
import logging
import os
import sys


def main():
    parser = argparse.ArgumentParser(description="MPM HTTP server")
    parser.add_argument('--root', type=str, default=None,
                        help='Project root (default: MPM_ROOT or current directory)')
    parser.add_argument('--host', type=str, default='127.0.0.1',
                        help='Bind address (default: 127.0.0.1)')
    parser.add_argument('--port', type=int, default=8080,
                        help='Server port (default: 8080)')
    args = parser.parse_args()

    log_level = os.environ.get('MPM_LOG_LEVEL', 'info').lower()
    logging.basicConfig(level=getattr(logging, log_level.upper(), logging.INFO))

    if args.root:
        os.environ['MPM_ROOT'] = os.path.abspath(args.root)

    from mpm_core import LockManager, MpmConfig
    config = MpmConfig.from_env()
    # Drop a lock this process still holds if the server dies mid-operation
    LockManager(config.lock_file, config.lock_timeout).install_cleanup_hook()

    print("=" * 60)
    print("MPM - Mehr's Package Manager")
    print("=" * 60)
    print(f"Project root: {config.root}")
    print(f"Server running at: http://{args.host}:{args.port}")
    print("Press Ctrl+C to stop the server")
    print("=" * 60)

    try:
        import uvicorn
        from .app import app
        uvicorn.run(app, host=args.host, port=args.port, log_level=log_level)
    except OSError as e:
        print(f"Error: Could not start server: {e}", file=sys.stderr)
        print(f"Port {args.port} might already be in use.", file=sys.stderr)
        sys.exit(1)


if __name__ == '__main__':
    try:
        main()
    except KeyboardInterrupt:
        print("\n\nShutting down MPM server...")
        sys.exit(0)
