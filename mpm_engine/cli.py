#!/usr/bin/env python3
"""
MPM command-line front end

Usage:
    mpm add users auth
    mpm --root /srv/site list
    mpm pkg info users

Prints the result on stdout; errors go to stderr as "Error: <message>"
with exit code 1.
"""

import argparse
import logging
import os
import signal
import sys

from mpm_core import LockManager, MpmConfig, MpmError, PackageManager, execute


def _install_signal_handlers():
    """Turn SIGTERM/SIGHUP into a normal exit so atexit cleanup runs."""
    def _exit(signum, frame):
        sys.exit(128 + signum)

    for name in ("SIGTERM", "SIGHUP"):
        sig = getattr(signal, name, None)
        if sig is not None:
            signal.signal(sig, _exit)


def build_parser():
    parser = argparse.ArgumentParser(
        prog="mpm", description="MPM - Mehr's Package Manager")
    parser.add_argument('--root', type=str, default=None,
                        help='Project root (default: MPM_ROOT or current directory)')
    parser.add_argument('--log-level', type=str,
                        default=os.environ.get('MPM_LOG_LEVEL', 'warning'),
                        help='Log level (default: warning)')
    parser.add_argument('command', help="Command, e.g. add, del, list; see 'help'")
    parser.add_argument('args', nargs=argparse.REMAINDER,
                        help='Command arguments')
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.WARNING),
        format="%(levelname)s %(name)s: %(message)s",
    )

    config = MpmConfig.from_env(root=args.root)
    lock = LockManager(config.lock_file, config.lock_timeout)
    lock.install_cleanup_hook()
    _install_signal_handlers()

    try:
        manager = PackageManager(config, lock=lock)
        output = execute(manager, args.command, args.args)
    except MpmError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    if output:
        print(output)
    return 0


if __name__ == '__main__':
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        sys.exit(130)
