#!/usr/bin/env python3
import argparse
import curses
import os
import sys

from .config import CONFIG, debug_log, init_config
from .ports import get_provider
from .session import Session
from .ui import KEY_QUIT, draw, handle_key, init_colors


def _get_app_version():
    v_file = os.path.join(os.path.dirname(__file__), "VERSION")
    try:
        with open(v_file) as f:
            return f.read().strip()
    except OSError:
        return "0.0.0"


__version__ = _get_app_version()


def parse_args(argv=None):
    parser = argparse.ArgumentParser(prog="portkiller", description="Find processes bound to ports and kill them.")
    parser.add_argument("--version", action="version", version=f"portkiller {__version__}")
    parser.add_argument("--mock", action="store_true", help="Use built-in sample ports instead of lsof")
    parser.add_argument("--lsof", metavar="PATH", help="Path to the lsof executable")
    parser.add_argument("--timeout", type=float, help="Discovery timeout in seconds")
    parser.add_argument("--port", type=int, help="Filter view by specific Port")
    parser.add_argument("--pid", type=int, help="Filter view by specific Process ID")
    parser.add_argument("--user", type=str, help="Filter view by Process Owner (User)")
    return parser.parse_args(argv)


def build_session(args):
    provider = get_provider(use_mock=args.mock, lsof_path=args.lsof)
    timeout = args.timeout if args.timeout is not None else float(CONFIG.get("discovery_timeout", 2.0))
    filters = {"port": args.port, "pid": args.pid, "user": args.user}
    return Session(
        provider,
        timeout=timeout,
        filters={k: v for k, v in filters.items() if v},
        status_duration=float(CONFIG.get("status_duration", 3.0)),
    )


def main(stdscr, args):
    curses.curs_set(0)
    stdscr.keypad(True)
    # short input timeout doubles as the tick that drains background results
    stdscr.timeout(120)
    init_colors()

    session = build_session(args)
    debug_log(f"SESSION: Starting with {session.provider.name} provider")
    session.start()

    offset = 0
    while True:
        session.pump()
        session.tick()
        offset = draw(stdscr, session, offset)
        if handle_key(session, stdscr.getch()) == KEY_QUIT:
            break


def cli_entry(argv=None):
    """terminal command 'portkiller' entry point"""
    init_config()
    args = parse_args(argv)
    try:
        curses.wrapper(main, args)
    except curses.error as e:
        debug_log(f"FATAL: curses failed to start: {e}")
        print(f"failed to start portkiller: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    cli_entry()
