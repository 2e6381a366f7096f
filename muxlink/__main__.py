#!/usr/bin/env python3
"""
muxlink - drive remote tmux sessions over SSH.

Command-line entry point.
"""

import argparse
import asyncio
import getpass
import logging
import sys
import threading
from pathlib import Path
from typing import List, Optional

from . import __version__
from .config import build_connection_config, load_config
from .connection import ConnectionManager
from .errors import MuxlinkError
from .models import Session, TerminalOutput
from .tmux_controller import KEY_SEQUENCES

logger = logging.getLogger(__name__)

KEY_ESCAPE = "~"
STDIN_POLL_INTERVAL = 0.25


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="muxlink",
        description="Drive remote tmux sessions over SSH",
        epilog=f"While attached, a line '{KEY_ESCAPE}<key>' sends a control key "
               f"({', '.join(KEY_SEQUENCES)}); end input (Ctrl-D) to detach",
    )
    parser.add_argument(
        "-v", "--version",
        action="version",
        version=f"muxlink {__version__}"
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        metavar="PATH",
        help="Path to config file (default: platform-specific, see docs)"
    )
    parser.add_argument(
        "-l", "--log-level",
        choices=["info", "debug", "warning", "error"],
        default="warning",
        help="Set logging level (default: warning)"
    )
    parser.add_argument("host", help="Host alias from the config file")

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("list", help="List tmux sessions")
    new = commands.add_parser("new", help="Create a detached session")
    new.add_argument("name", nargs="?", help="Session name (generated if omitted)")
    kill = commands.add_parser("kill", help="Kill a session")
    kill.add_argument("name")
    send = commands.add_parser("send", help="Type a command into a session and press Enter")
    send.add_argument("name")
    send.add_argument("text", nargs="+")
    attach = commands.add_parser("attach", help="Attach and stream a session")
    attach.add_argument("name")
    return parser


def format_session(session: Session) -> str:
    state = "attached" if session.is_active else "detached"
    windows = f"{session.window_count} window{'s' if session.window_count != 1 else ''}"
    return f"{session.name}\t{windows}\t{state}\tcreated {session.created:%Y-%m-%d %H:%M}"


def _read_stdin_lines(loop: asyncio.AbstractEventLoop, queue: "asyncio.Queue[str]") -> None:
    """Feed stdin lines into ``queue`` from a daemon thread; "" marks end of input."""
    stdin = sys.stdin

    def pump() -> None:
        try:
            try:
                for line in iter(stdin.readline, ""):
                    loop.call_soon_threadsafe(queue.put_nowait, line)
            except (OSError, ValueError) as e:
                logger.debug(f"Stopped reading stdin: {e}")
            loop.call_soon_threadsafe(queue.put_nowait, "")
        except RuntimeError:
            # The event loop closed after the session ended
            pass

    threading.Thread(target=pump, name="muxlink-stdin", daemon=True).start()


async def _attach(manager: ConnectionManager, name: str) -> None:
    out = sys.stdout.buffer

    def write_output(output: TerminalOutput) -> None:
        out.write(output.data)
        out.flush()

    manager.add_output_listener(write_output)
    channel = await manager.attach_to_session(name)
    lines: "asyncio.Queue[str]" = asyncio.Queue()
    _read_stdin_lines(asyncio.get_running_loop(), lines)

    while not channel.is_closed:
        try:
            line = await asyncio.wait_for(lines.get(), timeout=STDIN_POLL_INTERVAL)
        except asyncio.TimeoutError:
            continue
        # The remote side may have closed the channel while we waited for input
        if not line or channel.is_closed:
            break
        stripped = line.strip()
        if stripped.startswith(KEY_ESCAPE) and stripped[1:].lower() in KEY_SEQUENCES:
            await manager.send_key_sequence(stripped[1:])
        else:
            await manager.send_input(line)

    await manager.detach()


async def run(args: argparse.Namespace) -> int:
    settings = load_config(args.config)
    try:
        profile = settings.get_host(args.host)
    except KeyError:
        print(f"Unknown host alias: {args.host}", file=sys.stderr)
        return 2

    password = None
    if profile.auth_method == "password":
        password = getpass.getpass(f"Password for {profile.username}@{profile.host}: ")
    config = build_connection_config(profile, settings, password=password)

    async with ConnectionManager(
        term_type=settings.term_type,
        term_size=(settings.term_cols, settings.term_rows),
    ) as manager:
        await manager.connect(config)

        if args.command == "list":
            for session in await manager.list_sessions():
                print(format_session(session))
        elif args.command == "new":
            session = await manager.create_session(args.name)
            print(format_session(session))
        elif args.command == "kill":
            await manager.kill_session(args.name)
        elif args.command == "send":
            await manager.send_command(args.name, " ".join(args.text))
        elif args.command == "attach":
            await _attach(manager, args.name)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the muxlink CLI."""
    args = build_parser().parse_args(argv)

    log_levels = {
        "info": logging.INFO,
        "debug": logging.DEBUG,
        "warning": logging.WARNING,
        "error": logging.ERROR,
    }
    logging.basicConfig(
        level=log_levels[args.log_level],
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    try:
        return asyncio.run(run(args))
    except FileNotFoundError as e:
        print(str(e), file=sys.stderr)
        return 1
    except MuxlinkError as e:
        print(str(e), file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
