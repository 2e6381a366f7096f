import itertools
import logging
import re
import time
from datetime import datetime
from typing import Dict, List, Optional

import asyncssh

from .errors import (
    CommandError,
    InvalidSessionNameError,
    ProtocolInconsistencyError,
    TransportError,
    UnknownKeySequenceError,
    classify_error,
)
from .models import CommandResult, Session
from .transport import Transport

logger = logging.getLogger(__name__)

DELIMITER = "|"
FIELD_COUNT = 5

# tmux prints one of these (exit status 1) when there is nothing to list
NO_SERVER_MARKERS = ("no server running", "no sessions", "error connecting to")

HUMAN_DATE_FORMAT = "%a %b %d %H:%M:%S %Y"

MAX_NAME_LENGTH = 100

KEY_SEQUENCES: Dict[str, bytes] = {
    "ctrl+c": b"\x03",
    "ctrl+d": b"\x04",
    "ctrl+z": b"\x1a",
    "tab": b"\x09",
    "enter": b"\x0a",
}

_name_counter = itertools.count(1)


def parse_timestamp(value: str) -> datetime:
    """Parse a tmux timestamp field.

    Accepts epoch seconds (what ``#{session_created}`` expands to) and the
    ctime-style string tmux prints in its human-readable listing, e.g.
    ``Mon Jan  1 10:00:00 2024``. Anything else yields the current time;
    session metadata is best-effort.
    """
    value = value.strip()
    if value.isdigit():
        try:
            return datetime.fromtimestamp(int(value))
        except (OverflowError, OSError, ValueError):
            pass
    else:
        collapsed = " ".join(value.split())
        try:
            return datetime.strptime(collapsed, HUMAN_DATE_FORMAT)
        except ValueError:
            pass
        try:
            return datetime.fromisoformat(collapsed)
        except ValueError:
            pass

    logger.debug(f"Unparseable tmux timestamp {value!r}; using current time")
    return datetime.now()


def escape_text(text: str) -> str:
    """Escape ``text`` for use inside a double-quoted send-keys argument.

    Only double quotes are escaped. The remote shell needs nothing more for
    the quoted argument to survive, and escaping further would double-escape
    what tmux then types into the pane.
    """
    return text.replace('"', '\\"')


def validate_session_name(name: str) -> str:
    """Validate a session name and return it stripped of surrounding whitespace.

    Names are embedded verbatim between double quotes, so characters the
    shell interprets there (``"`` ``$`` backtick ``\\``) are rejected along
    with the ``:`` and ``.`` that tmux reserves for target syntax.

    Raises:
        InvalidSessionNameError: If the name is empty, too long or unsafe
    """
    if not name or not name.strip():
        raise InvalidSessionNameError("Session name cannot be empty")

    name = name.strip()

    if len(name) > MAX_NAME_LENGTH:
        raise InvalidSessionNameError(f"Session name too long (max {MAX_NAME_LENGTH} characters)")

    if re.search(r'[:.]', name):
        raise InvalidSessionNameError("Session name cannot contain colons or dots")

    if re.search(r'["$`\\]', name):
        raise InvalidSessionNameError("Session name cannot contain quotes, $, backticks or backslashes")

    if any(ord(ch) < 0x20 or ord(ch) == 0x7f for ch in name):
        raise InvalidSessionNameError("Session name cannot contain control characters")

    return name


def generate_session_name() -> str:
    """Returns a session name that is unique within this process."""
    return f"session-{int(time.time())}-{next(_name_counter)}"


def resolve_key_sequence(sequence: str) -> bytes:
    """Map a named control-key sequence (e.g. ``ctrl+c``) to its bytes.

    Raises:
        UnknownKeySequenceError: If the name is not in KEY_SEQUENCES
    """
    try:
        return KEY_SEQUENCES[sequence.strip().lower()]
    except KeyError:
        raise UnknownKeySequenceError(sequence) from None


class TmuxController:
    """Formats tmux commands, runs them over a transport and parses the results."""

    FORMAT = DELIMITER.join(
        [
            "#{session_name}",
            "#{session_created}",
            "#{session_activity}",
            "#{session_attached}",
            "#{session_windows}",
        ]
    )

    @classmethod
    def list_command(cls) -> str:
        return f'tmux list-sessions -F "{cls.FORMAT}"'

    @staticmethod
    def new_session_command(name: str) -> str:
        return f'tmux new-session -d -s "{name}"'

    @staticmethod
    def attach_command(name: str) -> str:
        return f'tmux attach-session -t "{name}"'

    @staticmethod
    def kill_session_command(name: str) -> str:
        return f'tmux kill-session -t "{name}"'

    @staticmethod
    def send_keys_command(name: str, text: str) -> str:
        return f'tmux send-keys -t "{name}" "{escape_text(text)}" Enter'

    @staticmethod
    def is_no_server(result: CommandResult) -> bool:
        text = f"{result.stderr}\n{result.stdout}".lower()
        return any(marker in text for marker in NO_SERVER_MARKERS)

    def parse_session_list(self, output: str, connection_id: str) -> List[Session]:
        """Parse ``list-sessions -F`` output into Session records.

        Malformed lines are skipped; they never hide the other sessions.
        """
        if not output or not output.strip():
            return []

        sessions = []
        for line in output.splitlines():
            line = line.rstrip("\r")
            if not line.strip():
                continue
            # Split from the right so a delimiter inside a session name stays in the name
            parts = line.rsplit(DELIMITER, FIELD_COUNT - 1)
            if len(parts) != FIELD_COUNT:
                logger.debug(f"Skipping malformed tmux line: {line!r}")
                continue
            name, created, activity, attached, windows = parts
            try:
                sessions.append(
                    Session(
                        id=Session.make_id(connection_id, name),
                        name=name,
                        created=parse_timestamp(created),
                        last_activity=parse_timestamp(activity),
                        window_count=int(windows),
                        is_active=int(attached) > 0,
                        connection_id=connection_id,
                    )
                )
            except (ValueError, TypeError):
                # Ignore malformed lines
                logger.debug(f"Skipping malformed tmux line: {line!r}")
                continue
        return sessions

    async def _run(self, transport: Transport, command: str, operation: str) -> CommandResult:
        try:
            return await transport.run(command)
        except (asyncssh.Error, OSError) as e:
            raise TransportError(f"failed to {operation}: {e}", classify_error(e)) from e

    async def check_tmux_available(self, transport: Transport) -> tuple[bool, str]:
        """Check if tmux is installed and accessible on the remote host.

        Returns:
            tuple: (is_available: bool, message: str)
        """
        result = await self._run(transport, "tmux -V", "check tmux")
        if result.exit_status == 0:
            return (True, f"tmux is available: {result.stdout.strip()}")
        if result.exit_status == 127:
            return (False, "tmux is not installed on this host")
        return (False, f"tmux command found but returned an error: {result.stderr.strip()}")

    async def list_sessions(self, transport: Transport, connection_id: str) -> List[Session]:
        """Lists all tmux sessions on a host."""
        result = await self._run(transport, self.list_command(), "list sessions")

        if result.exit_status != 0 and self.is_no_server(result):
            return []
        if not result.ok:
            raise CommandError("list sessions", result.exit_status, result.stderr)

        return self.parse_session_list(result.stdout, connection_id)

    async def get_session(self, transport: Transport, connection_id: str, name: str) -> Optional[Session]:
        sessions = await self.list_sessions(transport, connection_id)
        return next((s for s in sessions if s.name == name), None)

    async def session_exists(self, transport: Transport, connection_id: str, name: str) -> bool:
        return await self.get_session(transport, connection_id, name) is not None

    async def create_session(
        self, transport: Transport, connection_id: str, name: Optional[str] = None
    ) -> Session:
        """Creates a detached session and returns its record from a fresh listing.

        Raises:
            CommandError: If tmux rejected the new session
            ProtocolInconsistencyError: If tmux accepted it but it is not listed
        """
        name = validate_session_name(name) if name is not None else generate_session_name()

        result = await self._run(transport, self.new_session_command(name), "create session")
        if not result.ok:
            raise CommandError("create session", result.exit_status, result.stderr)

        session = await self.get_session(transport, connection_id, name)
        if session is None:
            raise ProtocolInconsistencyError(f"Session '{name}' was created but is not in the session list")
        logger.info(f"Created tmux session {name!r}")
        return session

    async def kill_session(self, transport: Transport, name: str) -> None:
        """Kills a tmux session."""
        name = validate_session_name(name)
        result = await self._run(transport, self.kill_session_command(name), "kill session")
        if not result.ok:
            raise CommandError("kill session", result.exit_status, result.stderr)
        logger.info(f"Killed tmux session {name!r}")

    async def send_keys(self, transport: Transport, name: str, text: str) -> None:
        """Types ``text`` into the session followed by Enter."""
        name = validate_session_name(name)
        result = await self._run(transport, self.send_keys_command(name, text), "send keys")
        if not result.ok:
            raise CommandError("send keys", result.exit_status, result.stderr)
