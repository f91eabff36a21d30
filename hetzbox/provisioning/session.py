"""Remote shell sessions over asyncssh, addressed by session id."""

import asyncio
import contextlib
import logging
import uuid
from dataclasses import dataclass, field

import asyncssh

from hetzbox.errors import SessionError

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_TIMEOUT = 60


@dataclass
class _Session:
    workspace_id: str
    host: str
    conn: asyncssh.SSHClientConnection = field(repr=False)


class ShellSessions:
    """Registry of open shell sessions.

    ``start_session`` opens a dedicated SSH connection bound to a workspace
    id; ``run`` executes commands on it; ``stop`` closes it. Sessions live
    only as long as this object; see :func:`default_sessions` for the
    process-wide one.
    """

    def __init__(self):
        self._sessions = {}

    async def start_session(self, workspace_id, host, port, username, private_key, connect_timeout=30):
        try:
            conn = await asyncssh.connect(
                host,
                port=port,
                username=username,
                client_keys=[asyncssh.import_private_key(private_key)],
                known_hosts=None,
                connect_timeout=connect_timeout,
            )
        except (OSError, ValueError, asyncssh.Error, asyncio.TimeoutError) as e:
            raise SessionError(f"Could not open shell session to {username}@{host}:{port}: {e}") from e

        session_id = f"sess-{uuid.uuid4().hex[:16]}"
        self._sessions[session_id] = _Session(workspace_id=workspace_id, host=host, conn=conn)
        logger.info(f"Shell session {session_id} started on {host} for workspace '{workspace_id}'.")
        return session_id

    def __contains__(self, session_id):
        return session_id in self._sessions

    def _require(self, session_id):
        try:
            return self._sessions[session_id]
        except KeyError:
            raise SessionError(f"Unknown session '{session_id}'") from None

    async def run(self, session_id, command, timeout=DEFAULT_COMMAND_TIMEOUT):
        """Run *command* and return its stdout.

        Raises:
            SessionError: unknown session, timeout or non-zero exit status.
        """
        session = self._require(session_id)
        try:
            result = await session.conn.run(command, check=False, timeout=timeout)
        except asyncssh.TimeoutError as e:
            raise SessionError(f"Command timed out after {timeout}s: {command}") from e
        except (OSError, asyncssh.Error) as e:
            raise SessionError(f"Error running command on {session.host}: {e}") from e

        stdout = str(result.stdout or "")
        code = result.exit_status or 0
        if code != 0:
            raise SessionError(f"Command failed ({code}): {command}: {str(result.stderr or '').strip()}", exit_status=code, output=stdout)
        return stdout

    async def stop(self, session_id):
        session = self._require(session_id)
        del self._sessions[session_id]
        session.conn.close()
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(session.conn.wait_closed(), timeout=5)
        logger.info(f"Shell session {session_id} stopped.")


# Lazy-initialized process-wide registry
_default_sessions: ShellSessions | None = None


def default_sessions() -> ShellSessions:
    """Registry used by provision() and teardown() when none is passed in."""
    global _default_sessions
    if _default_sessions is None:
        _default_sessions = ShellSessions()
    return _default_sessions
