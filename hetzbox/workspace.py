"""Workspace: a provisioned server plus its shell session, with file and process helpers."""

import base64
import logging
import shlex
import uuid

from hetzbox.errors import SessionError
from hetzbox.provisioning.lifecycle import provision
from hetzbox.provisioning.session import default_sessions
from hetzbox.provisioning.teardown import teardown

logger = logging.getLogger(__name__)

ENV_FILE = "/etc/profile.d/jido_env.sh"
SPAWN_LOG = "/tmp/spawn.log"


def _escape_env_value(value):
    value = str(value)
    for char in ("\\", '"', "$", "`"):
        value = value.replace(char, "\\" + char)
    return value


class Workspace:
    """Handle over a provisioned workspace.

    Create one with :meth:`create`, run commands with :meth:`exec`, and call
    :meth:`destroy` when done.
    """

    def __init__(self, result, config, sessions, api=None):
        self.result = result
        self.config = config
        self.sessions = sessions
        self._api = api

    @classmethod
    async def create(cls, config, workspace_id=None, on_progress=None, *, api=None, transport=None, sessions=None):
        workspace_id = workspace_id or f"forge-{uuid.uuid4().hex[:8]}"
        sessions = default_sessions() if sessions is None else sessions
        result = await provision(workspace_id, config, on_progress, api=api, transport=transport, sessions=sessions)
        return cls(result, config, sessions, api=api)

    @property
    def infra_id(self):
        return f"hetzner-{self.result.server_id}"

    async def exec(self, command, timeout=60):
        """Run *command*; return (output, exit_code) instead of raising."""
        try:
            output = await self.sessions.run(self.result.session_id, command, timeout=timeout)
        except SessionError as e:
            logger.debug(f"Command failed in workspace {self.result.workspace_id}: {e}")
            return e.output, e.exit_status or 1
        return output, 0

    async def write_file(self, path, content):
        if isinstance(content, str):
            content = content.encode()
        encoded = base64.b64encode(content).decode()
        _, code = await self.exec(f"echo '{encoded}' | base64 -d > {shlex.quote(path)}")
        if code != 0:
            raise SessionError(f"Could not write {path}", exit_status=code)

    async def read_file(self, path):
        return await self.sessions.run(self.result.session_id, f"cat {shlex.quote(path)}")

    async def inject_env(self, env):
        """Export *env* for future login shells via /etc/profile.d."""
        if not env:
            return
        lines = "\n".join(f'export {key}="{_escape_env_value(value)}"' for key, value in env.items())
        await self.write_file(ENV_FILE, lines)

    async def spawn(self, command, args=(), timeout=60):
        """Start a detached process and return its pid."""
        full_cmd = " ".join([command, *args])
        output, code = await self.exec(f"nohup {full_cmd} > {SPAWN_LOG} 2>&1 & echo $!", timeout=timeout)
        if code != 0:
            raise SessionError(f"Could not spawn: {full_cmd}", exit_status=code)
        return output.strip()

    async def destroy(self, retry_backoffs=None):
        """Tear the workspace down. Returns the TeardownOutcome."""
        kwargs = {} if retry_backoffs is None else {"retry_backoffs": retry_backoffs}
        outcome = await teardown(
            self.result.session_id,
            config=self.config,
            server_id=self.result.server_id,
            ssh_key_id=self.result.ssh_key_id,
            ssh_key_cleanup=self.result.ssh_key_cleanup,
            api=self._api,
            sessions=self.sessions,
            **kwargs,
        )
        if not outcome.teardown_verified:
            logger.error(f"Teardown of {self.infra_id} not verified: {outcome.warnings}")
        return outcome
