"""SSH reachability: asyncssh-backed transport and the readiness poll."""

import asyncio
import contextlib
import logging
import time

import asyncssh

from hetzbox.errors import ProvisionError

logger = logging.getLogger(__name__)

SSH_PORT = 22
CLOSE_TIMEOUT = 5


def load_private_key(private_key):
    """Parse an in-memory private key.

    Raises:
        ProvisionError: ``invalid_ssh_private_key`` if it cannot be parsed.
    """
    try:
        return asyncssh.import_private_key(private_key)
    except (asyncssh.KeyImportError, ValueError, TypeError) as e:
        raise ProvisionError("invalid_ssh_private_key", reason=e) from e


class AsyncSSHTransport:
    """Open and close SSH connections with an in-memory private key."""

    async def connect(self, host, port, username, private_key, timeout):
        key = load_private_key(private_key)
        return await asyncssh.connect(
            host,
            port=port,
            username=username,
            client_keys=[key],
            known_hosts=None,
            connect_timeout=timeout,
        )

    async def close(self, conn):
        conn.close()
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(conn.wait_closed(), timeout=CLOSE_TIMEOUT)


async def wait_for_ssh(
    host,
    private_key,
    username="root",
    port=SSH_PORT,
    timeout=120,
    interval=3,
    connect_timeout=5,
    transport=None,
):
    """Poll SSH connectivity until a handshake succeeds or *timeout* passes.

    Each test connection is closed right away; this only proves the server
    accepts our key.

    Raises:
        ProvisionError: ``ssh_timeout`` once the deadline is exceeded.
    """
    transport = transport or AsyncSSHTransport()
    deadline = time.monotonic() + timeout
    attempt = 0

    while True:
        if time.monotonic() > deadline:
            logger.error(f"Timeout after {timeout}s waiting for SSH connectivity to {username}@{host}:{port}")
            raise ProvisionError("ssh_timeout", ip=host)

        attempt += 1
        try:
            conn = await transport.connect(host, port, username, private_key, connect_timeout)
        except (OSError, asyncssh.Error, asyncio.TimeoutError) as e:
            logger.debug(f"SSH attempt {attempt} to {host}:{port} failed: {e}")
            await asyncio.sleep(interval)
            continue

        await transport.close(conn)
        logger.info(f"SSH reachable at {host}:{port} after {attempt} attempt(s).")
        return
