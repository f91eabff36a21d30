"""Provision a Hetzner Cloud server and open a shell session on it.

Pipeline (fail-fast, no rollback):

1. validate config
2. secure an SSH key (shared / ephemeral / existing)
3. create the server
4. poll until it is ``running`` with a public IPv4
5. poll until SSH accepts the key
6. start a shell session bound to the workspace
7. create the workspace directory

Each stage can report progress through an ``on_progress(stage, metadata)``
callback. Failures raise :class:`~hetzbox.errors.ProvisionError`; resources
created by earlier stages are left in place and named in the error context.
"""

import asyncio
import logging
import re
import shlex
import time

from hetzbox.errors import ApiError, ProvisionError, SessionError
from hetzbox.provisioning.api import HetznerAPI
from hetzbox.provisioning.session import default_sessions
from hetzbox.provisioning.ssh import SSH_PORT, load_private_key, wait_for_ssh
from hetzbox.provisioning.ssh_keys import MANAGED_BY_LABEL, MANAGED_BY_VALUE, ensure_ssh_key
from hetzbox.provisioning.types import ProvisionResult, ServerStatus

logger = logging.getLogger(__name__)

SERVER_NAME_PREFIX = "jido-"
WORKSPACE_LABEL = "jido.workspace_id"
BOOTING_STATUSES = {"initializing", "starting", "migrating"}
MKDIR_TIMEOUT = 30


# ── Helpers ───────────────────────────────────────────────────────


def sanitize_hostname(name):
    """Lowercase DNS-label-safe name: [a-z0-9-], no edge hyphens, max 63 chars."""
    name = re.sub(r"[^a-z0-9\-]", "-", name.lower())
    name = re.sub(r"-+", "-", name).strip("-")
    return name[:63]


def resolve_image(image):
    """The API image field is textual; snapshot ids are sent as strings."""
    return str(image)


def workspace_dir(workspace_id, config):
    return f"{config.workspace_base}/{workspace_id}"


def _server_ip(server):
    return ((server.get("public_net") or {}).get("ipv4") or {}).get("ip")


def _emit_progress(on_progress, stage, metadata):
    if on_progress is None:
        return
    try:
        on_progress(stage, metadata)
    except Exception as e:
        logger.warning(f"Progress callback failed at stage '{stage}': {e}")


def validate_config(config):
    token = config.api_token
    if not isinstance(token, str) or not token.strip():
        raise ProvisionError("missing_api_token")


def build_server_params(workspace_id, key_id, config):
    """Request body for POST /servers."""
    labels = {MANAGED_BY_LABEL: MANAGED_BY_VALUE, WORKSPACE_LABEL: workspace_id}
    labels.update(config.labels or {})
    params = {
        "name": sanitize_hostname(f"{SERVER_NAME_PREFIX}{workspace_id}"),
        "server_type": config.server_type,
        "image": resolve_image(config.image),
        "location": config.location,
        "ssh_keys": [key_id],
        "start_after_create": True,
        "labels": labels,
    }
    if config.user_data is not None:
        params["user_data"] = config.user_data
    return params


# ── Stages ────────────────────────────────────────────────────────


async def create_server(workspace_id, key_id, config, api):
    params = build_server_params(workspace_id, key_id, config)
    logger.info(f"Creating server '{params['name']}' (type={params['server_type']}, image={params['image']}, location={params['location']})...")
    try:
        result = await api.create_server(params)
    except ApiError as e:
        raise ProvisionError("server_create_failed", name=params["name"], reason=e) from e
    server = result["server"]
    logger.info(f"Server created (id={server['id']}).")
    return server


async def wait_for_running(server_id, api, timeout=120, interval=2):
    """Poll the server until it is running with a public IPv4.

    Returns:
        The IPv4 address reported once the server is running.

    Raises:
        ProvisionError: ``server_timeout``, ``unexpected_server_status`` or
            ``server_poll_failed``.
    """
    deadline = time.monotonic() + timeout
    status = None

    while True:
        if time.monotonic() > deadline:
            logger.error(f"Timeout after {timeout}s waiting for server {server_id} to run (last: '{status}')")
            raise ProvisionError("server_timeout", server_id=server_id, status=status)

        try:
            result = await api.get_server(server_id)
        except ApiError as e:
            raise ProvisionError("server_poll_failed", server_id=server_id, reason=e) from e

        server = result.get("server") or {}
        status = server.get("status")
        ip = _server_ip(server)

        if status == "running" and ip:
            logger.info(f"Server {server_id} is running at {ip}.")
            return ip
        # A running server may briefly report no address yet.
        if status in BOOTING_STATUSES or status == "running":
            await asyncio.sleep(interval)
            continue

        logger.error(f"Server {server_id} reached unexpected status '{status}'")
        raise ProvisionError("unexpected_server_status", server_id=server_id, status=status)


async def start_session(workspace_id, ip, private_key, config, sessions):
    try:
        return await sessions.start_session(workspace_id, ip, SSH_PORT, config.ssh_user, private_key)
    except SessionError as e:
        raise ProvisionError("session_start_failed", ip=ip, reason=e) from e


async def create_workspace_dir(session_id, directory, sessions):
    try:
        await sessions.run(session_id, f"mkdir -p {shlex.quote(directory)}", timeout=MKDIR_TIMEOUT)
    except SessionError as e:
        raise ProvisionError("workspace_dir_failed", session_id=session_id, workspace_dir=directory, reason=e) from e


# ── Entry points ──────────────────────────────────────────────────


async def provision(workspace_id, config, on_progress=None, *, api=None, transport=None, sessions=None):
    """Provision a server for *workspace_id* and open a shell session on it.

    Args:
        config: resolved ProvisionConfig.
        on_progress: optional ``callable(stage, metadata)``.
        api: HetznerAPI-compatible client (built from config if omitted).
        transport: SSH transport used for the reachability check.
        sessions: ShellSessions-compatible session manager.

    Returns:
        ProvisionResult, the handle needed for teardown().
    """
    validate_config(config)
    api = api or HetznerAPI.from_config(config)
    sessions = default_sessions() if sessions is None else sessions

    _emit_progress(on_progress, "ssh_key", {"strategy": config.ssh_key_strategy})
    try:
        key = await ensure_ssh_key(config, api)
    except ApiError as e:
        raise ProvisionError("ssh_key_failed", key_name=config.ssh_key_name, reason=e) from e
    # Reject unusable key material before a server is created for it.
    load_private_key(key.private_key)

    _emit_progress(on_progress, "server_creating", {"workspace_id": workspace_id})
    server = await create_server(workspace_id, key.key_id, config, api)
    server_id = server["id"]

    _emit_progress(on_progress, "server_booting", {"server_id": server_id})
    ip = await wait_for_running(server_id, api, timeout=config.server_wait_timeout, interval=config.server_poll_interval)

    _emit_progress(on_progress, "ssh_waiting", {"ip": ip})
    await wait_for_ssh(
        ip,
        key.private_key,
        username=config.ssh_user,
        timeout=config.ssh_wait_timeout,
        interval=config.ssh_poll_interval,
        connect_timeout=config.ssh_connect_timeout,
        transport=transport,
    )
    _emit_progress(on_progress, "ssh_connected", {"ip": ip})

    _emit_progress(on_progress, "session_starting", {"workspace_id": workspace_id})
    session_id = await start_session(workspace_id, ip, key.private_key, config, sessions)

    directory = workspace_dir(workspace_id, config)
    await create_workspace_dir(session_id, directory, sessions)

    result = ProvisionResult(
        session_id=session_id,
        workspace_dir=directory,
        workspace_id=workspace_id,
        server_id=server_id,
        ip_address=ip,
        ssh_key_id=key.key_id,
        ssh_key_cleanup=key.cleanup,
    )
    _emit_progress(on_progress, "ready", {"server_id": server_id, "ip": ip, "session_id": session_id})
    logger.info(f"Workspace '{workspace_id}' ready at {ip}:{directory} (session {session_id}).")
    return result


async def status(server_id, config, *, api=None):
    """Return the provider-reported state of *server_id*.

    Raises:
        ApiError: the lookup failed (NotFoundError when the server is gone).
    """
    api = api or HetznerAPI.from_config(config)
    result = await api.get_server(server_id)
    server = result.get("server") or {}
    return ServerStatus(
        server_id=server.get("id"),
        name=server.get("name"),
        status=server.get("status"),
        ip=_server_ip(server),
        server_type=(server.get("server_type") or {}).get("name"),
        location=((server.get("datacenter") or {}).get("location") or {}).get("name"),
    )
