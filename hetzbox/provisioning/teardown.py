"""Tear down a provisioned server: stop the session, delete the server, release the key.

Never raises. Every failure is recorded as a warning on the returned
TeardownOutcome so callers can always see what was and wasn't cleaned up.
"""

import asyncio
import logging

from hetzbox.errors import ApiError, NotFoundError
from hetzbox.provisioning.api import HetznerAPI
from hetzbox.provisioning.session import default_sessions
from hetzbox.provisioning.ssh_keys import maybe_cleanup_ssh_key
from hetzbox.provisioning.types import KeyCleanup, TeardownOutcome

logger = logging.getLogger(__name__)

DEFAULT_RETRY_BACKOFFS = (0, 1, 3)


def normalize_warnings(warnings):
    """Deduplicate keeping first-occurrence order; no warnings -> None."""
    unique = list(dict.fromkeys(warnings))
    return unique or None


async def _stop_session(sessions, session_id, warnings):
    if session_id not in sessions:
        # Opened by another process (e.g. provision, then teardown from the CLI).
        logger.warning(f"Session {session_id} is not open in this process; skipping stop.")
        warnings.append("session_stop_skipped")
        return
    try:
        await sessions.stop(session_id)
    except Exception as e:
        logger.warning(f"Could not stop session {session_id}: {e}")
        warnings.append(f"session_stop_failed={e}")


async def _server_gone(server_id, api):
    try:
        await api.get_server(server_id)
    except NotFoundError:
        return True
    except ApiError as e:
        logger.warning(f"Could not verify deletion of server {server_id}: {e}")
    return False


async def delete_server_with_retries(server_id, api, retry_backoffs, warnings):
    """Delete a server, confirming it is gone, over a fixed backoff schedule.

    Returns:
        (verified, attempts) tuple.
    """
    if server_id is None:
        warnings.append("server_id_missing")
        return False, 0

    attempts = 0
    for attempt, backoff in enumerate(retry_backoffs, start=1):
        attempts = attempt
        if backoff > 0:
            await asyncio.sleep(backoff)

        logger.info(f"Deleting server {server_id} (attempt {attempt}/{len(retry_backoffs)})...")
        try:
            await api.delete_server(server_id)
        except NotFoundError:
            logger.info(f"Server {server_id} already gone.")
            return True, attempt
        except ApiError as e:
            logger.warning(f"Delete of server {server_id} failed: {e}")
            warnings.append(f"server_delete_failed={e}")
            continue

        if await _server_gone(server_id, api):
            logger.info(f"Server {server_id} deleted.")
            return True, attempt

    logger.error(f"Server {server_id} still present after {attempts} delete attempt(s).")
    return False, attempts


async def _cleanup_key(key_id, cleanup, api, warnings):
    if key_id is None:
        return
    try:
        if KeyCleanup(cleanup) is KeyCleanup.NONE:
            return
        await maybe_cleanup_ssh_key(key_id, cleanup, api)
    except Exception as e:
        logger.warning(f"Could not clean up SSH key {key_id}: {e}")
        warnings.append(f"ssh_key_cleanup_failed={e}")


async def teardown(
    session_id,
    *,
    config,
    server_id=None,
    ssh_key_id=None,
    ssh_key_cleanup=KeyCleanup.NONE,
    retry_backoffs=DEFAULT_RETRY_BACKOFFS,
    api=None,
    sessions=None,
):
    """Stop the session, delete the server and conditionally release the SSH key.

    Args:
        session_id: id returned in ProvisionResult.session_id.
        config: resolved ProvisionConfig (needs the API token).
        server_id, ssh_key_id, ssh_key_cleanup: from the ProvisionResult.
        retry_backoffs: seconds to sleep before each delete attempt.
        sessions: the session manager that owns *session_id*; defaults to the
            process-wide registry used by provision().

    Returns:
        TeardownOutcome.
    """
    warnings = []
    api = api or HetznerAPI.from_config(config)
    sessions = default_sessions() if sessions is None else sessions

    await _stop_session(sessions, session_id, warnings)

    try:
        verified, attempts = await delete_server_with_retries(server_id, api, retry_backoffs, warnings)
    except Exception as e:
        logger.error(f"Unexpected error deleting server {server_id}: {e}")
        warnings.append(f"server_delete_failed={e}")
        verified, attempts = False, 0

    await _cleanup_key(ssh_key_id, ssh_key_cleanup, api, warnings)

    return TeardownOutcome(
        teardown_verified=verified,
        teardown_attempts=attempts,
        warnings=normalize_warnings(warnings),
    )
