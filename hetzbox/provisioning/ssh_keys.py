"""SSH key lifecycle on Hetzner Cloud: secure a key for provisioning, release it at teardown.

Strategies:

- ``shared`` (default): one key, looked up by name, reused by every managed
  server and deleted once the last managed server is gone.
- ``ephemeral``: a fresh key per server, deleted on teardown.
- ``existing``: a caller-supplied key id + private key, never created or
  deleted here.
"""

import logging
import uuid

from hetzbox.errors import ApiError, ConflictError, NotFoundError, ProvisionError
from hetzbox.provisioning.keypair import generate_ed25519_keypair
from hetzbox.provisioning.types import EphemeralKey, ExistingKey, KeyCleanup, SecuredKey, SharedKey

logger = logging.getLogger(__name__)

MANAGED_BY_LABEL = "jido.managed_by"
MANAGED_BY_VALUE = "jido-hetzner"
MANAGED_LABEL_SELECTOR = f"{MANAGED_BY_LABEL}={MANAGED_BY_VALUE}"
EPHEMERAL_KEY_PREFIX = "jido-ephemeral-"


def key_strategy(config):
    """Turn the configured strategy name into its SharedKey/EphemeralKey/ExistingKey variant."""
    if config.ssh_key_strategy == "existing":
        if config.ssh_key_id is None:
            raise ProvisionError("missing_ssh_key_id")
        if config.ssh_private_key is None:
            raise ProvisionError("missing_ssh_private_key")
        return ExistingKey(key_id=config.ssh_key_id, private_key=config.ssh_private_key)
    if config.ssh_key_strategy == "ephemeral":
        return EphemeralKey()
    return SharedKey(name=config.ssh_key_name)


async def ensure_ssh_key(config, api):
    """Make sure an SSH key is available for server creation.

    Returns:
        SecuredKey with the provider key id, the private key PEM and the
        cleanup strategy to apply at teardown.

    Raises:
        ProvisionError: missing key id/material for ``existing``, or a
            shared-key conflict that a re-lookup could not resolve.
        ApiError: any other API failure.
        KeypairGenerationError: keypair generation failed.
    """
    strategy = key_strategy(config)

    if isinstance(strategy, ExistingKey):
        logger.info(f"Using existing SSH key (id={strategy.key_id}).")
        return SecuredKey(strategy.key_id, strategy.private_key, KeyCleanup.NONE)

    if isinstance(strategy, EphemeralKey):
        return await _create_ephemeral_key(api)

    return await _ensure_shared_key(strategy.name, config.ssh_private_key, api)


async def _create_ephemeral_key(api):
    private_pem, public_openssh = generate_ed25519_keypair()
    name = f"{EPHEMERAL_KEY_PREFIX}{uuid.uuid4().hex[:12]}"
    logger.info(f"Registering ephemeral SSH key '{name}'...")
    result = await api.create_ssh_key({"name": name, "public_key": public_openssh})
    key_id = result["ssh_key"]["id"]
    logger.info(f"Ephemeral SSH key registered (id={key_id}).")
    return SecuredKey(key_id, private_pem, KeyCleanup.EPHEMERAL)


async def _ensure_shared_key(key_name, private_pem, api):
    key_id = await _find_key_by_name(key_name, api)

    if key_id is not None:
        if private_pem is not None:
            logger.info(f"Reusing shared SSH key '{key_name}' (id={key_id}).")
            return SecuredKey(key_id, private_pem, KeyCleanup.SHARED)

        # Orphan from an earlier run: we can't log in with it, so replace it.
        logger.info(f"Shared SSH key '{key_name}' (id={key_id}) has no local private key; replacing it.")
        try:
            await api.delete_ssh_key(key_id)
        except ApiError as e:
            logger.warning(f"Could not delete orphaned SSH key {key_id}: {e}")

    return await _create_shared_key(key_name, api)


async def _create_shared_key(key_name, api):
    private_pem, public_openssh = generate_ed25519_keypair()
    logger.info(f"Registering shared SSH key '{key_name}'...")
    try:
        result = await api.create_ssh_key({"name": key_name, "public_key": public_openssh})
    except ConflictError:
        # Another provision call created it first; converge on theirs.
        logger.info(f"SSH key '{key_name}' was created concurrently; looking it up again.")
        key_id = await _find_key_by_name(key_name, api)
        if key_id is None:
            raise ProvisionError("ssh_key_conflict", key_name=key_name) from None
        return SecuredKey(key_id, private_pem, KeyCleanup.SHARED)

    key_id = result["ssh_key"]["id"]
    logger.info(f"Shared SSH key registered (id={key_id}).")
    return SecuredKey(key_id, private_pem, KeyCleanup.SHARED)


async def _find_key_by_name(key_name, api):
    result = await api.list_ssh_keys({"name": key_name})
    keys = result.get("ssh_keys", [])
    return keys[0]["id"] if keys else None


async def _managed_servers_remaining(api):
    result = await api.list_servers({"label_selector": MANAGED_LABEL_SELECTOR})
    return len(result.get("servers", [])) > 0


async def _delete_key(key_id, api):
    try:
        await api.delete_ssh_key(key_id)
    except NotFoundError:
        logger.info(f"SSH key {key_id} already gone.")
        return
    logger.info(f"SSH key {key_id} deleted.")


async def maybe_cleanup_ssh_key(key_id, cleanup, api):
    """Release an SSH key according to its cleanup strategy.

    - ``none``: nothing to do.
    - ``ephemeral``: always delete (not-found counts as deleted).
    - ``shared``: delete only when no managed servers remain. If that can't
      be determined the key is left in place.

    Raises:
        ApiError: the delete call failed with anything but not-found.
    """
    cleanup = KeyCleanup(cleanup)

    if cleanup is KeyCleanup.NONE:
        return

    if cleanup is KeyCleanup.EPHEMERAL:
        await _delete_key(key_id, api)
        return

    try:
        remaining = await _managed_servers_remaining(api)
    except ApiError as e:
        logger.warning(f"Could not list managed servers ({e}); keeping shared SSH key {key_id}.")
        return

    if remaining:
        logger.info(f"Managed servers still running; keeping shared SSH key {key_id}.")
        return

    await _delete_key(key_id, api)
