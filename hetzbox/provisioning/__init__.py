"""Hetzner Cloud provisioning: API client, SSH keys, readiness polling, sessions, teardown."""

from hetzbox.provisioning.api import HetznerAPI
from hetzbox.provisioning.keypair import generate_ed25519_keypair
from hetzbox.provisioning.lifecycle import provision, status
from hetzbox.provisioning.session import ShellSessions
from hetzbox.provisioning.ssh import AsyncSSHTransport, wait_for_ssh
from hetzbox.provisioning.ssh_keys import ensure_ssh_key, maybe_cleanup_ssh_key
from hetzbox.provisioning.teardown import teardown
from hetzbox.provisioning.types import (
    KeyCleanup,
    ProvisionResult,
    SecuredKey,
    ServerStatus,
    TeardownOutcome,
)

__all__ = [
    "HetznerAPI",
    "generate_ed25519_keypair",
    "provision",
    "status",
    "teardown",
    "ShellSessions",
    "AsyncSSHTransport",
    "wait_for_ssh",
    "ensure_ssh_key",
    "maybe_cleanup_ssh_key",
    "KeyCleanup",
    "ProvisionResult",
    "SecuredKey",
    "ServerStatus",
    "TeardownOutcome",
]
