"""Shared data types for provisioning and teardown."""

from dataclasses import asdict, dataclass
from enum import Enum


class KeyCleanup(str, Enum):
    """Teardown-time disposition of an SSH key, decided when it is secured."""

    SHARED = "shared"
    EPHEMERAL = "ephemeral"
    NONE = "none"


# ── Key strategies (one variant per strategy) ─────────────────────


@dataclass(frozen=True)
class SharedKey:
    """One key, looked up by name and reused across all managed servers."""

    name: str


@dataclass(frozen=True)
class EphemeralKey:
    """A fresh key per server, always deleted at teardown."""


@dataclass(frozen=True)
class ExistingKey:
    """A caller-owned key; never created or deleted here."""

    key_id: int
    private_key: str


@dataclass(frozen=True)
class SecuredKey:
    """Key ready for server creation, plus how to release it later."""

    key_id: int
    private_key: str
    cleanup: KeyCleanup


# ── Results ───────────────────────────────────────────────────────


@dataclass
class ProvisionResult:
    """Handle returned by provision(); keep it to call teardown() later."""

    session_id: str
    workspace_dir: str
    workspace_id: str
    server_id: int
    ip_address: str
    ssh_key_id: int
    ssh_key_cleanup: KeyCleanup

    def to_dict(self) -> dict:
        data = asdict(self)
        data["ssh_key_cleanup"] = self.ssh_key_cleanup.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "ProvisionResult":
        return cls(**{**data, "ssh_key_cleanup": KeyCleanup(data.get("ssh_key_cleanup", "none"))})


@dataclass
class TeardownOutcome:
    """What teardown() managed to clean up. ``warnings`` is None when empty."""

    teardown_verified: bool
    teardown_attempts: int
    warnings: list[str] | None = None


@dataclass
class ServerStatus:
    """Provider-reported state of a server."""

    server_id: int
    name: str | None
    status: str | None
    ip: str | None
    server_type: str | None
    location: str | None
