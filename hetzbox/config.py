"""Provisioning configuration: defaults, YAML file, environment, overrides.

Resolution order (later wins): built-in defaults, YAML config file,
``HETZNER_API_TOKEN`` from the environment, call-site overrides. The
orchestrator only ever sees the resolved :class:`ProvisionConfig`.
"""

import dataclasses
import logging
import os
from dataclasses import dataclass, field

import yaml

from hetzbox.errors import ConfigError
from hetzbox.provisioning.api import DEFAULT_API_URL, DEFAULT_MAX_RETRIES

logger = logging.getLogger(__name__)

TOKEN_ENV_VAR = "HETZNER_API_TOKEN"
KEY_STRATEGIES = ("shared", "ephemeral", "existing")


@dataclass(frozen=True)
class ProvisionConfig:
    """Fully resolved settings for one provision/teardown call."""

    api_token: str | None = None
    server_type: str = "cpx11"
    image: str | int = "ubuntu-24.04"
    location: str = "nbg1"
    ssh_key_strategy: str = "shared"
    ssh_key_name: str = "jido-ssh-key"
    ssh_key_id: int | None = None
    ssh_private_key: str | None = None
    ssh_user: str = "root"
    workspace_base: str = "/work"
    labels: dict = field(default_factory=dict)
    user_data: str | None = None
    server_wait_timeout: float = 120
    ssh_wait_timeout: float = 120
    server_poll_interval: float = 2
    ssh_poll_interval: float = 3
    ssh_connect_timeout: float = 5
    base_url: str = DEFAULT_API_URL
    max_retries: int = DEFAULT_MAX_RETRIES

    def __post_init__(self):
        if self.ssh_key_strategy not in KEY_STRATEGIES:
            raise ConfigError(f"ssh_key_strategy must be one of {', '.join(KEY_STRATEGIES)}, got '{self.ssh_key_strategy}'")

    @classmethod
    def from_dict(cls, values):
        """Build a config from a plain mapping, rejecting unknown keys."""
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise ConfigError(f"Unknown config key(s): {', '.join(unknown)}")
        return cls(**values)

    def replace(self, **changes):
        return dataclasses.replace(self, **changes)


def _resolve_env_refs(values, environ):
    """Replace ``{env: NAME}`` values with the named environment variable."""
    resolved = {}
    for key, value in values.items():
        if isinstance(value, dict) and set(value) == {"env"}:
            resolved[key] = environ.get(value["env"])
        else:
            resolved[key] = value
    return resolved


def load_config(config_path):
    """Load a YAML config file into a dict.

    Raises:
        ConfigError: if the file is missing, unparsable or not a mapping.
    """
    try:
        with open(os.path.expanduser(config_path)) as f:
            data = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Config file '{config_path}' not found.") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Error parsing YAML config: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file '{config_path}' must contain a mapping, got {type(data).__name__}")
    # Allow the settings to live under a top-level "hetzner:" section.
    if set(data) == {"hetzner"} and isinstance(data["hetzner"], dict):
        data = data["hetzner"]
    return data


def resolve_config(overrides=None, config_path=None, environ=None):
    """Merge defaults, config file, environment and overrides.

    ``None`` values in *overrides* are treated as "not given" so CLI
    arguments without a value fall through to the lower layers.
    """
    environ = os.environ if environ is None else environ
    merged = {}

    if config_path:
        merged.update(_resolve_env_refs(load_config(config_path), environ))

    token = environ.get(TOKEN_ENV_VAR)
    if token:
        merged["api_token"] = token

    for key, value in (overrides or {}).items():
        if value is not None:
            merged[key] = value

    return ProvisionConfig.from_dict(merged)
