"""Argument and config helpers shared by the CLI commands."""

import json
import logging
import sys
from pathlib import Path

from hetzbox.config import TOKEN_ENV_VAR, resolve_config
from hetzbox.errors import ConfigError
from hetzbox.provisioning.types import ProvisionResult
from hetzbox.redact import register_secret

logger = logging.getLogger(__name__)


def parse_image(value):
    """Image names stay strings; all-digit values are snapshot ids."""
    return int(value) if value.isdigit() else value


def add_config_args(parser):
    parser.add_argument("--config", default=None, help="YAML config file with provisioning defaults")
    parser.add_argument("--api-token", default=None, help=f"Hetzner Cloud API token (fallback: {TOKEN_ENV_VAR} env var)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")


def build_config(args, **overrides):
    """Resolve a ProvisionConfig from --config, the environment and CLI flags.

    Exits with status 1 on configuration errors or a missing token.
    """
    overrides["api_token"] = args.api_token
    try:
        config = resolve_config(overrides, config_path=args.config)
    except ConfigError as e:
        logger.error(f"Error: {e}")
        sys.exit(1)

    if not config.api_token:
        logger.error(f"Error: Hetzner API token required. Use --api-token or set {TOKEN_ENV_VAR}.")
        sys.exit(1)
    register_secret(config.api_token)
    return config


def write_handle(path, result):
    Path(path).write_text(json.dumps(result.to_dict(), indent=2) + "\n")
    logger.info(f"Handle written to {path}")


def read_handle(path):
    handle_path = Path(path)
    if not handle_path.exists():
        logger.error(f"No handle file found at {handle_path}")
        sys.exit(1)
    return ProvisionResult.from_dict(json.loads(handle_path.read_text()))
