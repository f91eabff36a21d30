"""Provision command: create a workspace server and save its handle for later teardown."""

import asyncio
import logging
import sys
import uuid

from hetzbox.commands.common import add_config_args, build_config, parse_image, write_handle
from hetzbox.errors import HetznerError
from hetzbox.provisioning.lifecycle import provision
from hetzbox.provisioning.session import ShellSessions

logger = logging.getLogger(__name__)


def _log_progress(stage, metadata):
    details = " ".join(f"{k}={v}" for k, v in metadata.items())
    logger.info(f"  [{stage}] {details}")


def handle_provision(args):
    """CLI handler for 'provision'."""
    asyncio.run(_handle_provision(args))


async def _handle_provision(args):
    config = build_config(
        args,
        server_type=args.server_type,
        image=parse_image(args.image) if args.image else None,
        location=args.location,
        ssh_key_strategy=args.ssh_key_strategy,
    )
    workspace_id = args.workspace_id or f"forge-{uuid.uuid4().hex[:8]}"
    sessions = ShellSessions()

    logger.info(f"Provisioning workspace '{workspace_id}' ({config.server_type}, {config.image}, {config.location})")
    try:
        result = await provision(workspace_id, config, _log_progress, sessions=sessions)
    except HetznerError as e:
        logger.error(f"Provisioning failed: {e}")
        sys.exit(1)

    # The session belongs to this process; later commands reconnect on their own.
    await sessions.stop(result.session_id)
    write_handle(args.handle, result)

    logger.info(f"Server {result.server_id} ready at {result.ip_address}")
    logger.info(f"  SSH:      ssh {config.ssh_user}@{result.ip_address}")
    logger.info(f"  Teardown: hetzbox teardown {args.handle}")


def register_provision_command(subparsers):
    """Register the provision subcommand."""
    parser = subparsers.add_parser("provision", help="Provision a workspace server and write its handle file")
    add_config_args(parser)
    parser.add_argument("--workspace-id", default=None, help="Workspace id (default: forge-<random>)")
    parser.add_argument("--server-type", default=None, help="Server type (default: cpx11)")
    parser.add_argument("--image", default=None, help="Image name or numeric snapshot id (default: ubuntu-24.04)")
    parser.add_argument("--location", default=None, help="Location (default: nbg1)")
    parser.add_argument("--ssh-key-strategy", choices=["shared", "ephemeral", "existing"], default=None, help="SSH key strategy (default: shared)")
    parser.add_argument("--handle", default="hetzbox-handle.json", help="Where to write the handle JSON (default: hetzbox-handle.json)")
    parser.set_defaults(func=handle_provision)
