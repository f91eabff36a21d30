"""Status command: show the provider-reported state of a provisioned server."""

import asyncio
import logging
import sys

from hetzbox.commands.common import add_config_args, build_config, read_handle
from hetzbox.errors import ApiError, NotFoundError
from hetzbox.provisioning.lifecycle import status

logger = logging.getLogger(__name__)


def handle_status(args):
    """CLI handler for 'status'."""
    asyncio.run(_handle_status(args))


async def _handle_status(args):
    server_id = args.server_id
    if server_id is None:
        if not args.handle:
            logger.error("Error: pass a handle file or --server-id.")
            sys.exit(1)
        server_id = read_handle(args.handle).server_id
    config = build_config(args)

    try:
        info = await status(server_id, config)
    except NotFoundError:
        logger.info(f"Server {server_id} not found (already deleted).")
        sys.exit(1)
    except ApiError as e:
        logger.error(f"Error fetching server {server_id}: {e}")
        sys.exit(1)

    logger.info(f"Server:   {info.server_id} ({info.name})")
    logger.info(f"Status:   {info.status}")
    logger.info(f"IP:       {info.ip}")
    logger.info(f"Type:     {info.server_type}")
    logger.info(f"Location: {info.location}")


def register_status_command(subparsers):
    """Register the status subcommand."""
    parser = subparsers.add_parser("status", help="Show the state of a provisioned server")
    parser.add_argument("handle", nargs="?", default=None, help="Handle JSON written by 'provision' or 'smoke --keep --handle'")
    parser.add_argument("--server-id", type=int, default=None, help="Server id (instead of a handle file)")
    add_config_args(parser)
    parser.set_defaults(func=handle_status)
