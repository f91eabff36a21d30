"""Teardown command: clean up a server from a saved handle ('provision' or 'smoke --keep')."""

import asyncio
import logging
import sys
from pathlib import Path

from hetzbox.commands.common import add_config_args, build_config, read_handle
from hetzbox.provisioning.teardown import DEFAULT_RETRY_BACKOFFS, teardown

logger = logging.getLogger(__name__)


def handle_teardown(args):
    """Handle the teardown command."""
    asyncio.run(_handle_teardown(args))


async def _handle_teardown(args):
    result = read_handle(args.handle)
    config = build_config(args)

    logger.info(f"Tearing down server {result.server_id} ({result.ip_address}, workspace '{result.workspace_id}')")
    outcome = await teardown(
        result.session_id,
        config=config,
        server_id=result.server_id,
        ssh_key_id=result.ssh_key_id,
        ssh_key_cleanup=result.ssh_key_cleanup,
        retry_backoffs=args.retry_backoffs,
    )

    logger.info(f"  verified:  {outcome.teardown_verified}")
    logger.info(f"  attempts:  {outcome.teardown_attempts}")
    for warning in outcome.warnings or []:
        logger.info(f"  WARNING: {warning}")

    if not outcome.teardown_verified:
        logger.info(f"\nServer {result.server_id} could not be confirmed deleted; keeping {args.handle}")
        sys.exit(1)
    Path(args.handle).unlink()
    logger.info(f"\nServer cleaned up. Removed {args.handle}")


def _parse_backoffs(value):
    return tuple(float(v) for v in value.split(",") if v.strip())


def register_teardown_command(subparsers):
    """Register the teardown subcommand."""
    parser = subparsers.add_parser(
        "teardown",
        help="Tear down a server from a saved handle file",
    )
    parser.add_argument(
        "handle",
        help="Handle JSON written by 'provision' or 'smoke --keep --handle'",
    )
    add_config_args(parser)
    parser.add_argument(
        "--retry-backoffs",
        type=_parse_backoffs,
        default=DEFAULT_RETRY_BACKOFFS,
        help="Comma-separated seconds to wait before each delete attempt (default: 0,1,3)",
    )
    parser.set_defaults(func=handle_teardown)
