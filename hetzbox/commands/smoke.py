"""Smoke command: provision a server, run a few commands over SSH, tear it down."""

import asyncio
import logging
import sys
import time
import uuid

from hetzbox.commands.common import add_config_args, build_config, parse_image, write_handle
from hetzbox.errors import HetznerError, SessionError
from hetzbox.provisioning.lifecycle import provision
from hetzbox.provisioning.session import ShellSessions
from hetzbox.provisioning.teardown import teardown

logger = logging.getLogger(__name__)

SMOKE_COMMANDS = [
    ("hostname", "Check hostname"),
    ("uname -a", "Check kernel"),
    ("whoami", "Check user"),
    ("cat /etc/os-release | head -3", "Check OS"),
    ("df -h /", "Check disk"),
    ("free -m", "Check memory"),
]


def _log_progress(stage, metadata):
    details = " ".join(f"{k}={v}" for k, v in metadata.items())
    logger.info(f"  [{stage}] {details}")


async def run_smoke_commands(sessions, session_id, commands=SMOKE_COMMANDS, timeout=15):
    """Run each check command; return the number that failed."""
    failures = 0
    for command, label in commands:
        try:
            output = await sessions.run(session_id, command, timeout=timeout)
        except SessionError as e:
            logger.info(f"  [FAIL] {label}: {e}")
            failures += 1
            continue
        logger.info(f"  [OK] {label}: {output.strip()}")
    return failures


def handle_smoke(args):
    """CLI handler for 'smoke'."""
    asyncio.run(_handle_smoke(args))


async def _handle_smoke(args):
    config = build_config(
        args,
        server_type=args.server_type,
        image=parse_image(args.image) if args.image else None,
        location=args.location,
        ssh_key_strategy=args.ssh_key_strategy,
    )
    workspace_id = args.workspace_id or f"smoke-{uuid.uuid4().hex[:8]}"
    sessions = ShellSessions()

    logger.info(f"Starting smoke test: workspace={workspace_id}")
    logger.info(f"Config: server_type={config.server_type} image={config.image} location={config.location}")

    logger.info("\n--- PROVISION ---")
    t0 = time.monotonic()
    try:
        result = await provision(workspace_id, config, _log_progress, sessions=sessions)
    except HetznerError as e:
        logger.error(f"PROVISION FAILED after {time.monotonic() - t0:.0f}s")
        logger.error(f"  error: {e}")
        logger.error("\nSMOKE TEST FAILED")
        sys.exit(1)

    logger.info(f"Provisioned in {time.monotonic() - t0:.0f}s")
    logger.info(f"  server_id:  {result.server_id}")
    logger.info(f"  ip:         {result.ip_address}")
    logger.info(f"  session_id: {result.session_id}")
    logger.info(f"  workspace:  {result.workspace_dir}")
    logger.info(f"  ssh_key_id: {result.ssh_key_id}")

    logger.info("\n--- EXECUTE COMMANDS ---")
    failures = await run_smoke_commands(sessions, result.session_id)

    if args.keep:
        logger.info("\n--- KEEPING SERVER (--keep) ---")
        logger.info(f"  SSH: ssh {config.ssh_user}@{result.ip_address}")
        if args.handle:
            write_handle(args.handle, result)
            logger.info(f"  Tear down later with: hetzbox teardown {args.handle}")
        await sessions.stop(result.session_id)
    else:
        logger.info("\n--- TEARDOWN ---")
        t1 = time.monotonic()
        outcome = await teardown(
            result.session_id,
            config=config,
            server_id=result.server_id,
            ssh_key_id=result.ssh_key_id,
            ssh_key_cleanup=result.ssh_key_cleanup,
            sessions=sessions,
        )
        logger.info(f"Teardown in {time.monotonic() - t1:.0f}s")
        logger.info(f"  verified:  {outcome.teardown_verified}")
        logger.info(f"  attempts:  {outcome.teardown_attempts}")
        logger.info(f"  warnings:  {outcome.warnings}")
        if not outcome.teardown_verified:
            failures += 1

    if failures:
        logger.error(f"\nSMOKE TEST FAILED ({failures} failure(s))")
        sys.exit(1)
    logger.info("\nSMOKE TEST PASSED")


def register_smoke_command(subparsers):
    """Register the smoke subcommand."""
    parser = subparsers.add_parser("smoke", help="Provision a server, SSH in, run commands, tear down")
    add_config_args(parser)
    parser.add_argument("--workspace-id", default=None, help="Workspace id (default: smoke-<random>)")
    parser.add_argument("--server-type", default=None, help="Server type (default: cpx11)")
    parser.add_argument("--image", default=None, help="Image name or numeric snapshot id (default: ubuntu-24.04)")
    parser.add_argument("--location", default=None, help="Location (default: nbg1)")
    parser.add_argument("--ssh-key-strategy", choices=["shared", "ephemeral", "existing"], default=None, help="SSH key strategy (default: shared)")
    parser.add_argument("--keep", action="store_true", help="Skip teardown (leave the server running for debugging)")
    parser.add_argument("--handle", default=None, help="With --keep: write the provision handle JSON here")
    parser.set_defaults(func=handle_smoke)
