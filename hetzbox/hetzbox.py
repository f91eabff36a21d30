#!/usr/bin/env python3
"""Hetzner Cloud workspace tools: CLI entrypoint."""

import argparse

from hetzbox.commands.provision import register_provision_command
from hetzbox.commands.smoke import register_smoke_command
from hetzbox.commands.status import register_status_command
from hetzbox.commands.teardown import register_teardown_command
from hetzbox.logging_setup import setup_cli_logging


def build_parser():
    parser = argparse.ArgumentParser(description="Hetzner Cloud workspace tools")
    subparsers = parser.add_subparsers(dest="command", required=True)

    register_provision_command(subparsers)
    register_smoke_command(subparsers)
    register_status_command(subparsers)
    register_teardown_command(subparsers)
    return parser


def main():
    args = build_parser().parse_args()
    setup_cli_logging(verbose=getattr(args, "verbose", False))
    args.func(args)


if __name__ == "__main__":
    main()
