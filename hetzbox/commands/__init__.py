"""CLI subcommands: provision, smoke, status, teardown."""
