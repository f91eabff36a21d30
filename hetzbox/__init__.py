"""hetzbox: on-demand Hetzner Cloud servers with a remote shell session attached."""
