"""
vpsdev: remote development environment toolkit.

Provision a VPS, keep assistant sessions alive in tmux, join the
Tailscale mesh, ship encrypted configuration between machines, and
get pinged on your phone when a session needs you.
"""

import os

__version__ = "0.1.0"
__author__ = "vpsdev contributors"

CONFIG_PATH = os.environ.get("VPSDEV_CONFIG", "~/.config/vpsdev/config.yaml")
