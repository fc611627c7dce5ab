"""Helpers for NixOS code machines in LXD or Incus containers, and the ndd nix supervisor."""

__version__ = "0.1.0"