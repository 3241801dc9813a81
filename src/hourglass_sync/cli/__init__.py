"""Hourglass sync CLI.

Usage:
    hsync login <token>          Store a credential
    hsync download               Pull the cloud document
    hsync upload                 Push the local document
    hsync set <key> <value>      Write a local key (and upload it)
    hsync watch                  Stay in sync until interrupted
    hsync serve                  Run the sync server
"""

from hourglass_sync.cli.main import app, main

__all__ = ["app", "main"]
