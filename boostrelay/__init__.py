"""Relay core: beacon-node client, relay database and data-export tools."""

__version__ = "0.1.0"