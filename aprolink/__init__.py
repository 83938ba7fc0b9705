"""Framed JSON-RPC client, wire framing, packet layouts and automation helpers for the APRO programmer protocol."""

__version__ = "0.1.0"

__all__ = [
    "automatic",
    "client",
    "external_server",
    "framing",
    "icd",
    "views",
]