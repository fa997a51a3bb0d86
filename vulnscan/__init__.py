"""Vulnerability and misconfiguration scanning: result types, local and remote scanners, RPC messages and conversion."""

__version__ = "0.1.0"

__all__ = [
    "types",
    "dockerconf",
    "utils",
    "versions",
    "rpcmessages",
    "convert",
    "retry",
    "local_scanner",
    "scanner",
    "client",
    "server",
]