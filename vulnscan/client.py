"""Scanning through a remote scan server."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping, Sequence
from typing import Protocol

from vulnscan.convert import from_rpc_os, from_rpc_results
from vulnscan.retry import retry
from vulnscan.rpcmessages import RpcScanOptions, ScanRequest, ScanResponse
from vulnscan.types import OS, Result, ScanOptions

logger = logging.getLogger(__name__)

# Headers the RPC protocol sets itself; callers may not override them.
_RESERVED_HEADERS = frozenset({"accept", "content-type", "twirp-version"})


class RemoteScanError(Exception):
    """The remote scan could not be completed."""


class ScanClient(Protocol):
    def scan(
        self, request: ScanRequest, headers: Mapping[str, list[str]]
    ) -> ScanResponse: ...


def _request_headers(custom_headers: Mapping[str, Sequence[str]]) -> dict[str, list[str]]:
    """Return the headers to send, or none at all if a reserved header is present."""
    for key in custom_headers:
        if key.lower() in _RESERVED_HEADERS:
            logger.warning(
                "twirp error setting headers: provided header cannot set %s", key
            )
            return {}
    return {key: list(values) for key, values in custom_headers.items()}


class RemoteScanner:
    """Sends scan requests to a remote server, retrying while it is unavailable."""

    def __init__(
        self,
        custom_headers: Mapping[str, Sequence[str]] | None,
        client: ScanClient,
        *,
        sleep: Callable[[float], object] = time.sleep,
    ) -> None:
        self.custom_headers = dict(custom_headers or {})
        self.client = client
        self._sleep = sleep

    def scan(
        self,
        target: str,
        artifact_key: str,
        blob_keys: Sequence[str],
        options: ScanOptions,
    ) -> tuple[list[Result], OS | None]:
        """Scan the artifact remotely and return its results and the detected OS."""
        headers = _request_headers(self.custom_headers)
        request = ScanRequest(
            target=target,
            artifact_id=artifact_key,
            blob_ids=list(blob_keys),
            options=RpcScanOptions(
                vuln_type=list(options.vuln_type),
                security_checks=list(options.security_checks),
                list_all_packages=options.list_all_packages,
            ),
        )
        try:
            response = retry(lambda: self.client.scan(request, headers), sleep=self._sleep)
        except Exception as err:
            raise RemoteScanError(
                f"failed to detect vulnerabilities via RPC: {err}"
            ) from err
        return from_rpc_results(response.results), from_rpc_os(response.os)