"""Server-side handlers for scan and cache requests."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from vulnscan.convert import (
    from_rpc_put_artifact_request,
    from_rpc_put_blob_request,
    to_rpc_scan_response,
)
from vulnscan.rpcmessages import (
    MissingBlobsRequest,
    MissingBlobsResponse,
    PutArtifactRequest,
    PutBlobRequest,
    RpcScanOptions,
    ScanRequest,
    ScanResponse,
)
from vulnscan.types import (
    OS,
    ArtifactInfo,
    BlobInfo,
    DetectedVulnerability,
    Result,
    ScanOptions,
)


class ServerError(Exception):
    """A request could not be served."""


class Driver(Protocol):
    def scan(
        self,
        target: str,
        artifact_key: str,
        blob_keys: list[str],
        options: ScanOptions,
    ) -> tuple[list[Result], OS | None]: ...


class ResultClient(Protocol):
    def fill_vulnerability_info(
        self, vulns: list[DetectedVulnerability], report_type: str
    ) -> None: ...


class Cache(Protocol):
    def put_artifact(self, artifact_id: str, artifact_info: ArtifactInfo) -> None: ...

    def put_blob(self, blob_id: str, blob_info: BlobInfo) -> None: ...

    def missing_blobs(
        self, artifact_id: str, blob_ids: Sequence[str]
    ) -> tuple[bool, list[str]]: ...


class ScanServer:
    """Serves scan requests with a local scanner."""

    def __init__(self, local_scanner: Driver, result_client: ResultClient) -> None:
        self.local_scanner = local_scanner
        self.result_client = result_client

    def scan(self, request: ScanRequest) -> ScanResponse:
        """Scan the requested artifact and return the response."""
        rpc_options = request.options or RpcScanOptions()
        options = ScanOptions(
            vuln_type=list(rpc_options.vuln_type),
            security_checks=list(rpc_options.security_checks),
            list_all_packages=rpc_options.list_all_packages,
        )
        try:
            results, os_found = self.local_scanner.scan(
                request.target, request.artifact_id, list(request.blob_ids), options
            )
        except Exception as err:
            raise ServerError(f"failed scan, {request.target}: {err}") from err

        for result in results:
            self.result_client.fill_vulnerability_info(result.vulnerabilities, result.type)
        return to_rpc_scan_response(results, os_found)


class CacheServer:
    """Serves cache requests with an artifact cache."""

    def __init__(self, cache: Cache) -> None:
        self.cache = cache

    def put_artifact(self, request: PutArtifactRequest) -> None:
        """Store the artifact info carried by the request."""
        if request.artifact_info is None:
            raise ServerError("empty image info")
        info = from_rpc_put_artifact_request(request)
        try:
            self.cache.put_artifact(request.artifact_id, info)
        except Exception as err:
            raise ServerError(f"unable to store image info in cache: {err}") from err

    def put_blob(self, request: PutBlobRequest) -> None:
        """Store the blob info carried by the request."""
        if request.blob_info is None:
            raise ServerError("empty layer info")
        info = from_rpc_put_blob_request(request)
        try:
            self.cache.put_blob(request.diff_id, info)
        except Exception as err:
            raise ServerError(f"unable to store layer info in cache: {err}") from err

    def missing_blobs(self, request: MissingBlobsRequest) -> MissingBlobsResponse:
        """Report which of the requested artifact and blobs are not cached."""
        try:
            missing_artifact, blob_ids = self.cache.missing_blobs(
                request.artifact_id, list(request.blob_ids)
            )
        except Exception as err:
            raise ServerError(f"failed to get missing blobs: {err}") from err
        return MissingBlobsResponse(
            missing_artifact=missing_artifact, missing_blob_ids=list(blob_ids)
        )