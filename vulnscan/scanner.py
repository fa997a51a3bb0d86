"""Scanning of an artifact through a scanning driver."""

from __future__ import annotations

import logging
from typing import Protocol

from vulnscan.types import (
    OS,
    SCHEMA_VERSION,
    ArtifactReference,
    Metadata,
    Report,
    Result,
    ScanOptions,
)

logger = logging.getLogger(__name__)


class ArtifactScanError(Exception):
    """The artifact could not be analysed or scanned."""


class Driver(Protocol):
    def scan(
        self,
        target: str,
        artifact_key: str,
        blob_keys: list[str],
        options: ScanOptions,
    ) -> tuple[list[Result], OS | None]: ...


class Artifact(Protocol):
    def inspect(self) -> ArtifactReference: ...


class Scanner:
    """Inspects an artifact and scans it with a driver."""

    def __init__(self, driver: Driver, artifact: Artifact) -> None:
        self.driver = driver
        self.artifact = artifact

    def scan_artifact(self, options: ScanOptions) -> Report:
        """Inspect the artifact, scan it and return the report."""
        try:
            info = self.artifact.inspect()
        except Exception as err:
            raise ArtifactScanError(f"failed analysis: {err}") from err

        try:
            results, os_found = self.driver.scan(info.name, info.id, info.blob_ids, options)
        except Exception as err:
            raise ArtifactScanError(f"scan failed: {err}") from err

        if os_found is not None and os_found.eosl:
            logger.warning(
                "This OS version is no longer supported by the distribution: %s %s",
                os_found.family,
                os_found.name,
            )
            logger.warning(
                "The vulnerability detection may be insufficient because security "
                "updates are not provided"
            )

        meta = info.image_metadata
        return Report(
            schema_version=SCHEMA_VERSION,
            artifact_name=info.name,
            artifact_type=info.type,
            metadata=Metadata(
                os=os_found,
                image_id=meta.id,
                diff_ids=meta.diff_ids,
                repo_tags=meta.repo_tags,
                repo_digests=meta.repo_digests,
                image_config=meta.config_file,
            ),
            results=list(results),
        )