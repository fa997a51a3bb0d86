"""Messages exchanged between the scan client, the scan server and the cache server."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime


class RpcSeverity(enum.IntEnum):
    """Severity as carried on the wire."""

    UNKNOWN = 0
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4

    def __str__(self) -> str:
        return self.name


@dataclass
class RpcPackage:
    name: str = ""
    version: str = ""
    release: str = ""
    epoch: int = 0
    arch: str = ""
    src_name: str = ""
    src_version: str = ""
    src_release: str = ""
    src_epoch: int = 0
    license: str = ""


@dataclass
class RpcLibrary:
    name: str = ""
    version: str = ""
    license: str = ""


@dataclass
class RpcCVSS:
    v2_vector: str = ""
    v3_vector: str = ""
    v2_score: float = 0.0
    v3_score: float = 0.0


@dataclass
class RpcLayer:
    digest: str = ""
    diff_id: str = ""


@dataclass
class RpcOS:
    family: str = ""
    name: str = ""
    eosl: bool = False


@dataclass
class RpcVulnerability:
    vulnerability_id: str = ""
    pkg_name: str = ""
    installed_version: str = ""
    fixed_version: str = ""
    title: str = ""
    description: str = ""
    severity: RpcSeverity = RpcSeverity.UNKNOWN
    references: list[str] = field(default_factory=list)
    layer: RpcLayer | None = None
    cvss: dict[str, RpcCVSS] = field(default_factory=dict)
    severity_source: str = ""
    cwe_ids: list[str] = field(default_factory=list)
    primary_url: str = ""
    last_modified_date: datetime | None = None
    published_date: datetime | None = None


@dataclass
class RpcDetectedMisconfiguration:
    type: str = ""
    id: str = ""
    title: str = ""
    description: str = ""
    message: str = ""
    namespace: str = ""
    resolution: str = ""
    severity: RpcSeverity = RpcSeverity.UNKNOWN
    primary_url: str = ""
    references: list[str] = field(default_factory=list)
    status: str = ""
    layer: RpcLayer | None = None


@dataclass
class RpcPackageInfo:
    file_path: str = ""
    packages: list[RpcPackage] = field(default_factory=list)


@dataclass
class RpcApplication:
    type: str = ""
    file_path: str = ""
    libraries: list[RpcLibrary] = field(default_factory=list)


@dataclass
class RpcMisconfResult:
    namespace: str = ""
    message: str = ""
    id: str = ""
    type: str = ""
    title: str = ""
    severity: str = ""


@dataclass
class RpcMisconfiguration:
    file_type: str = ""
    file_path: str = ""
    successes: list[RpcMisconfResult] = field(default_factory=list)
    warnings: list[RpcMisconfResult] = field(default_factory=list)
    failures: list[RpcMisconfResult] = field(default_factory=list)
    exceptions: list[RpcMisconfResult] = field(default_factory=list)


@dataclass
class RpcResult:
    target: str = ""
    vulnerabilities: list[RpcVulnerability] = field(default_factory=list)
    misconfigurations: list[RpcDetectedMisconfiguration] = field(default_factory=list)
    class_: str = ""
    type: str = ""
    packages: list[RpcPackage] = field(default_factory=list)


@dataclass
class RpcArtifactInfo:
    schema_version: int = 0
    architecture: str = ""
    created: datetime | None = None
    docker_version: str = ""
    os: str = ""
    history_packages: list[RpcPackage] = field(default_factory=list)


@dataclass
class RpcBlobInfo:
    schema_version: int = 0
    digest: str = ""
    diff_id: str = ""
    os: RpcOS | None = None
    package_infos: list[RpcPackageInfo] = field(default_factory=list)
    applications: list[RpcApplication] = field(default_factory=list)
    misconfigurations: list[RpcMisconfiguration] = field(default_factory=list)
    opaque_dirs: list[str] = field(default_factory=list)
    whiteout_files: list[str] = field(default_factory=list)


@dataclass
class PutArtifactRequest:
    artifact_id: str = ""
    artifact_info: RpcArtifactInfo | None = None


@dataclass
class PutBlobRequest:
    diff_id: str = ""
    blob_info: RpcBlobInfo | None = None


@dataclass
class MissingBlobsRequest:
    artifact_id: str = ""
    blob_ids: list[str] = field(default_factory=list)


@dataclass
class MissingBlobsResponse:
    missing_artifact: bool = False
    missing_blob_ids: list[str] = field(default_factory=list)


@dataclass
class RpcScanOptions:
    vuln_type: list[str] = field(default_factory=list)
    security_checks: list[str] = field(default_factory=list)
    list_all_packages: bool = False


@dataclass
class ScanRequest:
    target: str = ""
    artifact_id: str = ""
    blob_ids: list[str] = field(default_factory=list)
    options: RpcScanOptions | None = None


@dataclass
class ScanResponse:
    os: RpcOS | None = None
    results: list[RpcResult] = field(default_factory=list)