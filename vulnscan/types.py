"""Core data types shared by the scanner, the cache and the RPC layer."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime

SCHEMA_VERSION = 2

VULN_TYPE_UNKNOWN = "unknown"
VULN_TYPE_OS = "os"
VULN_TYPE_LIBRARY = "library"

SECURITY_CHECK_UNKNOWN = "unknown"
SECURITY_CHECK_VULNERABILITY = "vuln"
SECURITY_CHECK_CONFIG = "config"

_VULN_TYPES = (VULN_TYPE_OS, VULN_TYPE_LIBRARY)
_SECURITY_CHECKS = (SECURITY_CHECK_VULNERABILITY, SECURITY_CHECK_CONFIG)


class Severity(enum.IntEnum):
    """Vulnerability severity, ordered from least to most severe."""

    UNKNOWN = 0
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4

    @classmethod
    def parse(cls, name: str) -> Severity:
        """Return the severity with exactly this name; raise ValueError otherwise."""
        try:
            return cls[name]
        except KeyError:
            raise ValueError(f"unknown severity: {name}") from None

    def __str__(self) -> str:
        return self.name


SEVERITY_NAMES = [s.name for s in Severity]


def compare_severity_string(a: str, b: str) -> int:
    """Return a positive number when ``a`` is less severe than ``b``.

    Names that are not valid severities count as UNKNOWN.
    """

    def rank(name: str) -> int:
        try:
            return int(Severity.parse(name))
        except ValueError:
            return int(Severity.UNKNOWN)

    return rank(b) - rank(a)


class MisconfStatus(str, enum.Enum):
    """Status of a detected misconfiguration."""

    PASSED = "PASS"
    FAILURE = "FAIL"
    EXCEPTION = "EXCEPTION"


class ResultClass(str, enum.Enum):
    """Kind of a scan result."""

    OS_PKG = "os-pkgs"
    LANG_PKG = "lang-pkgs"
    CONFIG = "config"


@dataclass
class Layer:
    digest: str = ""
    diff_id: str = ""


@dataclass
class Package:
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
    layer: Layer = field(default_factory=Layer)


@dataclass
class Library:
    name: str = ""
    version: str = ""
    license: str = ""


@dataclass
class LibraryInfo:
    library: Library = field(default_factory=Library)
    layer: Layer = field(default_factory=Layer)


@dataclass
class Application:
    type: str = ""
    file_path: str = ""
    libraries: list[LibraryInfo] = field(default_factory=list)


@dataclass
class OS:
    family: str = ""
    name: str = ""
    eosl: bool = False


@dataclass
class MisconfResult:
    namespace: str = ""
    message: str = ""
    id: str = ""
    type: str = ""
    title: str = ""
    description: str = ""
    severity: str = ""
    recommended_actions: str = ""
    references: list[str] = field(default_factory=list)
    query: str = ""
    traces: list[str] = field(default_factory=list)


@dataclass
class Misconfiguration:
    file_type: str = ""
    file_path: str = ""
    successes: list[MisconfResult] = field(default_factory=list)
    warnings: list[MisconfResult] = field(default_factory=list)
    failures: list[MisconfResult] = field(default_factory=list)
    exceptions: list[MisconfResult] = field(default_factory=list)
    layer: Layer = field(default_factory=Layer)


@dataclass
class PackageInfo:
    file_path: str = ""
    packages: list[Package] = field(default_factory=list)


@dataclass
class ArtifactInfo:
    schema_version: int = 0
    architecture: str = ""
    created: datetime | None = None
    docker_version: str = ""
    os: str = ""
    history_packages: list[Package] = field(default_factory=list)


@dataclass
class BlobInfo:
    schema_version: int = 0
    digest: str = ""
    diff_id: str = ""
    os: OS | None = None
    package_infos: list[PackageInfo] = field(default_factory=list)
    applications: list[Application] = field(default_factory=list)
    misconfigurations: list[Misconfiguration] = field(default_factory=list)
    opaque_dirs: list[str] = field(default_factory=list)
    whiteout_files: list[str] = field(default_factory=list)


@dataclass
class ArtifactDetail:
    os: OS | None = None
    packages: list[Package] = field(default_factory=list)
    applications: list[Application] = field(default_factory=list)
    misconfigurations: list[Misconfiguration] = field(default_factory=list)
    history_packages: list[Package] = field(default_factory=list)


@dataclass
class ImageMetadata:
    id: str = ""
    diff_ids: list[str] = field(default_factory=list)
    repo_tags: list[str] = field(default_factory=list)
    repo_digests: list[str] = field(default_factory=list)
    config_file: dict | None = None


@dataclass
class ArtifactReference:
    name: str = ""
    type: str = ""
    id: str = ""
    blob_ids: list[str] = field(default_factory=list)
    image_metadata: ImageMetadata = field(default_factory=ImageMetadata)


@dataclass
class CVSS:
    v2_vector: str = ""
    v3_vector: str = ""
    v2_score: float = 0.0
    v3_score: float = 0.0


@dataclass
class DetectedVulnerability:
    vulnerability_id: str = ""
    vendor_ids: list[str] = field(default_factory=list)
    pkg_name: str = ""
    pkg_path: str = ""
    installed_version: str = ""
    fixed_version: str = ""
    layer: Layer = field(default_factory=Layer)
    severity_source: str = ""
    primary_url: str = ""
    title: str = ""
    description: str = ""
    severity: str = ""
    cwe_ids: list[str] = field(default_factory=list)
    cvss: dict[str, CVSS] = field(default_factory=dict)
    references: list[str] = field(default_factory=list)
    published_date: datetime | None = None
    last_modified_date: datetime | None = None


@dataclass
class DetectedMisconfiguration:
    type: str = ""
    id: str = ""
    title: str = ""
    description: str = ""
    message: str = ""
    namespace: str = ""
    query: str = ""
    resolution: str = ""
    severity: str = ""
    primary_url: str = ""
    references: list[str] = field(default_factory=list)
    status: str = ""
    layer: Layer = field(default_factory=Layer)
    traces: list[str] = field(default_factory=list)


@dataclass
class ScanOptions:
    vuln_type: list[str] = field(default_factory=list)
    security_checks: list[str] = field(default_factory=list)
    scan_removed_packages: bool = False
    list_all_packages: bool = False
    skip_files: list[str] = field(default_factory=list)
    skip_dirs: list[str] = field(default_factory=list)


@dataclass
class Result:
    target: str = ""
    class_: str = ""
    type: str = ""
    packages: list[Package] = field(default_factory=list)
    vulnerabilities: list[DetectedVulnerability] = field(default_factory=list)
    misconfigurations: list[DetectedMisconfiguration] = field(default_factory=list)


@dataclass
class Metadata:
    os: OS | None = None
    image_id: str = ""
    diff_ids: list[str] = field(default_factory=list)
    repo_tags: list[str] = field(default_factory=list)
    repo_digests: list[str] = field(default_factory=list)
    image_config: dict | None = None


@dataclass
class Report:
    schema_version: int = SCHEMA_VERSION
    artifact_name: str = ""
    artifact_type: str = ""
    metadata: Metadata = field(default_factory=Metadata)
    results: list[Result] = field(default_factory=list)


def new_vuln_type(s: str) -> str:
    """Return ``s`` if it is a known vulnerability type, else ``"unknown"``."""
    return s if s in _VULN_TYPES else VULN_TYPE_UNKNOWN


def new_security_check(s: str) -> str:
    """Return ``s`` if it is a known security check, else ``"unknown"``."""
    return s if s in _SECURITY_CHECKS else SECURITY_CHECK_UNKNOWN


def _severity_rank(name: str) -> int:
    try:
        return int(Severity.parse(name))
    except ValueError:
        return int(Severity.UNKNOWN)


def sort_by_severity(
    vulns: list[DetectedVulnerability],
) -> list[DetectedVulnerability]:
    """Sort by package name, installed version, severity (highest first) and ID."""
    return sorted(
        vulns,
        key=lambda v: (
            v.pkg_name,
            v.installed_version,
            -_severity_rank(v.severity),
            v.vulnerability_id,
        ),
    )