"""Conversion between domain types and RPC messages."""

from __future__ import annotations

import enum
import logging
from collections.abc import Iterable
from datetime import datetime, timezone

from vulnscan.rpcmessages import (
    MissingBlobsRequest,
    PutArtifactRequest,
    PutBlobRequest,
    RpcApplication,
    RpcArtifactInfo,
    RpcBlobInfo,
    RpcCVSS,
    RpcDetectedMisconfiguration,
    RpcLayer,
    RpcLibrary,
    RpcMisconfiguration,
    RpcMisconfResult,
    RpcOS,
    RpcPackage,
    RpcPackageInfo,
    RpcResult,
    RpcSeverity,
    RpcVulnerability,
    ScanResponse,
)
from vulnscan.types import (
    CVSS,
    OS,
    Application,
    ArtifactInfo,
    BlobInfo,
    DetectedMisconfiguration,
    DetectedVulnerability,
    Layer,
    Library,
    LibraryInfo,
    Misconfiguration,
    MisconfResult,
    Package,
    PackageInfo,
    Result,
    Severity,
)

logger = logging.getLogger(__name__)

BLOB_JSON_SCHEMA_VERSION = 2


def _enum_value(value):
    return value.value if isinstance(value, enum.Enum) else value


def _to_rpc_time(dt: datetime | None) -> datetime | None:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _from_rpc_time(ts: datetime | None) -> datetime | None:
    return _to_rpc_time(ts)


def _parse_severity(name: str) -> Severity:
    try:
        return Severity.parse(name)
    except ValueError as err:
        logger.warning("%s", err)
        return Severity.UNKNOWN


def to_rpc_pkgs(pkgs: Iterable[Package]) -> list[RpcPackage]:
    """Convert packages to RPC packages."""
    return [
        RpcPackage(
            name=p.name,
            version=p.version,
            release=p.release,
            epoch=p.epoch,
            arch=p.arch,
            src_name=p.src_name,
            src_version=p.src_version,
            src_release=p.src_release,
            src_epoch=p.src_epoch,
            license=p.license,
        )
        for p in pkgs
    ]


def from_rpc_pkgs(rpc_pkgs: Iterable[RpcPackage]) -> list[Package]:
    """Convert RPC packages to packages."""
    return [
        Package(
            name=p.name,
            version=p.version,
            release=p.release,
            epoch=p.epoch,
            arch=p.arch,
            src_name=p.src_name,
            src_version=p.src_version,
            src_release=p.src_release,
            src_epoch=p.src_epoch,
            license=p.license,
        )
        for p in rpc_pkgs
    ]


def from_rpc_libraries(rpc_libs: Iterable[RpcLibrary]) -> list[LibraryInfo]:
    """Convert RPC libraries to library infos."""
    return [
        LibraryInfo(library=Library(name=lib.name, version=lib.version, license=lib.license))
        for lib in rpc_libs
    ]


def to_rpc_libraries(libs: Iterable[Library]) -> list[RpcLibrary]:
    """Convert libraries to RPC libraries."""
    return [RpcLibrary(name=lib.name, version=lib.version, license=lib.license) for lib in libs]


def to_rpc_layer(layer: Layer) -> RpcLayer:
    """Convert a layer to an RPC layer."""
    return RpcLayer(digest=layer.digest, diff_id=layer.diff_id)


def from_rpc_layer(rpc_layer: RpcLayer | None) -> Layer:
    """Convert an RPC layer to a layer; an absent layer becomes an empty one."""
    if rpc_layer is None:
        return Layer()
    return Layer(digest=rpc_layer.digest, diff_id=rpc_layer.diff_id)


def to_rpc_vulns(vulns: Iterable[DetectedVulnerability]) -> list[RpcVulnerability]:
    """Convert detected vulnerabilities to RPC vulnerabilities."""
    rpc_vulns = []
    for v in vulns:
        severity = _parse_severity(v.severity)
        cvss = {
            vendor: RpcCVSS(
                v2_vector=c.v2_vector,
                v3_vector=c.v3_vector,
                v2_score=c.v2_score,
                v3_score=c.v3_score,
            )
            for vendor, c in v.cvss.items()
        }
        rpc_vulns.append(
            RpcVulnerability(
                vulnerability_id=v.vulnerability_id,
                pkg_name=v.pkg_name,
                installed_version=v.installed_version,
                fixed_version=v.fixed_version,
                title=v.title,
                description=v.description,
                severity=RpcSeverity(int(severity)),
                references=list(v.references),
                layer=to_rpc_layer(v.layer),
                cvss=cvss,
                severity_source=v.severity_source,
                cwe_ids=list(v.cwe_ids),
                primary_url=v.primary_url,
                last_modified_date=_to_rpc_time(v.last_modified_date),
                published_date=_to_rpc_time(v.published_date),
            )
        )
    return rpc_vulns


def to_rpc_misconfs(
    misconfs: Iterable[DetectedMisconfiguration],
) -> list[RpcDetectedMisconfiguration]:
    """Convert detected misconfigurations to RPC messages."""
    return [
        RpcDetectedMisconfiguration(
            type=m.type,
            id=m.id,
            title=m.title,
            description=m.description,
            message=m.message,
            namespace=m.namespace,
            resolution=m.resolution,
            severity=RpcSeverity(int(_parse_severity(m.severity))),
            primary_url=m.primary_url,
            references=list(m.references),
            status=_enum_value(m.status),
            layer=to_rpc_layer(m.layer),
        )
        for m in misconfs
    ]


def from_rpc_results(rpc_results: Iterable[RpcResult]) -> list[Result]:
    """Convert RPC results to results."""
    return [
        Result(
            target=r.target,
            vulnerabilities=from_rpc_vulns(r.vulnerabilities),
            misconfigurations=from_rpc_misconfs(r.misconfigurations),
            class_=r.class_,
            type=r.type,
            packages=from_rpc_pkgs(r.packages),
        )
        for r in rpc_results
    ]


def from_rpc_vulns(rpc_vulns: Iterable[RpcVulnerability]) -> list[DetectedVulnerability]:
    """Convert RPC vulnerabilities to detected vulnerabilities."""
    vulns = []
    for v in rpc_vulns:
        cvss = {
            vendor: CVSS(
                v2_vector=c.v2_vector,
                v3_vector=c.v3_vector,
                v2_score=c.v2_score,
                v3_score=c.v3_score,
            )
            for vendor, c in v.cvss.items()
        }
        vulns.append(
            DetectedVulnerability(
                vulnerability_id=v.vulnerability_id,
                pkg_name=v.pkg_name,
                installed_version=v.installed_version,
                fixed_version=v.fixed_version,
                title=v.title,
                description=v.description,
                severity=Severity(int(v.severity)).name,
                cvss=cvss,
                references=list(v.references),
                cwe_ids=list(v.cwe_ids),
                last_modified_date=_from_rpc_time(v.last_modified_date),
                published_date=_from_rpc_time(v.published_date),
                layer=from_rpc_layer(v.layer),
                severity_source=v.severity_source,
                primary_url=v.primary_url,
            )
        )
    return vulns


def from_rpc_misconfs(
    rpc_misconfs: Iterable[RpcDetectedMisconfiguration],
) -> list[DetectedMisconfiguration]:
    """Convert RPC misconfigurations to detected misconfigurations."""
    return [
        DetectedMisconfiguration(
            type=m.type,
            id=m.id,
            title=m.title,
            description=m.description,
            message=m.message,
            namespace=m.namespace,
            resolution=m.resolution,
            severity=Severity(int(m.severity)).name,
            primary_url=m.primary_url,
            references=list(m.references),
            status=m.status,
            layer=from_rpc_layer(m.layer),
        )
        for m in rpc_misconfs
    ]


def from_rpc_os(rpc_os: RpcOS | None) -> OS | None:
    """Convert an RPC OS to an OS."""
    if rpc_os is None:
        return None
    return OS(family=rpc_os.family, name=rpc_os.name, eosl=rpc_os.eosl)


def from_rpc_package_infos(rpc_pkg_infos: Iterable[RpcPackageInfo]) -> list[PackageInfo]:
    """Convert RPC package infos to package infos."""
    return [
        PackageInfo(file_path=p.file_path, packages=from_rpc_pkgs(p.packages))
        for p in rpc_pkg_infos
    ]


def from_rpc_applications(rpc_apps: Iterable[RpcApplication]) -> list[Application]:
    """Convert RPC applications to applications."""
    return [
        Application(
            type=a.type,
            file_path=a.file_path,
            libraries=from_rpc_libraries(a.libraries),
        )
        for a in rpc_apps
    ]


def from_rpc_misconf_results(rpc_results: Iterable[RpcMisconfResult]) -> list[MisconfResult]:
    """Convert RPC policy results to policy results."""
    return [
        MisconfResult(
            namespace=r.namespace,
            message=r.message,
            id=r.id,
            type=r.type,
            title=r.title,
            severity=r.severity,
        )
        for r in rpc_results
    ]


def from_rpc_misconfigurations(
    rpc_misconfs: Iterable[RpcMisconfiguration],
) -> list[Misconfiguration]:
    """Convert RPC misconfigurations to misconfigurations with an empty layer."""
    return [
        Misconfiguration(
            file_type=m.file_type,
            file_path=m.file_path,
            successes=from_rpc_misconf_results(m.successes),
            warnings=from_rpc_misconf_results(m.warnings),
            failures=from_rpc_misconf_results(m.failures),
            exceptions=from_rpc_misconf_results(m.exceptions),
            layer=Layer(),
        )
        for m in rpc_misconfs
    ]


def from_rpc_put_artifact_request(req: PutArtifactRequest) -> ArtifactInfo:
    """Extract the artifact info carried by a put-artifact request."""
    info = req.artifact_info or RpcArtifactInfo()
    return ArtifactInfo(
        schema_version=info.schema_version,
        architecture=info.architecture,
        created=_from_rpc_time(info.created),
        docker_version=info.docker_version,
        os=info.os,
        history_packages=from_rpc_pkgs(info.history_packages),
    )


def from_rpc_put_blob_request(req: PutBlobRequest) -> BlobInfo:
    """Extract the blob info carried by a put-blob request."""
    info = req.blob_info or RpcBlobInfo()
    return BlobInfo(
        schema_version=info.schema_version,
        digest=info.digest,
        diff_id=info.diff_id,
        os=from_rpc_os(info.os),
        package_infos=from_rpc_package_infos(info.package_infos),
        applications=from_rpc_applications(info.applications),
        misconfigurations=from_rpc_misconfigurations(info.misconfigurations),
        opaque_dirs=list(info.opaque_dirs),
        whiteout_files=list(info.whiteout_files),
    )


def to_rpc_os(fos: OS | None) -> RpcOS | None:
    """Convert an OS to an RPC OS; the end-of-life flag is not carried."""
    if fos is None:
        return None
    return RpcOS(family=fos.family, name=fos.name)


def to_rpc_artifact_info(image_id: str, image_info: ArtifactInfo) -> PutArtifactRequest:
    """Build a put-artifact request."""
    return PutArtifactRequest(
        artifact_id=image_id,
        artifact_info=RpcArtifactInfo(
            schema_version=image_info.schema_version,
            architecture=image_info.architecture,
            created=_to_rpc_time(image_info.created),
            docker_version=image_info.docker_version,
            os=image_info.os,
            history_packages=to_rpc_pkgs(image_info.history_packages),
        ),
    )


def to_misconf_results(results: Iterable[MisconfResult]) -> list[RpcMisconfResult]:
    """Convert policy results to RPC policy results."""
    return [
        RpcMisconfResult(
            namespace=r.namespace,
            message=r.message,
            id=r.id,
            type=r.type,
            title=r.title,
            severity=r.severity,
        )
        for r in results
    ]


def to_rpc_blob_info(diff_id: str, blob_info: BlobInfo) -> PutBlobRequest:
    """Build a put-blob request."""
    package_infos = [
        RpcPackageInfo(file_path=p.file_path, packages=to_rpc_pkgs(p.packages))
        for p in blob_info.package_infos
    ]
    applications = [
        RpcApplication(
            type=app.type,
            file_path=app.file_path,
            libraries=to_rpc_libraries(lib.library for lib in app.libraries),
        )
        for app in blob_info.applications
    ]
    misconfigurations = [
        RpcMisconfiguration(
            file_type=m.file_type,
            file_path=m.file_path,
            successes=to_misconf_results(m.successes),
            warnings=to_misconf_results(m.warnings),
            failures=to_misconf_results(m.failures),
            exceptions=to_misconf_results(m.exceptions),
        )
        for m in blob_info.misconfigurations
    ]
    return PutBlobRequest(
        diff_id=diff_id,
        blob_info=RpcBlobInfo(
            schema_version=BLOB_JSON_SCHEMA_VERSION,
            digest=blob_info.digest,
            diff_id=blob_info.diff_id,
            os=to_rpc_os(blob_info.os),
            package_infos=package_infos,
            applications=applications,
            misconfigurations=misconfigurations,
            opaque_dirs=list(blob_info.opaque_dirs),
            whiteout_files=list(blob_info.whiteout_files),
        ),
    )


def to_missing_blobs_request(image_id: str, layer_ids: Iterable[str]) -> MissingBlobsRequest:
    """Build a missing-blobs request."""
    return MissingBlobsRequest(artifact_id=image_id, blob_ids=list(layer_ids))


def to_rpc_scan_response(results: Iterable[Result], os_found: OS | None) -> ScanResponse:
    """Build a scan response; the OS is always present, empty when unknown."""
    rpc_os = RpcOS()
    if os_found is not None:
        rpc_os = RpcOS(family=os_found.family, name=os_found.name, eosl=os_found.eosl)
    rpc_results = [
        RpcResult(
            target=r.target,
            class_=_enum_value(r.class_),
            type=r.type,
            vulnerabilities=to_rpc_vulns(r.vulnerabilities),
            misconfigurations=to_rpc_misconfs(r.misconfigurations),
            packages=to_rpc_pkgs(r.packages),
        )
        for r in results
    ]
    return ScanResponse(os=rpc_os, results=rpc_results)