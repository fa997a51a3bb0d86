"""Scanning of an artifact's layers for vulnerabilities and misconfigurations."""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable, Sequence
from dataclasses import replace
from datetime import datetime
from typing import Protocol

from vulnscan.types import (
    OS,
    SECURITY_CHECK_CONFIG,
    SECURITY_CHECK_VULNERABILITY,
    SEVERITY_NAMES,
    VULN_TYPE_LIBRARY,
    VULN_TYPE_OS,
    Application,
    ArtifactDetail,
    DetectedMisconfiguration,
    DetectedVulnerability,
    Layer,
    LibraryInfo,
    Misconfiguration,
    MisconfResult,
    MisconfStatus,
    Package,
    Result,
    ResultClass,
    ScanOptions,
    Severity,
)

logger = logging.getLogger(__name__)

# Targets used for language packages found without a lock file path.
_PKG_TARGETS = {
    "python-pkg": "Python",
    "gemspec": "Ruby",
    "node-pkg": "Node.js",
}


class _ApplyLayersNotice(Exception):
    """Raised by an applier when layers were applied but something was not found."""

    default_message = ""

    def __init__(self, detail: ArtifactDetail | None = None, msg: str = "") -> None:
        self.detail = detail if detail is not None else ArtifactDetail()
        super().__init__(msg or self.default_message)


class UnknownOSError(_ApplyLayersNotice):
    """The OS of the artifact could not be detected; ``detail`` holds the rest."""

    default_message = "unknown OS"


class NoPackagesDetectedError(_ApplyLayersNotice):
    """No OS packages were detected; ``detail`` holds the rest."""

    default_message = "no packages detected"


class UnsupportedOSError(Exception):
    """Raised by an OS package detector for an OS it does not support."""

    def __init__(self, msg: str = "unsupported os") -> None:
        super().__init__(msg)


class ScanFailedError(Exception):
    """The local scan could not be completed."""


class Applier(Protocol):
    def apply_layers(self, artifact_id: str, blob_ids: list[str]) -> ArtifactDetail: ...


class OspkgDetector(Protocol):
    def detect(
        self,
        image_name: str,
        os_family: str,
        os_name: str,
        created: datetime | None,
        pkgs: list[Package],
    ) -> tuple[list[DetectedVulnerability], bool]: ...


class LibraryDetector(Protocol):
    def detect(
        self, app_type: str, libraries: list[LibraryInfo]
    ) -> list[DetectedVulnerability]: ...


class LocalScanner:
    """Applies layers and detects vulnerabilities and misconfigurations in them."""

    def __init__(
        self,
        applier: Applier,
        ospkg_detector: OspkgDetector,
        library_detector: LibraryDetector,
    ) -> None:
        self.applier = applier
        self.ospkg_detector = ospkg_detector
        self.library_detector = library_detector

    def scan(
        self,
        target: str,
        artifact_key: str,
        blob_keys: Sequence[str],
        options: ScanOptions,
    ) -> tuple[list[Result], OS | None]:
        """Scan the artifact and return its results and the detected OS."""
        try:
            detail = self.applier.apply_layers(artifact_key, list(blob_keys))
        except UnknownOSError as err:
            logger.debug(
                "OS is not detected and vulnerabilities in OS packages are not detected."
            )
            detail = err.detail
        except NoPackagesDetectedError as err:
            logger.warning(
                "No OS package is detected. Make sure you haven't deleted any files "
                "that contain information about the installed packages."
            )
            logger.warning(
                'e.g. files under "/lib/apk/db/", "/var/lib/dpkg/" and "/var/lib/rpm"'
            )
            detail = err.detail
        except Exception as err:
            raise ScanFailedError(f"failed to apply layers: {err}") from err

        results: list[Result] = []
        os_found = detail.os

        if SECURITY_CHECK_VULNERABILITY in options.security_checks:
            try:
                vuln_results, eosl = self._check_vulnerabilities(target, detail, options)
            except ScanFailedError as err:
                raise ScanFailedError(f"failed to detect vulnerabilities: {err}") from err
            if os_found is not None:
                os_found = replace(os_found, eosl=eosl)
            results.extend(vuln_results)

        if SECURITY_CHECK_CONFIG in options.security_checks:
            results.extend(self._misconfs_to_results(detail.misconfigurations, options))

        return results, os_found

    def _check_vulnerabilities(
        self, target: str, detail: ArtifactDetail, options: ScanOptions
    ) -> tuple[list[Result], bool]:
        results: list[Result] = []
        eosl = False

        if VULN_TYPE_OS in options.vuln_type:
            try:
                result, eosl = self._scan_os_pkgs(target, detail, options)
            except ScanFailedError as err:
                raise ScanFailedError(f"unable to scan OS packages: {err}") from err
            if result is not None:
                results.append(result)

        if VULN_TYPE_LIBRARY in options.vuln_type:
            try:
                results.extend(self._scan_library(detail.applications, options))
            except ScanFailedError as err:
                raise ScanFailedError(f"failed to scan application libraries: {err}") from err

        return results, eosl

    def _scan_os_pkgs(
        self, target: str, detail: ArtifactDetail, options: ScanOptions
    ) -> tuple[Result | None, bool]:
        if detail.os is None:
            logger.debug("Detected OS: unknown")
            return None, False
        logger.info("Detected OS: %s", detail.os.family)

        pkgs = list(detail.packages)
        if options.scan_removed_packages:
            pkgs = merge_pkgs(pkgs, detail.history_packages)

        try:
            result, eosl = self._detect_vulns_in_os_pkgs(
                target, detail.os.family, detail.os.name, pkgs
            )
        except ScanFailedError as err:
            raise ScanFailedError(f"failed to scan OS packages: {err}") from err
        if result is None:
            return None, eosl

        if options.list_all_packages:
            result.packages = sorted(pkgs, key=lambda p: p.name)
        return result, eosl

    def _detect_vulns_in_os_pkgs(
        self, target: str, os_family: str, os_name: str, pkgs: list[Package]
    ) -> tuple[Result | None, bool]:
        if not os_family:
            return None, False
        try:
            vulns, eosl = self.ospkg_detector.detect("", os_family, os_name, None, pkgs)
        except UnsupportedOSError:
            return None, False
        except Exception as err:
            raise ScanFailedError(
                f"failed vulnerability detection of OS packages: {err}"
            ) from err

        result = Result(
            target=f"{target} ({os_family} {os_name})",
            vulnerabilities=list(vulns),
            class_=ResultClass.OS_PKG,
            type=os_family,
        )
        return result, eosl

    def _scan_library(
        self, apps: list[Application], options: ScanOptions
    ) -> list[Result]:
        logger.info("Number of language-specific files: %d", len(apps))
        results: list[Result] = []
        printed_types: set[str] = set()
        for app in apps:
            if not app.libraries:
                continue
            if skipped(app.file_path, options.skip_files, options.skip_dirs):
                continue

            if app.type not in printed_types:
                logger.info("Detecting %s vulnerabilities...", app.type)
                printed_types.add(app.type)

            logger.debug(
                "Detecting library vulnerabilities, type: %s, path: %s",
                app.type,
                app.file_path,
            )
            try:
                vulns = self.library_detector.detect(app.type, app.libraries)
            except Exception as err:
                raise ScanFailedError(
                    f"failed vulnerability detection of libraries: {err}"
                ) from err

            target = app.file_path or _PKG_TARGETS.get(app.type, "")
            result = Result(
                target=target,
                vulnerabilities=list(vulns),
                class_=ResultClass.LANG_PKG,
                type=app.type,
            )
            if options.list_all_packages:
                result.packages = _list_all_pkgs(app)
            results.append(result)

        results.sort(key=lambda r: r.target)
        return results

    def _misconfs_to_results(
        self, misconfs: list[Misconfiguration], options: ScanOptions
    ) -> list[Result]:
        logger.info("Detected config files: %d", len(misconfs))
        results: list[Result] = []
        for misconf in misconfs:
            if skipped(misconf.file_path, options.skip_files, options.skip_dirs):
                continue
            logger.debug("Scanned config file: %s", misconf.file_path)

            groups = (
                (misconf.failures, Severity.CRITICAL, MisconfStatus.FAILURE),
                (misconf.warnings, Severity.MEDIUM, MisconfStatus.FAILURE),
                (misconf.successes, Severity.UNKNOWN, MisconfStatus.PASSED),
                (misconf.exceptions, Severity.UNKNOWN, MisconfStatus.EXCEPTION),
            )
            detected = [
                _to_detected_misconfiguration(res, default, status, misconf.layer)
                for items, default, status in groups
                for res in items
            ]
            results.append(
                Result(
                    target=misconf.file_path,
                    class_=ResultClass.CONFIG,
                    type=misconf.file_type,
                    misconfigurations=detected,
                )
            )

        results.sort(key=lambda r: r.target)
        return results


def _list_all_pkgs(app: Application) -> list[Package]:
    pkgs = [
        Package(
            name=lib.library.name,
            version=lib.library.version,
            license=lib.library.license,
            layer=lib.layer,
        )
        for lib in app.libraries
    ]
    return sorted(pkgs, key=lambda p: p.name)


def _to_detected_misconfiguration(
    res: MisconfResult,
    default_severity: Severity,
    status: MisconfStatus,
    layer: Layer,
) -> DetectedMisconfiguration:
    try:
        severity = Severity.parse(res.severity)
    except ValueError:
        logger.warning("severity must be %s, but %s", SEVERITY_NAMES, res.severity)
        severity = default_severity

    msg = res.message.strip() or "No issues found"

    references = list(res.references)
    primary_url = ""
    if res.namespace.startswith("appshield."):
        primary_url = f"https://avd.aquasec.com/appshield/{res.id.lower()}"
        references.append(primary_url)
    elif "tfsec" in res.type:
        primary_url = next(
            (ref for ref in references if ref.startswith("https://tfsec.dev/docs/")), ""
        )

    return DetectedMisconfiguration(
        id=res.id,
        type=res.type,
        title=res.title,
        description=res.description,
        message=msg,
        resolution=res.recommended_actions,
        namespace=res.namespace,
        query=res.query,
        severity=str(severity),
        primary_url=primary_url,
        references=references,
        status=status,
        layer=layer,
        traces=list(res.traces),
    )


def _clean(path: str) -> str:
    return os.path.normpath(path).lstrip(os.sep)


def skipped(
    file_path: str, skip_files: Iterable[str] | None, skip_dirs: Iterable[str] | None
) -> bool:
    """Return True if the path is one of ``skip_files`` or lies under one of ``skip_dirs``.

    Leading separators are ignored on every path.
    """
    file_path = _clean(file_path)
    if any(file_path == _clean(skip_file) for skip_file in skip_files or ()):
        return True
    for skip_dir in skip_dirs or ():
        rel = os.path.relpath(file_path, _clean(skip_dir))
        if not rel.startswith(".."):
            return True
    return False


def merge_pkgs(pkgs: list[Package], pkgs_from_commands: Iterable[Package]) -> list[Package]:
    """Append packages from commands whose names are not already in ``pkgs``."""
    names = {p.name for p in pkgs}
    return list(pkgs) + [p for p in pkgs_from_commands if p.name not in names]