"""Formatting of package versions from epoch, version and release."""

from __future__ import annotations

from vulnscan.types import Package


def _format(epoch: int, version: str, release: str) -> str:
    v = version
    if release:
        v = f"{v}-{release}"
    if epoch:
        v = f"{epoch}:{v}"
    return v


def format_version(pkg: Package) -> str:
    """Return the package's ``epoch:version-release``."""
    return _format(pkg.epoch, pkg.version, pkg.release)


def format_src_version(pkg: Package) -> str:
    """Return the source package's ``epoch:version-release``."""
    return _format(pkg.src_epoch, pkg.src_version, pkg.src_release)