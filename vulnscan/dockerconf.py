"""Registry credentials and options read from the environment."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

_TRUE = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE = {"0", "f", "F", "FALSE", "false", "False"}


def _parse_bool(key: str, value: str | None) -> bool:
    if value is None or value == "":
        return False
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f'unable to parse environment variables: {key}: invalid boolean "{value}"')


@dataclass
class DockerConfig:
    """Registry settings taken from environment variables."""

    user_name: str = ""
    password: str = ""
    registry_token: str = ""
    insecure: bool = False
    non_ssl: bool = False

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> DockerConfig:
        """Read the configuration from ``environ`` (the process environment by default)."""
        env = os.environ if environ is None else environ
        return cls(
            user_name=env.get("TRIVY_USERNAME", ""),
            password=env.get("TRIVY_PASSWORD", ""),
            registry_token=env.get("TRIVY_REGISTRY_TOKEN", ""),
            insecure=_parse_bool("TRIVY_INSECURE", env.get("TRIVY_INSECURE")),
            non_ssl=_parse_bool("TRIVY_NON_SSL", env.get("TRIVY_NON_SSL")),
        )


@dataclass
class DockerOption:
    """Options used when pulling images from a registry."""

    user_name: str = ""
    password: str = ""
    registry_token: str = ""
    timeout: Any = None
    insecure_skip_tls_verify: bool = False
    non_ssl: bool = False


def get_docker_option(timeout: Any, environ: Mapping[str, str] | None = None) -> DockerOption:
    """Build registry options from the environment and the given timeout."""
    cfg = DockerConfig.from_env(environ)
    return DockerOption(
        user_name=cfg.user_name,
        password=cfg.password,
        registry_token=cfg.registry_token,
        timeout=timeout,
        insecure_skip_tls_verify=cfg.insecure,
        non_ssl=cfg.non_ssl,
    )