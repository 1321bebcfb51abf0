from __future__ import annotations

import json
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from .errors import ConfigError

CONFIG_FILE_NAME = "pxf-build.yaml"
CONFIG_ENV_VAR = "PXF_BUILD_CONFIG"

# environment variable -> ReleaseConfig field
_ENV_OVERRIDES = {
    "LICENSE": "license",
    "VENDOR": "vendor",
    "TEST_OS": "test_os",
    "GPHOME": "gphome",
    "PG_CONFIG": "pg_config",
}


@dataclass(frozen=True)
class ReleaseConfig:
    """Release settings sourced from the environment and an optional config file."""

    license: str = "ASL 2.0"
    vendor: str = "Open Source"
    product_prefix: str = "pxf-gpdb"
    pg_config: str = "pg_config"
    package_dir: str = "package"
    payload_dir: str = "pxf"
    deb_os_tag: str = "ubuntu18.04"
    deb_arch: str = "amd64"
    test_os: Optional[str] = None
    gphome: Optional[str] = None
    command_timeout: Optional[float] = None
    jobs: int = 4

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ReleaseConfig":
        known = {item.name for item in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {', '.join(unknown)}")
        values = dict(data)
        if "jobs" in values:
            try:
                values["jobs"] = int(values["jobs"])
            except (TypeError, ValueError) as exc:
                raise ConfigError(f"'jobs' must be an integer, got {values['jobs']!r}") from exc
            if values["jobs"] < 1:
                raise ConfigError("'jobs' must be at least 1")
        if values.get("command_timeout") is not None:
            try:
                values["command_timeout"] = float(values["command_timeout"])
            except (TypeError, ValueError) as exc:
                raise ConfigError(f"'command_timeout' must be a number, got {values['command_timeout']!r}") from exc
        return cls(**values)

    def with_environment(self, environ: Mapping[str, str]) -> "ReleaseConfig":
        overrides = {
            attr: environ[var]
            for var, attr in _ENV_OVERRIDES.items()
            if environ.get(var)
        }
        return replace(self, **overrides) if overrides else self

    def package_base(self, major_version: int) -> str:
        """Base package name used by the rpm spec, the deb prefix and artifact names."""
        return f"{self.product_prefix}{major_version}"


def _parse_config_text(path: Path) -> Dict[str, Any]:
    raw_text = path.read_text()
    try:
        raw_data = json.loads(raw_text)
    except json.JSONDecodeError:
        try:
            raw_data = yaml.safe_load(raw_text)
        except yaml.YAMLError as exc:
            raise ConfigError(f"Cannot parse configuration file {path}: {exc}") from exc

    if raw_data is None:
        return {}
    if not isinstance(raw_data, dict):
        raise ConfigError(f"Configuration file {path} must contain a mapping")
    return raw_data


def load_config(
    source_root: str | Path,
    *,
    config_path: str | Path | None = None,
    environ: Optional[Mapping[str, str]] = None,
) -> ReleaseConfig:
    """Merge defaults, the optional YAML/JSON file and environment overrides."""

    environ = os.environ if environ is None else environ
    if config_path is None and environ.get(CONFIG_ENV_VAR):
        config_path = environ[CONFIG_ENV_VAR]

    if config_path is not None:
        path = Path(config_path)
        if not path.is_file():
            raise ConfigError(f"Configuration file not found: {path}")
    else:
        path = Path(source_root) / CONFIG_FILE_NAME

    config = ReleaseConfig.from_dict(_parse_config_text(path)) if path.is_file() else ReleaseConfig()
    return config.with_environment(environ)
