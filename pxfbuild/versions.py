"""Platform fact resolution, feature gates and release naming."""

from __future__ import annotations

import logging
import os
import platform
import re
import subprocess
from typing import Mapping, Optional, Tuple

from .config import ReleaseConfig
from .errors import BuildEnvironmentError
from .layout import BuildLayout
from .models import FDW_BUILD_GATE, FDW_PACKAGE_GATE, FeatureGate, FeatureGates, PlatformFacts
from .utils import CommandError, CommandRunner, run_command

logger = logging.getLogger(__name__)

# gate name -> minimum platform major version
GATE_THRESHOLDS: Tuple[Tuple[str, int], ...] = (
    (FDW_BUILD_GATE, 6),
    (FDW_PACKAGE_GATE, 7),
)

SNAPSHOT_RELEASE = "SNAPSHOT"
DEFAULT_RELEASE = "1"

_VERSION_TOKEN = re.compile(r"(\d+)\.\d+")


def normalize_architecture(value: str) -> str:
    return value.strip().replace("_", "-")


def skip_reason(major_version: int, threshold: int) -> str:
    return f"platform version {major_version} is less than {threshold}."


def evaluate_gate(name: str, threshold: int, facts: PlatformFacts) -> FeatureGate:
    reason = None if facts.major_version >= threshold else skip_reason(facts.major_version, threshold)
    return FeatureGate(name=name, minimum_major_version=threshold, skip_reason=reason)


def evaluate_gates(facts: PlatformFacts) -> FeatureGates:
    return FeatureGates(tuple(evaluate_gate(name, threshold, facts) for name, threshold in GATE_THRESHOLDS))


def split_version(product_version: str) -> Tuple[str, str]:
    """Return ``(main_version, release_tag)`` for rpm and deb metadata.

    >>> split_version("1.2.3-SNAPSHOT")
    ('1.2.3', 'SNAPSHOT')
    >>> split_version("1.2.3")
    ('1.2.3', '1')
    """
    main_version, sep, _suffix = product_version.partition("-")
    return main_version, SNAPSHOT_RELEASE if sep else DEFAULT_RELEASE


class ReleaseNamer:
    """Sole authority for the release directory and tarball name."""

    def __init__(self, product_prefix: str = "pxf-gpdb") -> None:
        self.product_prefix = product_prefix

    def compute(self, facts: PlatformFacts) -> str:
        return "-".join(
            (
                self.product_prefix,
                str(facts.major_version),
                facts.product_version,
                normalize_architecture(facts.build_architecture),
            )
        )


class VersionResolver:
    """Derives ``PlatformFacts`` from the host and the repository ``version`` file."""

    def __init__(
        self,
        layout: BuildLayout,
        config: ReleaseConfig,
        *,
        environ: Optional[Mapping[str, str]] = None,
        runner: CommandRunner = run_command,
    ) -> None:
        self.layout = layout
        self.config = config
        self.environ = os.environ if environ is None else environ
        self.runner = runner

    def resolve(self) -> PlatformFacts:
        facts = PlatformFacts(
            major_version=self.major_version(),
            build_architecture=self.build_architecture(),
            product_version=self.product_version(),
        )
        logger.debug("Resolved platform facts %s", facts)
        return facts

    def major_version(self) -> int:
        override = self.environ.get("GP_MAJORVERSION")
        if override:
            try:
                major = int(override.strip())
            except ValueError as exc:
                raise BuildEnvironmentError(f"GP_MAJORVERSION is not an integer: {override!r}") from exc
            if major <= 0:
                raise BuildEnvironmentError(f"GP_MAJORVERSION must be positive, got {major}")
            return major
        return parse_major_version(self._platform_version_output())

    def _platform_version_output(self) -> str:
        command = [self.config.pg_config, "--gp_version"]
        try:
            result = self.runner(command, timeout=self.config.command_timeout)
        except FileNotFoundError as exc:
            raise BuildEnvironmentError(f"Platform version tool not found: {self.config.pg_config}") from exc
        except OSError as exc:
            raise BuildEnvironmentError(f"Cannot run platform version tool {self.config.pg_config}: {exc}") from exc
        except UnicodeDecodeError as exc:
            raise BuildEnvironmentError(f"Platform version tool printed undecodable output: {exc}") from exc
        except CommandError as exc:
            raise BuildEnvironmentError(f"Platform version tool failed: {exc.stderr.strip() or exc}") from exc
        except subprocess.TimeoutExpired as exc:
            raise BuildEnvironmentError(f"Platform version tool timed out: {' '.join(command)}") from exc
        return result.stdout

    def build_architecture(self) -> str:
        explicit = self.environ.get("BLD_ARCH")
        if explicit:
            arch = normalize_architecture(explicit)
        else:
            portname = platform.system().lower()
            host_cpu = platform.machine()
            if not portname or not host_cpu:
                raise BuildEnvironmentError("Cannot determine host operating system or CPU")
            arch = normalize_architecture(f"{portname}-{host_cpu}")
        if not arch:
            raise BuildEnvironmentError("Build architecture resolved to an empty string")
        return arch

    def product_version(self) -> str:
        path = self.layout.version_file
        try:
            version = path.read_text(encoding="utf-8").strip()
        except (OSError, UnicodeDecodeError) as exc:
            raise BuildEnvironmentError(f"Cannot read product version file {path}: {exc}") from exc
        if not version:
            raise BuildEnvironmentError(f"Product version file {path} is empty")
        return version


def parse_major_version(output: str) -> int:
    match = _VERSION_TOKEN.search(output or "")
    if not match:
        raise BuildEnvironmentError(f"Cannot parse platform version from {output.strip()!r}")
    major = int(match.group(1))
    if major <= 0:
        raise BuildEnvironmentError(f"Platform major version must be positive, got {major}")
    return major
