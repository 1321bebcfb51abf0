from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .errors import BuildEnvironmentError

FDW_BUILD_GATE = "fdw-build"
FDW_PACKAGE_GATE = "fdw-package"


@dataclass(frozen=True)
class PlatformFacts:
    """Host platform and product facts resolved once per invocation."""

    major_version: int
    build_architecture: str
    product_version: str

    def __post_init__(self) -> None:
        if isinstance(self.major_version, bool) or not isinstance(self.major_version, int) or self.major_version <= 0:
            raise BuildEnvironmentError(f"Platform major version must be a positive integer, got {self.major_version!r}")
        if not self.build_architecture:
            raise BuildEnvironmentError("Build architecture must not be empty")
        if "_" in self.build_architecture:
            raise BuildEnvironmentError(
                f"Build architecture {self.build_architecture!r} is not normalized (use hyphens, not underscores)"
            )
        if not self.product_version:
            raise BuildEnvironmentError("Product version must not be empty")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "major_version": self.major_version,
            "build_architecture": self.build_architecture,
            "product_version": self.product_version,
        }


@dataclass(frozen=True)
class FeatureGate:
    name: str
    minimum_major_version: int
    skip_reason: Optional[str] = None

    @property
    def active(self) -> bool:
        return self.skip_reason is None


@dataclass(frozen=True)
class FeatureGates:
    """Gate decisions evaluated once from ``PlatformFacts``."""

    gates: Tuple[FeatureGate, ...]

    def get(self, name: str) -> FeatureGate:
        for gate in self.gates:
            if gate.name == name:
                return gate
        raise KeyError(f"Unknown feature gate: {name}")

    def is_active(self, name: Optional[str]) -> bool:
        return name is None or self.get(name).active

    def skip_reason(self, name: Optional[str]) -> Optional[str]:
        if name is None:
            return None
        return self.get(name).skip_reason

    def to_dict(self) -> Dict[str, Any]:
        return {gate.name: {"active": gate.active, "skip_reason": gate.skip_reason} for gate in self.gates}


class ModuleKind(Enum):
    EXTENSION = "extension"
    CLI = "cli"
    SERVER = "server"


@dataclass(frozen=True)
class Module:
    """Declaration of one buildable unit and its contract with the build collaborator.

    ``output_dir`` is relative to the source root and is trusted to be
    populated after a successful ``build``. ``gate`` decides whether the
    module is built, installed and tested; ``package_gate`` (falling back to
    ``gate``) decides whether it is staged and packaged.
    """

    name: str
    directory: str
    kind: ModuleKind
    output_dir: str
    targets: Mapping[str, Tuple[str, ...]]
    gate: Optional[str] = None
    package_gate: Optional[str] = None
    deb_source: str = ""

    @property
    def is_extension(self) -> bool:
        return self.kind is ModuleKind.EXTENSION

    @property
    def staging_gate(self) -> Optional[str]:
        return self.package_gate if self.package_gate is not None else self.gate

    def supports(self, operation: str) -> bool:
        return operation in self.targets


class OperationStatus(Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class ModuleResult:
    module: str
    operation: str
    status: OperationStatus
    reason: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"module": self.module, "status": self.status.value}
        if self.reason:
            data["reason"] = self.reason
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class AggregateResult:
    """Per-module outcomes of one executor operation."""

    operation: str
    results: List[ModuleResult] = field(default_factory=list)

    def add(self, result: ModuleResult) -> ModuleResult:
        self.results.append(result)
        return result

    def _with_status(self, status: OperationStatus) -> List[ModuleResult]:
        return [result for result in self.results if result.status is status]

    @property
    def succeeded(self) -> List[ModuleResult]:
        return self._with_status(OperationStatus.SUCCEEDED)

    @property
    def failed(self) -> List[ModuleResult]:
        return self._with_status(OperationStatus.FAILED)

    @property
    def skipped(self) -> List[ModuleResult]:
        return self._with_status(OperationStatus.SKIPPED)

    @property
    def ok(self) -> bool:
        return not self.failed

    def result_for(self, module: str) -> Optional[ModuleResult]:
        for result in self.results:
            if result.module == module:
                return result
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation": self.operation,
            "ok": self.ok,
            "modules": [result.to_dict() for result in self.results],
        }


BuildReport = AggregateResult
InstallReport = AggregateResult
TestReport = AggregateResult
CleanReport = AggregateResult


@dataclass(frozen=True)
class StagedTree:
    root: Path
    release_name: str
    commit: str
    modules: Tuple[str, ...] = ()

    def exists(self) -> bool:
        return self.root.is_dir()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "root": str(self.root),
            "release_name": self.release_name,
            "commit": self.commit,
            "modules": list(self.modules),
        }


class ArtifactFormat(Enum):
    TAR = "tar"
    RPM = "rpm"
    DEB = "deb"
    GPPKG = "gppkg"


@dataclass(frozen=True)
class PackageArtifact:
    format: ArtifactFormat
    path: Path
    name: str

    def to_dict(self) -> Dict[str, Any]:
        return {"format": self.format.value, "path": str(self.path), "name": self.name}


@dataclass
class TargetResult:
    """Summary emitted by a CLI target."""

    target: str
    status: str
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status != "failed"

    def to_dict(self) -> Dict[str, Any]:
        return {"target": self.target, "status": self.status, "details": self.details}
