from __future__ import annotations

from typing import Optional


class PxfBuildError(RuntimeError):
    """Base class for every failure raised by the release orchestrator."""


class ConfigError(PxfBuildError):
    """Raised when the release configuration file cannot be parsed."""


class BuildEnvironmentError(PxfBuildError):
    """Raised when platform facts cannot be determined from the host."""


class GateSkipped(PxfBuildError):
    """An intentional omission of a module or package format.

    Not a failure: callers log the reason and carry on.
    """

    def __init__(self, gate: str, reason: str) -> None:
        self.gate = gate
        self.reason = reason
        super().__init__(reason)


class PackageGateSkipped(GateSkipped):
    """Raised by a package formatter whose gate is inactive."""


class ModuleOperationError(PxfBuildError):
    """Raised when a module's build, clean, install or test operation fails."""

    def __init__(self, module: str, operation: str, message: str, *, cause: Optional[BaseException] = None) -> None:
        self.module = module
        self.operation = operation
        self.cause = cause
        super().__init__(f"{operation} of module [{module}] failed: {message}")


class StagingError(PxfBuildError):
    """Raised when the staged release tree cannot be assembled."""


class PackagingError(PxfBuildError):
    """Raised when a format-specific packaging backend fails."""
