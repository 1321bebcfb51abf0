from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Dict, Iterator, Optional, Protocol, Sequence, Tuple

from .errors import ModuleOperationError
from .models import FDW_BUILD_GATE, FDW_PACKAGE_GATE, Module, ModuleKind
from .utils import CommandError, CommandRunner, run_command

logger = logging.getLogger(__name__)

BUILD = "build"
CLEAN = "clean"
INSTALL = "install"
TEST = "test"
INSTALL_SERVER = "install-server"


class UnknownModuleError(KeyError):
    """Raised when a module name is not part of the graph."""


def _targets(test_target: str = "test", **extra: Tuple[str, ...]) -> Dict[str, Tuple[str, ...]]:
    targets: Dict[str, Tuple[str, ...]] = {
        BUILD: (),
        CLEAN: ("clean-all",),
        INSTALL: ("install",),
        TEST: (test_target,),
    }
    for operation, make_targets in extra.items():
        targets[operation.replace("_", "-")] = make_targets
    return targets


DEFAULT_MODULES: Tuple[Module, ...] = (
    Module(
        name="external-table",
        directory="external-table",
        kind=ModuleKind.EXTENSION,
        output_dir="external-table/build/stage",
        targets=_targets(),
    ),
    Module(
        name="fdw",
        directory="fdw",
        kind=ModuleKind.EXTENSION,
        output_dir="fdw/build/stage",
        targets=_targets(test_target="installcheck"),
        gate=FDW_BUILD_GATE,
        package_gate=FDW_PACKAGE_GATE,
    ),
    Module(
        name="cli",
        directory="cli",
        kind=ModuleKind.CLI,
        output_dir="cli/build/stage",
        targets=_targets(),
        deb_source="pxf",
    ),
    Module(
        name="server",
        directory="server",
        kind=ModuleKind.SERVER,
        output_dir="server/build/stage",
        targets=_targets(install_server=("install-server",)),
        deb_source="pxf",
    ),
)


class ModuleGraph:
    """Fixed, ordered declaration of the four release modules.

    Extensions come first so that staging merges their trees before the CLI
    and server trees. Modules have no compile-time dependency on each other.
    """

    def __init__(self, modules: Sequence[Module] = DEFAULT_MODULES) -> None:
        self._modules: Tuple[Module, ...] = tuple(modules)

    def modules(self) -> Tuple[Module, ...]:
        return self._modules

    def __iter__(self) -> Iterator[Module]:
        return iter(self._modules)

    def __len__(self) -> int:
        return len(self._modules)

    def __contains__(self, name: object) -> bool:
        return any(module.name == name for module in self._modules)

    def names(self) -> Tuple[str, ...]:
        return tuple(module.name for module in self._modules)

    def get(self, name: str) -> Module:
        for module in self._modules:
            if module.name == name:
                return module
        raise UnknownModuleError(f"Unknown module: {name}")

    def extensions(self) -> Tuple[Module, ...]:
        return tuple(module for module in self._modules if module.is_extension)


class ModuleCollaborator(Protocol):
    """Runs one operation of one module; raises ``ModuleOperationError`` on failure."""

    def __call__(self, module: Module, operation: str) -> None:
        ...


class MakeCollaborator:
    """Delegates module operations to ``make -C <module dir> <targets>``."""

    def __init__(
        self,
        source_root: str | Path,
        *,
        runner: CommandRunner = run_command,
        timeout: Optional[float] = None,
        make: str = "make",
    ) -> None:
        self.source_root = Path(source_root)
        self.runner = runner
        self.timeout = timeout
        self.make = make

    def command(self, module: Module, operation: str) -> list[str]:
        if not module.supports(operation):
            raise ModuleOperationError(module.name, operation, "operation is not supported by this module")
        return [self.make, "-C", str(self.source_root / module.directory), *module.targets[operation]]

    def __call__(self, module: Module, operation: str) -> None:
        command = self.command(module, operation)
        logger.debug("Running %s", " ".join(command))
        try:
            self.runner(command, timeout=self.timeout)
        except CommandError as exc:
            raise ModuleOperationError(
                module.name, operation, f"exit code {exc.returncode}: {exc.stderr.strip()}", cause=exc
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise ModuleOperationError(module.name, operation, f"timed out after {exc.timeout}s", cause=exc) from exc
        except OSError as exc:
            raise ModuleOperationError(module.name, operation, str(exc), cause=exc) from exc
