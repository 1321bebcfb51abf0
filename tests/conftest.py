from __future__ import annotations

import subprocess
import threading
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import pytest

from pxfbuild.config import ReleaseConfig
from pxfbuild.errors import ModuleOperationError
from pxfbuild.layout import BuildLayout
from pxfbuild.models import Module
from pxfbuild.pipeline import ReleaseContext

COMMIT = "0123456789abcdef0123456789abcdef01234567"

# module -> files its build writes under its output directory
MODULE_OUTPUTS: Dict[str, Dict[str, str]] = {
    "external-table": {"gpextable/pxf.so": "external-table library\n"},
    "fdw": {"fdw/pxf_fdw.so": "fdw library\n"},
    "cli": {"pxf/bin/pxf-cli": "cli binary\n", "pxf/conf/shared.conf": "written by cli\n"},
    "server": {"pxf/lib/pxf.jar": "server jar\n", "pxf/conf/shared.conf": "written by server\n"},
}


class FakeRunner:
    """Records commands and answers them from per-program handlers."""

    def __init__(self, handlers: Optional[Dict[str, Callable[..., object]]] = None) -> None:
        self.calls: List[List[str]] = []
        self.handlers: Dict[str, Callable[..., object]] = {"git": lambda command, **kwargs: COMMIT + "\n"}
        self.handlers.update(handlers or {})

    def __call__(self, command, **kwargs) -> "subprocess.CompletedProcess[str]":
        command = list(command)
        self.calls.append(command)
        handler = self.handlers.get(Path(command[0]).name)
        output = handler(command, **kwargs) if handler else ""
        if isinstance(output, subprocess.CompletedProcess):
            return output
        return subprocess.CompletedProcess(command, 0, output or "", "")

    def programs(self) -> List[str]:
        return [Path(command[0]).name for command in self.calls]


class FakeCollaborator:
    """Module collaborator that writes declared outputs on build."""

    def __init__(self, source_root: Path, failures: Iterable[Tuple[str, str]] = ()) -> None:
        self.source_root = source_root
        self.failures = set(failures)
        self.calls: List[Tuple[str, str]] = []
        self._lock = threading.Lock()

    def __call__(self, module: Module, operation: str) -> None:
        with self._lock:
            self.calls.append((module.name, operation))
        if (module.name, operation) in self.failures:
            raise ModuleOperationError(module.name, operation, "simulated failure")
        if operation == "build":
            output = self.source_root / module.output_dir
            for relative, content in MODULE_OUTPUTS[module.name].items():
                path = output / relative
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_text(content)

    def invoked(self, operation: str) -> List[str]:
        return [name for name, op in self.calls if op == operation]


@pytest.fixture
def source_root(tmp_path: Path) -> Path:
    root = tmp_path / "src"
    package = root / "package"
    (package / "DEBIAN").mkdir(parents=True)
    (root / "version").write_text("1.2.3\n")
    for installer in ("install_binary", "install_rpm", "install_deb"):
        (package / installer).write_text(f"#!/bin/bash\n# {installer}\n")
    for major in (6, 7):
        (package / f"pxf-gpdb{major}.spec").write_text(f"Name: pxf-gpdb{major}\n")
    (package / "DEBIAN" / "control").write_text(
        "Package: pxf-gpdb7\nVersion: %VERSION%\nMaintainer: %MAINTAINER%\nArchitecture: amd64\n"
    )
    (package / "DEBIAN" / "postinst").write_text("#!/bin/sh\n")
    (package / "gppkg_spec.yml.in").write_text("Arch: #arch\nOS: #os\nVersion: #gppkgver\nGPDBVersion: #gpver\n")
    return root


@pytest.fixture
def layout(source_root: Path) -> BuildLayout:
    return BuildLayout(source_root)


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def collaborator(source_root: Path) -> FakeCollaborator:
    return FakeCollaborator(source_root)


@pytest.fixture
def make_context(layout: BuildLayout, runner: FakeRunner, collaborator: FakeCollaborator):
    def factory(major: int = 7, version: Optional[str] = None, config: Optional[ReleaseConfig] = None) -> ReleaseContext:
        if version is not None:
            layout.version_file.write_text(version + "\n")
        return ReleaseContext(
            layout=layout,
            config=config or ReleaseConfig(jobs=2),
            runner=runner,
            collaborator=collaborator,
            environ={"GP_MAJORVERSION": str(major), "BLD_ARCH": "rhel8_x86_64"},
        )

    return factory


def tree_snapshot(root: Path) -> Dict[str, bytes]:
    return {
        str(path.relative_to(root)): path.read_bytes()
        for path in sorted(root.rglob("*"))
        if path.is_file()
    }
