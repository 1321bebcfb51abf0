from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

from pxfbuild.errors import ModuleOperationError
from pxfbuild.graph import MakeCollaborator, ModuleGraph, UnknownModuleError
from pxfbuild.models import FDW_BUILD_GATE, FDW_PACKAGE_GATE
from pxfbuild.utils import CommandError

from .conftest import FakeRunner


def test_declaration_order_puts_extensions_first() -> None:
    graph = ModuleGraph()
    assert graph.names() == ("external-table", "fdw", "cli", "server")
    assert [module.name for module in graph.extensions()] == ["external-table", "fdw"]


def test_only_fdw_is_gated() -> None:
    graph = ModuleGraph()
    fdw = graph.get("fdw")
    assert fdw.gate == FDW_BUILD_GATE
    assert fdw.staging_gate == FDW_PACKAGE_GATE
    for name in ("external-table", "cli", "server"):
        assert graph.get(name).gate is None
        assert graph.get(name).staging_gate is None


def test_unknown_module() -> None:
    with pytest.raises(UnknownModuleError):
        ModuleGraph().get("docs")
    assert "docs" not in ModuleGraph()


def test_make_commands(tmp_path: Path) -> None:
    runner = FakeRunner()
    make = MakeCollaborator(tmp_path, runner=runner, timeout=30)
    graph = ModuleGraph()
    make(graph.get("cli"), "build")
    make(graph.get("fdw"), "test")
    make(graph.get("server"), "clean")
    make(graph.get("server"), "install-server")
    assert runner.calls == [
        ["make", "-C", str(tmp_path / "cli")],
        ["make", "-C", str(tmp_path / "fdw"), "installcheck"],
        ["make", "-C", str(tmp_path / "server"), "clean-all"],
        ["make", "-C", str(tmp_path / "server"), "install-server"],
    ]


def test_install_server_only_on_server(tmp_path: Path) -> None:
    make = MakeCollaborator(tmp_path, runner=FakeRunner())
    with pytest.raises(ModuleOperationError, match="not supported"):
        make(ModuleGraph().get("cli"), "install-server")


def test_non_zero_exit_becomes_module_error(tmp_path: Path) -> None:
    def failing(command, **kwargs):
        raise CommandError(command, 2, "", "compile error")

    make = MakeCollaborator(tmp_path, runner=FakeRunner({"make": failing}))
    with pytest.raises(ModuleOperationError) as excinfo:
        make(ModuleGraph().get("server"), "build")
    assert excinfo.value.module == "server"
    assert excinfo.value.operation == "build"
    assert "compile error" in str(excinfo.value)


def test_timeout_is_a_hard_failure(tmp_path: Path) -> None:
    def slow(command, **kwargs):
        raise subprocess.TimeoutExpired(command, kwargs["timeout"])

    make = MakeCollaborator(tmp_path, runner=FakeRunner({"make": slow}), timeout=5)
    with pytest.raises(ModuleOperationError, match="timed out"):
        make(ModuleGraph().get("cli"), "test")
