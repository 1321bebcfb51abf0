from __future__ import annotations

import subprocess
from pathlib import Path
from types import SimpleNamespace

import pytest

from pxfbuild.config import ReleaseConfig
from pxfbuild.errors import BuildEnvironmentError
from pxfbuild.layout import BuildLayout
from pxfbuild.models import FDW_BUILD_GATE, FDW_PACKAGE_GATE, PlatformFacts
from pxfbuild.utils import CommandError
from pxfbuild.versions import (
    ReleaseNamer,
    VersionResolver,
    evaluate_gates,
    parse_major_version,
    split_version,
)

from .conftest import FakeRunner


def _facts(major: int, version: str = "1.2.3", arch: str = "linux-x86-64") -> PlatformFacts:
    return PlatformFacts(major_version=major, build_architecture=arch, product_version=version)


@pytest.mark.parametrize(
    "major, build_active, package_active",
    [(4, False, False), (5, False, False), (6, True, False), (7, True, True), (8, True, True)],
)
def test_gate_matrix(major: int, build_active: bool, package_active: bool) -> None:
    gates = evaluate_gates(_facts(major))
    assert gates.get(FDW_BUILD_GATE).active is build_active
    assert gates.get(FDW_PACKAGE_GATE).active is package_active


def test_skip_reasons_name_version_and_threshold() -> None:
    gates = evaluate_gates(_facts(5))
    assert gates.skip_reason(FDW_BUILD_GATE) == "platform version 5 is less than 6."
    assert gates.skip_reason(FDW_PACKAGE_GATE) == "platform version 5 is less than 7."
    assert evaluate_gates(_facts(7)).skip_reason(FDW_PACKAGE_GATE) is None


def test_ungated_modules_are_always_active() -> None:
    gates = evaluate_gates(_facts(1))
    assert gates.is_active(None)
    assert gates.skip_reason(None) is None


@pytest.mark.parametrize(
    "version, expected",
    [
        ("1.2.3-SNAPSHOT", ("1.2.3", "SNAPSHOT")),
        ("1.2.3", ("1.2.3", "1")),
        ("6.10.0-rc1", ("6.10.0", "SNAPSHOT")),
    ],
)
def test_split_version(version: str, expected: tuple) -> None:
    assert split_version(version) == expected
    assert split_version(version) == split_version(version)


def test_release_name_is_pure_and_hyphenated() -> None:
    namer = ReleaseNamer("pxf-gpdb")
    facts = _facts(6, arch="rhel8-x86-64")
    assert namer.compute(facts) == "pxf-gpdb-6-1.2.3-rhel8-x86-64"
    assert namer.compute(facts) == ReleaseNamer("pxf-gpdb").compute(_facts(6, arch="rhel8-x86-64"))


def test_release_name_replaces_underscores_in_architecture() -> None:
    facts = SimpleNamespace(major_version=7, product_version="1.2.3", build_architecture="rhel8_x86_64")
    assert ReleaseNamer("pxf-gpdb").compute(facts) == "pxf-gpdb-7-1.2.3-rhel8-x86-64"


def test_platform_facts_reject_bad_values() -> None:
    with pytest.raises(BuildEnvironmentError):
        _facts(0)
    with pytest.raises(BuildEnvironmentError):
        _facts(6, arch="")
    with pytest.raises(BuildEnvironmentError):
        _facts(6, arch="linux-x86_64")


@pytest.mark.parametrize(
    "output, major",
    [
        ("Greenplum Database 6.20.0 build commit:abc", 6),
        ("Greenplum Database 7.0.0-beta.1", 7),
        ("Cloudberry Database 1.5.4", 1),
    ],
)
def test_parse_major_version(output: str, major: int) -> None:
    assert parse_major_version(output) == major


def test_parse_major_version_rejects_garbage() -> None:
    with pytest.raises(BuildEnvironmentError):
        parse_major_version("command not understood")


def _resolver(layout: BuildLayout, runner: FakeRunner, **environ: str) -> VersionResolver:
    return VersionResolver(layout, ReleaseConfig(), environ=environ, runner=runner)


def test_resolve_probes_platform_tool(layout: BuildLayout) -> None:
    runner = FakeRunner({"pg_config": lambda command, **kwargs: "Greenplum Database 6.25.3\n"})
    facts = _resolver(layout, runner, BLD_ARCH="rhel8_x86_64").resolve()
    assert facts == PlatformFacts(6, "rhel8-x86-64", "1.2.3")
    assert runner.calls == [["pg_config", "--gp_version"]]


def test_resolve_is_idempotent(layout: BuildLayout) -> None:
    runner = FakeRunner({"pg_config": lambda command, **kwargs: "Greenplum Database 7.1.0\n"})
    resolver = _resolver(layout, runner)
    assert resolver.resolve() == resolver.resolve()


def test_default_architecture_is_normalized(layout: BuildLayout) -> None:
    facts = _resolver(layout, FakeRunner(), GP_MAJORVERSION="7").resolve()
    assert "_" not in facts.build_architecture
    assert facts.build_architecture


def test_major_version_override_skips_probe(layout: BuildLayout) -> None:
    runner = FakeRunner()
    facts = _resolver(layout, runner, GP_MAJORVERSION="5", BLD_ARCH="x").resolve()
    assert facts.major_version == 5
    assert runner.calls == []


def test_invalid_override_is_an_environment_error(layout: BuildLayout) -> None:
    with pytest.raises(BuildEnvironmentError):
        _resolver(layout, FakeRunner(), GP_MAJORVERSION="six").resolve()


def test_missing_platform_tool(layout: BuildLayout) -> None:
    def missing(command, **kwargs):
        raise FileNotFoundError(command[0])

    with pytest.raises(BuildEnvironmentError, match="not found"):
        _resolver(layout, FakeRunner({"pg_config": missing})).resolve()


def test_unrunnable_platform_tool(layout: BuildLayout) -> None:
    def denied(command, **kwargs):
        raise PermissionError(13, "Permission denied", command[0])

    with pytest.raises(BuildEnvironmentError, match="Cannot run platform version tool"):
        _resolver(layout, FakeRunner({"pg_config": denied})).resolve()


def test_undecodable_platform_output(layout: BuildLayout) -> None:
    def garbled(command, **kwargs):
        raise UnicodeDecodeError("utf-8", b"\xff", 0, 1, "invalid start byte")

    with pytest.raises(BuildEnvironmentError, match="undecodable"):
        _resolver(layout, FakeRunner({"pg_config": garbled})).resolve()


def test_failing_platform_tool(layout: BuildLayout) -> None:
    def failing(command, **kwargs):
        raise CommandError(command, 2, "", "no such option")

    with pytest.raises(BuildEnvironmentError, match="no such option"):
        _resolver(layout, FakeRunner({"pg_config": failing})).resolve()


def test_unparseable_platform_output(layout: BuildLayout) -> None:
    runner = FakeRunner({"pg_config": lambda command, **kwargs: subprocess.CompletedProcess(command, 0, "???", "")})
    with pytest.raises(BuildEnvironmentError, match="Cannot parse"):
        _resolver(layout, runner).resolve()


def test_missing_or_empty_version_file(layout: BuildLayout) -> None:
    layout.version_file.write_text("  \n")
    with pytest.raises(BuildEnvironmentError, match="empty"):
        _resolver(layout, FakeRunner(), GP_MAJORVERSION="7").resolve()
    layout.version_file.unlink()
    with pytest.raises(BuildEnvironmentError):
        _resolver(layout, FakeRunner(), GP_MAJORVERSION="7").resolve()


def test_undecodable_version_file(layout: BuildLayout) -> None:
    layout.version_file.write_bytes(b"1.2.3\xff\xfe\n")
    with pytest.raises(BuildEnvironmentError, match="Cannot read product version file"):
        _resolver(layout, FakeRunner(), GP_MAJORVERSION="7").resolve()


def test_version_file_location(tmp_path: Path) -> None:
    assert BuildLayout(tmp_path).version_file == tmp_path / "version"
