from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Mapping, Optional, Sequence, Tuple

from .config import ReleaseConfig
from .errors import GateSkipped
from .executor import BuildExecutor
from .graph import MakeCollaborator, ModuleCollaborator, ModuleGraph
from .layout import BuildLayout
from .models import AggregateResult, FeatureGates, PackageArtifact, PlatformFacts, StagedTree, TargetResult
from .packaging import DebFormatter, GppkgFormatter, RpmFormatter, TarFormatter
from .staging import StagingAssembler
from .utils import CommandRunner, run_command
from .versions import VersionResolver, evaluate_gates

logger = logging.getLogger(__name__)


@dataclass
class ReleaseContext:
    """Everything one orchestrator invocation shares between components.

    Platform facts and gates are resolved lazily, once, so targets such as
    ``clean`` work on hosts without the platform installed.
    """

    layout: BuildLayout
    config: ReleaseConfig = field(default_factory=ReleaseConfig)
    graph: ModuleGraph = field(default_factory=ModuleGraph)
    runner: CommandRunner = run_command
    collaborator: Optional[ModuleCollaborator] = None
    environ: Optional[Mapping[str, str]] = None
    _facts: Optional[PlatformFacts] = field(default=None, init=False, repr=False)
    _gates: Optional[FeatureGates] = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.collaborator is None:
            self.collaborator = MakeCollaborator(
                self.layout.source_root, runner=self.runner, timeout=self.config.command_timeout
            )

    @property
    def facts(self) -> PlatformFacts:
        if self._facts is None:
            resolver = VersionResolver(self.layout, self.config, environ=self.environ, runner=self.runner)
            self._facts = resolver.resolve()
        return self._facts

    @property
    def gates(self) -> FeatureGates:
        if self._gates is None:
            self._gates = evaluate_gates(self.facts)
        return self._gates

    @property
    def executor(self) -> BuildExecutor:
        assert self.collaborator is not None
        return BuildExecutor(self.graph, self.collaborator, self.layout, jobs=self.config.jobs)

    @property
    def assembler(self) -> StagingAssembler:
        return StagingAssembler(self.layout, self.graph, self.config, runner=self.runner)

    @property
    def tar(self) -> TarFormatter:
        return TarFormatter(self.layout, self.config, runner=self.runner)

    @property
    def rpm(self) -> RpmFormatter:
        return RpmFormatter(self.layout, self.config, runner=self.runner)

    @property
    def deb(self) -> DebFormatter:
        return DebFormatter(self.layout, self.config, self.graph, runner=self.runner)

    @property
    def gppkg(self) -> GppkgFormatter:
        return GppkgFormatter(self.layout, self.config, runner=self.runner)


TargetHandler = Callable[["ReleasePipeline", str], TargetResult]


def _report_result(target: str, report: AggregateResult) -> TargetResult:
    return TargetResult(target, "completed" if report.ok else "failed", report.to_dict())


def _artifact_result(target: str, artifact: PackageArtifact, **extra: object) -> TargetResult:
    details: Dict[str, object] = {"artifact": artifact.to_dict()}
    details.update(extra)
    return TargetResult(target, "completed", details)


def _target_all(pipeline: "ReleasePipeline", target: str) -> TargetResult:
    return _report_result(target, pipeline.context.executor.build_all(pipeline.context.gates))


def _target_extensions(pipeline: "ReleasePipeline", target: str) -> TargetResult:
    names = [module.name for module in pipeline.context.graph.extensions()]
    return _report_result(target, pipeline.context.executor.build_modules(names, pipeline.context.gates))


def _target_module(pipeline: "ReleasePipeline", target: str) -> TargetResult:
    return _report_result(target, pipeline.context.executor.build_modules([target], pipeline.context.gates))


def _target_clean(pipeline: "ReleasePipeline", target: str) -> TargetResult:
    report = pipeline.context.executor.clean_all()
    details = report.to_dict()
    details["warnings"] = [result.error for result in report.failed]
    # clean is best effort: failures are warnings
    return TargetResult(target, "completed", details)


def _target_test(pipeline: "ReleasePipeline", target: str) -> TargetResult:
    return _report_result(target, pipeline.context.executor.test_all(pipeline.context.gates))


def _target_install(pipeline: "ReleasePipeline", target: str) -> TargetResult:
    return _report_result(target, pipeline.context.executor.install_all(pipeline.context.gates))


def _target_install_server(pipeline: "ReleasePipeline", target: str) -> TargetResult:
    return _report_result(target, pipeline.context.executor.install_server())


def _target_stage(pipeline: "ReleasePipeline", target: str) -> TargetResult:
    tree = pipeline.stage()
    return TargetResult(target, "completed", {"facts": pipeline.context.facts.to_dict(), "tree": tree.to_dict()})


def _target_tar(pipeline: "ReleasePipeline", target: str) -> TargetResult:
    tree = pipeline.stage()
    return _artifact_result(target, pipeline.context.tar.pack(tree))


def _target_rpm(pipeline: "ReleasePipeline", target: str) -> TargetResult:
    return _artifact_result(target, pipeline.build_rpm())


def _target_rpm_tar(pipeline: "ReleasePipeline", target: str) -> TargetResult:
    rpm = pipeline.build_rpm()
    return _artifact_result(target, pipeline.context.rpm.bundle(rpm), package=rpm.to_dict())


def _target_deb(pipeline: "ReleasePipeline", target: str) -> TargetResult:
    return _artifact_result(target, pipeline.build_deb())


def _target_deb_tar(pipeline: "ReleasePipeline", target: str) -> TargetResult:
    deb = pipeline.build_deb()
    return _artifact_result(target, pipeline.context.deb.bundle(deb), package=deb.to_dict())


def _target_gppkg_rpm(pipeline: "ReleasePipeline", target: str) -> TargetResult:
    rpm = pipeline.build_rpm()
    return _artifact_result(target, pipeline.context.gppkg.pack(rpm), package=rpm.to_dict())


# target -> (handler, help text); each module name is a target too
TARGETS: Dict[str, Tuple[TargetHandler, str]] = {
    "all": (_target_all, "build extensions, cli, and server modules"),
    "extensions": (_target_extensions, "build the external table and foreign data wrapper extensions"),
    "clean": (_target_clean, "clean up external-table, fdw, cli and server binaries and remove the build directory"),
    "test": (_target_test, "run tests for the foreign data wrapper, cli and server"),
    "install": (_target_install, "install the extensions, cli and server binaries"),
    "install-server": (_target_install_server, "install server binaries only without running tests"),
    "stage": (_target_stage, "build all modules and merge their outputs into build/stage/<release name>"),
    "tar": (_target_tar, "bundle the staged extensions, cli, and server into a single tarball"),
    "rpm": (_target_rpm, "create the RPM package"),
    "rpm-tar": (_target_rpm_tar, "bundle the RPM package along with its installer into a single tarball"),
    "deb": (_target_deb, "create the DEB package"),
    "deb-tar": (_target_deb_tar, "bundle the DEB package along with its installer into a single tarball"),
    "gppkg-rpm": (_target_gppkg_rpm, "wrap the RPM package into a gppkg"),
}

MODULE_DESCRIPTIONS = {
    "external-table": "build the external table extension",
    "fdw": "build the foreign data wrapper extension",
    "cli": "build the command line tool",
    "server": "build the server module",
}


def describe_targets(module_names: Sequence[str]) -> Dict[str, str]:
    descriptions = {name: text for name, (_, text) in TARGETS.items()}
    for name in module_names:
        descriptions.setdefault(name, MODULE_DESCRIPTIONS.get(name, f"build the {name} module"))
    return descriptions


class ReleasePipeline:
    """Runs CLI targets against one ``ReleaseContext``."""

    def __init__(self, context: ReleaseContext) -> None:
        self.context = context

    def _handler(self, target: str) -> TargetHandler:
        if target in TARGETS:
            return TARGETS[target][0]
        if target in self.context.graph:
            return _target_module
        raise KeyError(f"Unknown target: {target}")

    def run(self, target: str) -> TargetResult:
        handler = self._handler(target)
        try:
            result = handler(self, target)
        except GateSkipped as exc:
            logger.info("%s", exc.reason)
            return TargetResult(target, "skipped", {"gate": exc.gate, "reason": exc.reason})
        if result.ok:
            logger.info("===> %s is complete <===", target)
        return result

    def stage(self) -> StagedTree:
        context = self.context
        report = context.executor.build_all(context.gates)
        return context.assembler.stage(context.facts, context.gates, report)

    def build_rpm(self) -> PackageArtifact:
        context = self.context
        # fail on the gate before spending time on module builds
        context.rpm.check_gate(context.gates)
        tree = self.stage()
        return context.rpm.pack(context.facts, context.gates, tree)

    def build_deb(self) -> PackageArtifact:
        context = self.context
        tree = self.stage()
        return context.deb.pack(context.facts, context.gates, tree)
