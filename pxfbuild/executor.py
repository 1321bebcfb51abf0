from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, List, Optional, Sequence

from .errors import ModuleOperationError
from .graph import BUILD, CLEAN, INSTALL, INSTALL_SERVER, TEST, ModuleCollaborator, ModuleGraph
from .layout import BuildLayout
from .models import AggregateResult, FeatureGates, Module, ModuleResult, OperationStatus
from .utils import remove_tree

logger = logging.getLogger(__name__)

_VERBS = {
    BUILD: "Compiling",
    CLEAN: "Cleaning",
    INSTALL: "Installing",
    TEST: "Testing",
    INSTALL_SERVER: "Installing server of",
}


class BuildExecutor:
    """Walks the module graph and invokes module operations through the collaborator.

    Build and install are sequential and stop at the first failure. Test and
    clean run every module, optionally in parallel, and aggregate the outcome.
    Nothing is retried.
    """

    def __init__(
        self,
        graph: ModuleGraph,
        collaborator: ModuleCollaborator,
        layout: BuildLayout,
        *,
        jobs: int = 4,
    ) -> None:
        self.graph = graph
        self.collaborator = collaborator
        self.layout = layout
        self.jobs = max(1, jobs)

    def _invoke(self, module: Module, operation: str) -> ModuleResult:
        logger.info("===> %s [%s] module <===", _VERBS.get(operation, operation), module.name)
        try:
            self.collaborator(module, operation)
        except ModuleOperationError as exc:
            return ModuleResult(module.name, operation, OperationStatus.FAILED, error=str(exc))
        return ModuleResult(module.name, operation, OperationStatus.SUCCEEDED)

    def _run_sequential(self, operation: str, modules: Iterable[Module], gates: Optional[FeatureGates]) -> AggregateResult:
        report = AggregateResult(operation)
        for module in modules:
            if gates is not None and not gates.is_active(module.gate):
                reason = gates.skip_reason(module.gate)
                logger.info("Skipping %s %s because %s", _gerund(operation), module.name, reason)
                report.add(ModuleResult(module.name, operation, OperationStatus.SKIPPED, reason=reason))
                continue
            result = report.add(self._invoke(module, operation))
            if result.status is OperationStatus.FAILED:
                logger.error("%s", result.error)
                break
        return report

    def _run_parallel(self, operation: str, modules: Sequence[Module]) -> List[ModuleResult]:
        if not modules:
            return []
        with ThreadPoolExecutor(max_workers=min(self.jobs, len(modules))) as pool:
            return list(pool.map(lambda module: self._invoke(module, operation), modules))

    def build_all(self, gates: FeatureGates) -> AggregateResult:
        report = self._run_sequential(BUILD, self.graph.modules(), gates)
        if report.ok:
            logger.info("===> PXF compilation is complete <===")
        return report

    def build_modules(self, names: Sequence[str], gates: FeatureGates) -> AggregateResult:
        modules = [self.graph.get(name) for name in names]
        return self._run_sequential(BUILD, modules, gates)

    def clean_all(self) -> AggregateResult:
        report = AggregateResult(CLEAN)
        for result in self._run_parallel(CLEAN, self.graph.modules()):
            if result.status is OperationStatus.FAILED:
                logger.warning("%s", result.error)
            report.add(result)
        remove_tree(self.layout.root)
        logger.info("===> PXF cleaning is complete <===")
        return report

    def install_all(self, gates: FeatureGates) -> AggregateResult:
        modules = []
        for module in self.graph.modules():
            if not gates.is_active(module.gate):
                logger.info("Skipping installing %s because %s", module.name, gates.skip_reason(module.gate))
                continue
            modules.append(module)
        report = self._run_sequential(INSTALL, modules, None)
        if report.ok:
            logger.info("===> PXF installation is complete <===")
        return report

    def install_server(self) -> AggregateResult:
        servers = [module for module in self.graph.modules() if module.supports(INSTALL_SERVER)]
        return self._run_sequential(INSTALL_SERVER, servers, None)

    def test_all(self, gates: FeatureGates) -> AggregateResult:
        report = AggregateResult(TEST)
        runnable: List[Module] = []
        for module in self.graph.modules():
            if module.is_extension and module.gate is None:
                continue
            if not gates.is_active(module.gate):
                reason = gates.skip_reason(module.gate)
                logger.info("Skipping testing %s because %s", module.name, reason)
                report.add(ModuleResult(module.name, TEST, OperationStatus.SKIPPED, reason=reason))
                continue
            runnable.append(module)

        for result in self._run_parallel(TEST, runnable):
            if result.status is OperationStatus.FAILED:
                logger.error("%s", result.error)
            report.add(result)
        order = {name: index for index, name in enumerate(self.graph.names())}
        report.results.sort(key=lambda result: order[result.module])
        return report


def _gerund(operation: str) -> str:
    return {BUILD: "building", INSTALL: "installing", INSTALL_SERVER: "installing"}.get(operation, operation)
