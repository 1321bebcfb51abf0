from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import Path
from typing import List

from .config import ReleaseConfig
from .errors import StagingError
from .graph import ModuleGraph
from .layout import BuildLayout
from .models import AggregateResult, FeatureGates, PlatformFacts, StagedTree
from .utils import CommandError, CommandRunner, copy_tree_contents, ensure_directory, remove_tree, run_command
from .versions import ReleaseNamer

logger = logging.getLogger(__name__)

INSTALLER_NAME = "install_component"
BINARY_INSTALLER = "install_binary"
COMMIT_FILE_NAME = "commit.sha"


def read_commit(layout: BuildLayout, runner: CommandRunner = run_command) -> str:
    try:
        result = runner(["git", "rev-parse", "--verify", "HEAD"], cwd=layout.source_root)
    except (CommandError, OSError, subprocess.SubprocessError) as exc:
        raise StagingError(f"Cannot read the source commit identifier: {exc}") from exc
    commit = result.stdout.strip()
    if not commit:
        raise StagingError("git rev-parse returned an empty commit identifier")
    return commit


class StagingAssembler:
    """Merges module output trees into ``stage/<release name>``."""

    def __init__(
        self,
        layout: BuildLayout,
        graph: ModuleGraph,
        config: ReleaseConfig,
        *,
        runner: CommandRunner = run_command,
    ) -> None:
        self.layout = layout
        self.graph = graph
        self.config = config
        self.runner = runner
        self.namer = ReleaseNamer(config.product_prefix)

    def tree_for(self, facts: PlatformFacts) -> StagedTree:
        """Describe the staged tree for ``facts`` without touching the filesystem."""
        release_name = self.namer.compute(facts)
        root = self.layout.stage_dir(release_name)
        commit_file = root / self.config.payload_dir / COMMIT_FILE_NAME
        commit = commit_file.read_text().strip() if commit_file.is_file() else ""
        return StagedTree(root=root, release_name=release_name, commit=commit)

    def stage(self, facts: PlatformFacts, gates: FeatureGates, build_report: AggregateResult) -> StagedTree:
        if build_report.failed:
            failed = ", ".join(result.module for result in build_report.failed)
            raise StagingError(f"Cannot stage after failed module builds: {failed}")

        release_name = self.namer.compute(facts)
        root = self.layout.stage_dir(release_name)
        remove_tree(root)
        ensure_directory(root)
        try:
            staged = self._populate(root, gates)
        except StagingError:
            remove_tree(root)
            raise

        logger.info("===> PXF staging is complete <===")
        commit = (root / self.config.payload_dir / COMMIT_FILE_NAME).read_text().strip()
        return StagedTree(root=root, release_name=release_name, commit=commit, modules=tuple(staged))

    def _populate(self, root: Path, gates: FeatureGates) -> List[str]:
        staged: List[str] = []
        for module in self.graph.modules():
            if not gates.is_active(module.staging_gate):
                logger.info("Skipping staging %s because %s", module.name, gates.skip_reason(module.staging_gate))
                continue
            output = self.layout.module_output(module.output_dir)
            if not output.is_dir():
                raise StagingError(f"Output directory of module [{module.name}] is missing: {output}")
            try:
                copy_tree_contents(output, root)
            except OSError as exc:
                raise StagingError(f"Cannot copy output of module [{module.name}]: {exc}") from exc
            staged.append(module.name)

        commit = read_commit(self.layout, self.runner)
        try:
            commit_file = ensure_directory(root / self.config.payload_dir) / COMMIT_FILE_NAME
            commit_file.write_text(commit + "\n")
        except OSError as exc:
            raise StagingError(f"Cannot write {COMMIT_FILE_NAME}: {exc}") from exc

        installer = self.layout.template(BINARY_INSTALLER)
        if not installer.is_file():
            raise StagingError(f"Installer stub is missing: {installer}")
        target = root / INSTALLER_NAME
        if target.is_dir():
            raise StagingError(f"A module output occupies the installer path {target}")
        try:
            shutil.copy2(installer, target)
        except OSError as exc:
            raise StagingError(f"Cannot copy installer stub {installer}: {exc}") from exc
        return staged
