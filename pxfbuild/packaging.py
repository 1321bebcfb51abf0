"""Format-specific packaging backends.

Every formatter reads the staged tree (or the module outputs, for deb) and
writes only into its own directories under the build root.
"""

from __future__ import annotations

import logging
import platform
import shlex
import shutil
import subprocess
from pathlib import Path
from typing import List, Sequence

from .config import ReleaseConfig
from .errors import PackageGateSkipped, PackagingError
from .graph import ModuleGraph
from .layout import BuildLayout
from .models import FDW_PACKAGE_GATE, ArtifactFormat, FeatureGates, PackageArtifact, PlatformFacts, StagedTree
from .staging import COMMIT_FILE_NAME, INSTALLER_NAME
from .utils import (
    CommandError,
    CommandRunner,
    copy_tree_contents,
    ensure_directory,
    make_tarball,
    recreate_directory,
    remove_tree,
    run_command,
    tarball_members,
)
from .versions import split_version

logger = logging.getLogger(__name__)

RPM_INSTALLER = "install_rpm"
DEB_INSTALLER = "install_deb"
GPPKG_SPEC_TEMPLATE = "gppkg_spec.yml.in"


class _Formatter:
    format: ArtifactFormat

    def __init__(self, layout: BuildLayout, config: ReleaseConfig, *, runner: CommandRunner = run_command) -> None:
        self.layout = layout
        self.config = config
        self.runner = runner

    def _run(self, command: Sequence[str], **kwargs) -> "subprocess.CompletedProcess[str]":
        try:
            return self.runner(list(command), timeout=self.config.command_timeout, **kwargs)
        except CommandError as exc:
            raise PackagingError(
                f"{self.format.value}: {command[0]} exited with {exc.returncode}: {exc.stderr.strip()}"
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise PackagingError(f"{self.format.value}: {command[0]} timed out") from exc
        except OSError as exc:
            raise PackagingError(f"{self.format.value}: cannot run {command[0]}: {exc}") from exc

    def _require_tree(self, tree: StagedTree) -> None:
        if not tree.exists():
            raise PackagingError(f"Staged tree {tree.root} does not exist; run the stage target first")

    def _copy_tree(self, source: Path, destination: Path) -> None:
        try:
            copy_tree_contents(source, destination)
        except OSError as exc:
            raise PackagingError(f"{self.format.value}: cannot copy {source}: {exc}") from exc

    def _template(self, name: str) -> Path:
        path = self.layout.template(name)
        if not path.exists():
            raise PackagingError(f"Packaging template is missing: {path}")
        return path

    def _bundle(self, artifact: PackageArtifact, name: str, stage_dir: Path, dist_dir: Path, installer: str) -> PackageArtifact:
        installer_path = self._template(installer)
        recreate_directory(stage_dir)
        recreate_directory(dist_dir)
        target = ensure_directory(stage_dir / name)
        try:
            shutil.copy2(artifact.path, target / artifact.path.name)
            shutil.copy2(installer_path, target / INSTALLER_NAME)
            path = make_tarball(target, dist_dir / f"{name}.tar.gz")
        except OSError as exc:
            raise PackagingError(f"{self.format.value}: cannot bundle {artifact.path}: {exc}") from exc
        logger.info("===> PXF TAR file with %s package creation is complete <===", self.format.value.upper())
        return PackageArtifact(ArtifactFormat.TAR, path, name)


class TarFormatter(_Formatter):
    format = ArtifactFormat.TAR

    def pack(self, tree: StagedTree) -> PackageArtifact:
        self._require_tree(tree)
        dist_dir = recreate_directory(self.layout.dist_dir)
        try:
            path = make_tarball(tree.root, dist_dir / f"{tree.release_name}.tar.gz")
        except OSError as exc:
            raise PackagingError(f"tar: cannot write archive: {exc}") from exc
        logger.info("===> PXF TAR file with binaries creation is complete <===")
        return PackageArtifact(ArtifactFormat.TAR, path, tree.release_name)

    def bundle(self, artifact: PackageArtifact) -> PackageArtifact:
        # the binary tarball carries its own installer already
        members = tarball_members(artifact.path)
        if not members:
            raise PackagingError(f"tar: archive {artifact.path} is empty")
        top = members[0].split("/", 1)[0]
        if f"{top}/{INSTALLER_NAME}" not in members:
            raise PackagingError(f"tar: archive {artifact.path} has no {INSTALLER_NAME}")
        return PackageArtifact(ArtifactFormat.TAR, artifact.path, top)


class RpmFormatter(_Formatter):
    format = ArtifactFormat.RPM

    def check_gate(self, gates: FeatureGates) -> None:
        gate = gates.get(FDW_PACKAGE_GATE)
        if not gate.active:
            raise PackageGateSkipped(gate.name, f"Skipping RPM packaging because {gate.skip_reason}")

    def pack(self, facts: PlatformFacts, gates: FeatureGates, tree: StagedTree) -> PackageArtifact:
        self.check_gate(gates)
        self._require_tree(tree)
        main_version, release = split_version(facts.product_version)
        base = self.config.package_base(facts.major_version)

        topdir = recreate_directory(self.layout.rpmbuild_dir)
        for name in ("BUILD", "RPMS", "SOURCES", "SPECS"):
            ensure_directory(topdir / name)

        payload = tree.root / self.config.payload_dir
        if not payload.is_dir():
            raise PackagingError(f"rpm: staged tree has no {self.config.payload_dir}/ directory")
        self._copy_tree(payload, topdir / "SOURCES")
        for spec in sorted(self.layout.package_dir.glob("*.spec")):
            shutil.copy2(spec, topdir / "SPECS" / spec.name)
        spec_file = topdir / "SPECS" / f"{base}.spec"
        if not spec_file.is_file():
            raise PackagingError(f"rpm: spec template {spec_file.name} not found in {self.layout.package_dir}")

        self._run(
            [
                "rpmbuild",
                "--define", f"_topdir {topdir}",
                "--define", f"pxf_version {main_version}",
                "--define", f"pxf_release {release}",
                "--define", f"license {self.config.license}",
                "--define", f"vendor {self.config.vendor}",
                "-bb", str(spec_file),
            ]
        )
        built = sorted((topdir / "RPMS").rglob(f"{base}-*.rpm"))
        if len(built) != 1:
            raise PackagingError(f"rpm: expected one {base} package under {topdir / 'RPMS'}, found {len(built)}")
        return PackageArtifact(ArtifactFormat.RPM, built[0], built[0].name[: -len(".rpm")])

    def package_name(self, artifact: PackageArtifact) -> str:
        """Read ``name-version-release`` back out of the built rpm."""
        result = self._run(["rpm", "-qp", "--queryformat", "%{NAME}-%{VERSION}-%{RELEASE}", str(artifact.path)])
        name = result.stdout.strip()
        if not name:
            raise PackagingError(f"rpm: cannot read package metadata from {artifact.path}")
        return name

    def bundle(self, artifact: PackageArtifact) -> PackageArtifact:
        name = self.package_name(artifact)
        return self._bundle(artifact, name, self.layout.stagerpm_dir, self.layout.distrpm_dir, RPM_INSTALLER)


class DebFormatter(_Formatter):
    format = ArtifactFormat.DEB

    def __init__(
        self,
        layout: BuildLayout,
        config: ReleaseConfig,
        graph: ModuleGraph,
        *,
        runner: CommandRunner = run_command,
    ) -> None:
        super().__init__(layout, config, runner=runner)
        self.graph = graph

    def install_prefix(self, facts: PlatformFacts) -> Path:
        return self.layout.debbuild_dir / "usr" / "local" / self.config.package_base(facts.major_version)

    def pack(self, facts: PlatformFacts, gates: FeatureGates, tree: StagedTree) -> PackageArtifact:
        self._require_tree(tree)
        main_version, release = split_version(facts.product_version)
        base = self.config.package_base(facts.major_version)

        debbuild = recreate_directory(self.layout.debbuild_dir)
        prefix = ensure_directory(self.install_prefix(facts))
        for module in self.graph.modules():
            if not gates.is_active(module.staging_gate):
                logger.info("Skipping packaging %s because %s", module.name, gates.skip_reason(module.staging_gate))
                continue
            source = self.layout.module_output(module.output_dir)
            if module.deb_source:
                source = source / module.deb_source
            if not source.is_dir():
                raise PackagingError(f"deb: output of module [{module.name}] is missing: {source}")
            self._copy_tree(source, prefix)

        commit_file = tree.root / self.config.payload_dir / COMMIT_FILE_NAME
        if not commit_file.is_file():
            raise PackagingError(f"deb: staged tree has no {COMMIT_FILE_NAME}")
        shutil.copy2(commit_file, prefix / COMMIT_FILE_NAME)

        control_dir = debbuild / "DEBIAN"
        self._copy_tree(self._template("DEBIAN"), control_dir)
        control = control_dir / "control"
        if not control.is_file():
            raise PackagingError("deb: DEBIAN/control template is missing")
        control.write_text(
            control.read_text()
            .replace("%VERSION%", f"{main_version}-{release}")
            .replace("%MAINTAINER%", self.config.vendor)
        )

        self._run(["dpkg-deb", "--build", str(debbuild)])
        built = debbuild.with_name(debbuild.name + ".deb")
        if not built.is_file():
            raise PackagingError(f"deb: dpkg-deb did not produce {built}")
        name = f"{base}-{main_version}-{release}-{self.config.deb_os_tag}-{self.config.deb_arch}"
        target = self.layout.root / f"{name}.deb"
        remove_tree(target)
        built.rename(target)
        return PackageArtifact(ArtifactFormat.DEB, target, name)

    def field(self, artifact: PackageArtifact, field_name: str) -> str:
        value = self._run(["dpkg-deb", "--field", str(artifact.path), field_name]).stdout.strip()
        if not value:
            raise PackagingError(f"deb: {artifact.path} has no {field_name} field")
        return value

    def package_name(self, artifact: PackageArtifact) -> str:
        return f"{self.field(artifact, 'Package')}-{self.field(artifact, 'Version')}-{self.config.deb_os_tag}"

    def bundle(self, artifact: PackageArtifact) -> PackageArtifact:
        name = self.package_name(artifact)
        return self._bundle(artifact, name, self.layout.stagedeb_dir, self.layout.distdeb_dir, DEB_INSTALLER)


class GppkgFormatter(_Formatter):
    """Wraps a built rpm into a gppkg using the platform's own ``gppkg`` tool."""

    format = ArtifactFormat.GPPKG

    def render_spec(self, template: str) -> str:
        return (
            template.replace("#arch", platform.machine())
            .replace("#os", self.config.test_os or "")
            .replace("#gppkgver", "1.0")
            .replace("#gpver", "1")
        )

    def pack(self, rpm: PackageArtifact) -> PackageArtifact:
        if not self.config.test_os:
            raise PackagingError("gppkg: TEST_OS must be set")
        if not self.config.gphome:
            raise PackagingError("gppkg: GPHOME must be set")

        workdir = recreate_directory(self.layout.gppkg_dir)
        ensure_directory(workdir / "deps")
        spec = self.render_spec(self._template(GPPKG_SPEC_TEMPLATE).read_text())
        (workdir / "gppkg_spec.yml").write_text(spec)
        shutil.copy2(rpm.path, workdir / rpm.path.name)

        for stale in self.layout.root.glob("*.gppkg"):
            stale.unlink()
        script = (
            f"source {shlex.quote(str(Path(self.config.gphome) / 'greenplum_path.sh'))}"
            f" && gppkg --build {shlex.quote(workdir.name)}"
        )
        self._run(["bash", "-c", script], cwd=self.layout.root)
        built: List[Path] = sorted(self.layout.root.glob("*.gppkg"))
        if not built:
            raise PackagingError(f"gppkg: no .gppkg file produced in {self.layout.root}")
        return PackageArtifact(ArtifactFormat.GPPKG, built[0], built[0].stem)
