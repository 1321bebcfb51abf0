from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional


@dataclass
class BuildLayout:
    """Every directory the orchestrator reads from or writes to.

    All components receive the same instance, so a test can point the whole
    pipeline at an isolated temporary root.
    """

    source_root: Path
    build_root: Optional[Path] = None
    package_dir_name: str = "package"

    def __post_init__(self) -> None:
        self.source_root = Path(self.source_root)
        self.build_root = Path(self.build_root) if self.build_root is not None else self.source_root / "build"

    @property
    def root(self) -> Path:
        assert self.build_root is not None
        return self.build_root

    @property
    def package_dir(self) -> Path:
        return self.source_root / self.package_dir_name

    @property
    def version_file(self) -> Path:
        return self.source_root / "version"

    @property
    def stage_root(self) -> Path:
        return self.root / "stage"

    def stage_dir(self, release_name: str) -> Path:
        return self.stage_root / release_name

    @property
    def dist_dir(self) -> Path:
        return self.root / "dist"

    @property
    def rpmbuild_dir(self) -> Path:
        return self.root / "rpmbuild"

    @property
    def stagerpm_dir(self) -> Path:
        return self.root / "stagerpm"

    @property
    def distrpm_dir(self) -> Path:
        return self.root / "distrpm"

    @property
    def debbuild_dir(self) -> Path:
        return self.root / "debbuild"

    @property
    def stagedeb_dir(self) -> Path:
        return self.root / "stagedeb"

    @property
    def distdeb_dir(self) -> Path:
        return self.root / "distdeb"

    @property
    def gppkg_dir(self) -> Path:
        return self.root / "gppkg"

    def module_output(self, relative: str) -> Path:
        return self.source_root / relative

    def template(self, name: str) -> Path:
        return self.package_dir / name
