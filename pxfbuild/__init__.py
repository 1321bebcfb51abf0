"""Build, stage and package orchestration for PXF releases."""

from .graph import ModuleGraph
from .pipeline import ReleaseContext, ReleasePipeline
from .staging import StagingAssembler
from .versions import ReleaseNamer, VersionResolver

__all__ = [
    "ModuleGraph",
    "ReleaseContext",
    "ReleaseNamer",
    "ReleasePipeline",
    "StagingAssembler",
    "VersionResolver",
]
