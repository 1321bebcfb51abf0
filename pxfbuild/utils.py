from __future__ import annotations

import os
import shutil
import subprocess
import tarfile
from pathlib import Path
from typing import Callable, Mapping, Optional, Sequence


class CommandError(RuntimeError):
    """Raised when a subprocess exits with a non-zero status code."""

    def __init__(self, command: Sequence[str], returncode: int, stdout: str, stderr: str) -> None:
        self.command = list(command)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(
            f"Command {' '.join(command)} failed with exit code {returncode}\nSTDOUT:{stdout}\nSTDERR:{stderr}"
        )


def run_command(
    command: Sequence[str],
    *,
    cwd: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    check: bool = True,
    timeout: Optional[float] = None,
) -> subprocess.CompletedProcess[str]:
    """Execute a subprocess command and return the completed process.

    ``subprocess.TimeoutExpired`` and ``FileNotFoundError`` propagate to the
    caller untouched.
    """

    process_env = os.environ.copy()
    if env:
        process_env.update(env)

    result = subprocess.run(
        list(command),
        cwd=str(cwd) if cwd else None,
        env=process_env,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        check=False,
        timeout=timeout,
    )
    if check and result.returncode != 0:
        raise CommandError(command, result.returncode, result.stdout, result.stderr)
    return result


CommandRunner = Callable[..., "subprocess.CompletedProcess[str]"]


def ensure_directory(path: str | Path) -> Path:
    """Create a directory and return its Path object."""

    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def remove_tree(path: str | Path) -> None:
    """Remove a file or directory tree if it exists."""

    path = Path(path)
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.exists():
        shutil.rmtree(path)


def recreate_directory(path: str | Path) -> Path:
    remove_tree(path)
    return ensure_directory(path)


def copy_tree_contents(source: str | Path, destination: str | Path) -> None:
    """Copy everything under ``source`` into ``destination``.

    Existing files at the same relative path are overwritten.
    """

    shutil.copytree(source, destination, symlinks=True, dirs_exist_ok=True)


def make_tarball(source_dir: str | Path, output_path: str | Path) -> Path:
    """Write ``source_dir`` as a gzip tarball whose single top-level entry is its basename.

    The archive is written next to its final location and renamed into place,
    so a failed write never leaves a partial artifact behind.
    """

    source_dir = Path(source_dir)
    output_path = Path(output_path)
    ensure_directory(output_path.parent)
    partial = output_path.with_name(output_path.name + ".partial")
    try:
        with tarfile.open(partial, "w:gz") as tar:
            tar.add(source_dir, arcname=source_dir.name)
        os.replace(partial, output_path)
    finally:
        if partial.exists():
            partial.unlink()
    return output_path


def tarball_members(path: str | Path) -> list[str]:
    with tarfile.open(path, "r:gz") as tar:
        return tar.getnames()
