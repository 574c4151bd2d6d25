from __future__ import annotations

import os
import subprocess
import tarfile
import zipfile
from logging import getLogger
from pathlib import Path
from typing import Dict, Iterable, List

from wgsetup.artifacts import SERVER_ARCHIVE, SERVER_INSTALL_FILE, client_archive
from wgsetup.errors import InstallError, PackagingError
from wgsetup.structures import RenderedArtifacts

LOGGER = getLogger(__name__)

INSTALL_TIMEOUT = 900


def file_write_secure(path: Path, content: str, *, executable: bool = False) -> None:
    """Writes a file readable only by its owner, executable if requested."""
    path.parent.mkdir(parents=True, exist_ok=True)
    old_umask = os.umask(0o077)
    try:
        path.write_bytes(content.encode("utf-8"))
        os.chmod(path, 0o700 if executable else 0o600)
    finally:
        os.umask(old_umask)


def write_files(directory: Path, files: Dict[str, str]) -> List[Path]:
    written = []
    for name, content in files.items():
        path = directory / name
        file_write_secure(path, content, executable=name.endswith(".sh"))
        written.append(path)
    return written


def package_client(directory: Path, index: int, files: Dict[str, str]) -> Path:
    """Writes the files of client ``index`` and zips them into wg_client<N>.zip."""
    archive = directory / client_archive(index)
    try:
        paths = write_files(directory, files)
        with zipfile.ZipFile(archive, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for path in paths:
                zf.write(path, arcname=path.name)
    except (OSError, zipfile.BadZipFile) as e:
        raise PackagingError(f"Unable to create client package {archive.name}: {e}") from e
    LOGGER.debug("wrote %s", archive)
    return archive


def package_server(directory: Path, files: Dict[str, str]) -> Path:
    archive = directory / SERVER_ARCHIVE
    try:
        paths = write_files(directory, files)
        with tarfile.open(archive, "w:gz") as tf:
            for path in paths:
                tf.add(path, arcname=path.name)
    except (OSError, tarfile.TarError) as e:
        raise PackagingError(f"Unable to create server package {archive.name}: {e}") from e
    LOGGER.debug("wrote %s", archive)
    return archive


def install_server(directory: Path, files: Dict[str, str]) -> None:
    """Runs the server installer on this machine through sudo."""
    try:
        write_files(directory, files)
        subprocess.run(
            ["sudo", f"./{SERVER_INSTALL_FILE}"],
            cwd=directory,
            check=True,
            timeout=INSTALL_TIMEOUT,
        )
    except (OSError, subprocess.SubprocessError) as e:
        raise InstallError(f"Unable to install server package: {e}") from e


def remove_files(directory: Path, names: Iterable[str]) -> None:
    for name in names:
        try:
            (directory / name).unlink()
        except FileNotFoundError:
            pass


def package_all(
    rendered: RenderedArtifacts,
    directory: Path,
    *,
    install: bool = False,
    development: bool = False,
) -> List[Path]:
    """
    Builds every client archive, then the server archive (or installs the
    server when ``install`` is set).

    Loose files are removed afterwards unless ``development`` is set. In
    development mode an installed server's install script is removed too.
    """
    directory.mkdir(parents=True, exist_ok=True)
    archives = []
    for index, files in rendered.client_files.items():
        archives.append(package_client(directory, index, files))
        if not development:
            remove_files(directory, files)

    if install:
        install_server(directory, rendered.server_files)
        if development:
            remove_files(directory, [SERVER_INSTALL_FILE])
    else:
        archives.append(package_server(directory, rendered.server_files))

    if not development:
        remove_files(directory, rendered.server_files)
    return archives
