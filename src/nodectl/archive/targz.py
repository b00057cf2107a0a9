"""Helpers for the gzipped tar streams returned by copy/kubeconfig calls.

All functions read the archive in streaming mode, so *stream* may be a
non-seekable reader such as the one returned by
:func:`nodectl.client.stream.read_stream`.
"""

from __future__ import annotations

import logging
import os
import posixpath
import shutil
import tarfile
from pathlib import Path
from typing import BinaryIO

from nodectl.core.errors import ArchiveError

log = logging.getLogger(__name__)


def clean_path(name: str) -> str:
    """Lexically clean a header path; raise on an empty one."""
    if not name:
        raise ArchiveError(name, "empty path in archive header")
    return posixpath.normpath(name)


def _is_traversal(path: str) -> bool:
    return posixpath.isabs(path) or path == ".." or path.startswith("../")


def _within(root: str, path: str) -> bool:
    return path == root or path.startswith(root + os.sep)


def _open(stream: BinaryIO) -> tarfile.TarFile:
    try:
        return tarfile.open(fileobj=stream, mode="r|gz")
    except (tarfile.TarError, OSError, EOFError) as exc:
        raise ArchiveError("<stream>", f"not a tar.gz archive: {exc}") from exc


def extract_file_from_tar_gz(name: str, stream: BinaryIO) -> bytes:
    """Return the contents of the entry whose cleaned path equals *name*."""
    wanted = clean_path(name)
    with _open(stream) as tar:
        for member in tar:
            path = clean_path(member.name)
            if path != wanted:
                continue
            if member.isdir():
                raise ArchiveError(path, "is a directory")
            if member.issym():
                raise ArchiveError(path, "is a symlink")
            f = tar.extractfile(member)
            if f is None:
                raise ArchiveError(path, "is not a regular file")
            return f.read()
    raise ArchiveError(name, "file not found in archive")


def concat_tar_gz(stream: BinaryIO) -> bytes:
    """Concatenate every regular file in the archive, in order.

    Used for archives expected to hold a single file whose name is not
    known in advance.
    """
    chunks: list[bytes] = []
    with _open(stream) as tar:
        for member in tar:
            if not member.isreg():
                continue
            f = tar.extractfile(member)
            if f is not None:
                chunks.append(f.read())
    return b"".join(chunks)


def extract_tar_gz(root_dir: str | Path, stream: BinaryIO) -> None:
    """Materialize the archive under *root_dir*.

    Directories are created with their header mode OR 0o700, symlinks keep
    their target, regular files are created exclusively and then chmod'ed to
    the header mode.  Entries that would land outside *root_dir* are
    rejected before anything is written for them.
    """
    root = Path(root_dir)
    root.mkdir(parents=True, exist_ok=True)
    real_root = os.path.realpath(root)

    with _open(stream) as tar:
        for member in tar:
            rel = clean_path(member.name)
            if _is_traversal(rel):
                raise ArchiveError(member.name, "path escapes the destination directory")
            if rel == ".":
                continue

            dest = root / rel
            if not (_within(real_root, os.path.realpath(dest.parent))
                    and _within(real_root, os.path.realpath(dest))):
                raise ArchiveError(member.name, "path escapes the destination directory")

            try:
                _extract_member(tar, member, dest)
            except OSError as exc:
                raise ArchiveError(str(dest), exc.strerror or str(exc)) from exc


def _extract_member(tar: tarfile.TarFile, member: tarfile.TarInfo, dest: Path) -> None:
    if member.isdir():
        mode = (member.mode & 0o7777) | 0o700
        dest.mkdir(mode=mode, parents=True, exist_ok=True)
        os.chmod(dest, mode)
        return

    dest.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

    if member.issym():
        os.symlink(member.linkname, dest)
        return

    if not member.isreg():
        log.debug("skipping %s: unsupported entry type %r", member.name, member.type)
        return

    src = tar.extractfile(member)
    fd = os.open(dest, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, "wb") as out:
        if src is not None:
            shutil.copyfileobj(src, out)
    os.chmod(dest, member.mode & 0o7777)
