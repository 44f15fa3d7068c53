# utils/archive.py
"""
Safe archive handling for SIS batch uploads (.zip, .tar, .tar.gz/.tgz).

Archives come from outside the system, so extraction refuses entries that
would land outside the destination (absolute paths, `..` traversal, links
and other special members), never overwrites existing files, and enforces
file-count and uncompressed-size limits while streaming.
"""
from __future__ import annotations

import posixpath
import shutil
import stat
import tarfile
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Any, Callable, Dict, Iterable, Iterator, List, Optional, Tuple

DEFAULT_BYTE_LIMIT = 50 << 30  # 50 GiB
DEFAULT_FILE_LIMIT = 100_000
_CHUNK = 1024 * 1024

ARCHIVE_SUFFIXES = (".zip", ".tar", ".tar.gz", ".tgz")

# (member info, name, "file" | "dir" | "unsafe", opener)
Member = Tuple[Any, str, str, Callable[[], IO[bytes]]]


class UnzipError(Exception):
    pass


class FileLimitExceeded(UnzipError):
    pass


class SizeLimitExceeded(UnzipError):
    pass


@dataclass(frozen=True, slots=True)
class Limits:
    maximum_bytes: int
    maximum_files: int


def default_limits(archive_size: int) -> Limits:
    """Allow a 100x expansion ratio, capped at DEFAULT_BYTE_LIMIT."""
    return Limits(min(archive_size * 100, DEFAULT_BYTE_LIMIT), DEFAULT_FILE_LIMIT)


def archive_kind(path: Path) -> Optional[str]:
    """"zip", "tar" or None, judged by file name."""
    name = path.name.lower()
    if name.endswith(".zip"):
        return "zip"
    if name.endswith((".tar", ".tar.gz", ".tgz")):
        return "tar"
    return None


def _is_symlink(info: zipfile.ZipInfo) -> bool:
    mode = info.external_attr >> 16
    return stat.S_ISLNK(mode)


def _is_unsafe(name: str) -> bool:
    if not name or name.startswith(("/", "\\")) or (len(name) > 1 and name[1] == ":"):
        return True
    normalized = posixpath.normpath(name.replace("\\", "/"))
    return normalized == ".." or normalized.startswith("../")


def _members(path: Path) -> Iterator[Member]:
    kind = archive_kind(path)
    if kind == "zip":
        with zipfile.ZipFile(path) as zf:
            for info in zf.infolist():
                if _is_symlink(info):
                    entry = "unsafe"
                else:
                    entry = "dir" if info.is_dir() else "file"
                yield info, info.filename, entry, (lambda info=info: zf.open(info))
    elif kind == "tar":
        with tarfile.open(path, "r:*") as tf:
            for member in tf:
                if member.isdir():
                    entry = "dir"
                elif member.isfile():
                    entry = "file"
                else:
                    entry = "unsafe"  # symlinks, hard links, devices, fifos
                yield member, member.name, entry, (lambda member=member: tf.extractfile(member))
    else:
        raise UnzipError(f"{path.name} is not a supported archive")


def compute_uncompressed_size(path: Path) -> int:
    total = 0
    for info, _name, entry, _opener in _members(path):
        if entry == "file":
            total += info.file_size if isinstance(info, zipfile.ZipInfo) else info.size
    return total


def iter_entries(path: Path) -> Iterator[Tuple[Any, int]]:
    """Yield (entry, index) for every safe entry, in archive order."""
    for index, (info, name, entry, _opener) in enumerate(_members(path)):
        if entry != "unsafe" and not _is_unsafe(name):
            yield info, index


def extract_archive(
    path: Path,
    dest: Path,
    *,
    limits: Optional[Limits] = None,
    on_entry: Optional[Callable[[Any, int], None]] = None,
) -> Dict[str, List[str]]:
    """
    Extract `path` into `dest`. Returns warnings keyed by kind:
        {"unsafe": [...], "already_exists": [...]}
    Only kinds that occurred are present, so a clean run returns {}.
    """
    limits = limits or default_limits(path.stat().st_size)
    dest = dest.resolve()
    dest.mkdir(parents=True, exist_ok=True)

    warnings: Dict[str, List[str]] = {}
    files_seen = 0
    bytes_written = 0

    for index, (info, name, entry, opener) in enumerate(_members(path)):
        if entry == "unsafe" or _is_unsafe(name):
            warnings.setdefault("unsafe", []).append(name)
            continue

        target = (dest / posixpath.normpath(name)).resolve()
        if target != dest and dest not in target.parents:
            warnings.setdefault("unsafe", []).append(name)
            continue

        if on_entry is not None:
            on_entry(info, index)

        if entry == "dir":
            target.mkdir(parents=True, exist_ok=True)
            continue

        files_seen += 1
        if files_seen > limits.maximum_files:
            raise FileLimitExceeded(f"{path.name} has more than {limits.maximum_files} files")

        if target.exists():
            warnings.setdefault("already_exists", []).append(name)
            continue

        target.parent.mkdir(parents=True, exist_ok=True)
        with opener() as src, target.open("wb") as out:
            while True:
                chunk = src.read(_CHUNK)
                if not chunk:
                    break
                bytes_written += len(chunk)
                if bytes_written > limits.maximum_bytes:
                    raise SizeLimitExceeded(
                        f"{path.name} expands to more than {limits.maximum_bytes} bytes"
                    )
                out.write(chunk)

    return warnings


def bundle_archive(paths: Iterable[Path], dest: Path) -> Path:
    """
    Pack SIS files into a single zip for upload. An input that already is a
    zip is copied as-is when it is the only input; tar inputs are repacked.
    """
    paths = list(paths)
    if len(paths) == 1 and archive_kind(paths[0]) == "zip":
        shutil.copyfile(paths[0], dest)
        return dest

    dest.parent.mkdir(parents=True, exist_ok=True)
    used: set[str] = set()
    with zipfile.ZipFile(dest, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for p in paths:
            if archive_kind(p) is not None:
                for _info, name, entry, opener in _members(p):
                    if entry != "file" or _is_unsafe(name) or name in used:
                        continue
                    with opener() as src:
                        zf.writestr(name, src.read())
                    used.add(name)
                continue
            if p.name in used:
                raise ValueError(f"duplicate file name in batch: {p.name}")
            zf.write(p, arcname=p.name)
            used.add(p.name)
    return dest
