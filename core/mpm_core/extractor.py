"""
extractor.py — Safe, non-destructive ZIP extraction into the project root.

Archive paths are relative to the project root. Entry names are validated
before anything touches the disk; a file already present at a target path is
kept under a numbered name (foo-2.txt, foo-3.txt, ...) rather than
overwritten. Each extraction records everything it changed so it can be
rolled back as a unit.
"""

import logging
import os
import re
import shutil
import zipfile
import zlib
from dataclasses import dataclass, field

from .errors import ArchiveOpenError, PackageIOError, SecurityViolationError

logger = logging.getLogger(__name__)

_DRIVE_RE = re.compile(r"^[A-Za-z]:")


@dataclass
class Extraction:
    """Changes made by one archive extraction. All paths are root-relative,
    '/'-separated."""
    files: list = field(default_factory=list)
    warnings: list = field(default_factory=list)
    created_dirs: list = field(default_factory=list)
    renamed: list = field(default_factory=list)     # (original, preserved_as)
    replaced: list = field(default_factory=list)    # (original, backup)

    def rollback(self, root):
        """Undo the extraction: delete written files, put preserved and
        replaced files back, remove directories it created once empty."""
        for rel in reversed(self.files):
            _remove_quietly(_abs(root, rel))
        for original, backup in reversed(self.replaced):
            _restore(_abs(root, backup), _abs(root, original))
        for original, moved in reversed(self.renamed):
            _restore(_abs(root, moved), _abs(root, original))
        for rel in reversed(self.created_dirs):
            path = _abs(root, rel)
            if os.path.isdir(path) and not os.listdir(path):
                try:
                    os.rmdir(path)
                except OSError as e:
                    logger.warning("Rollback: cannot remove %s: %s", path, e)
        self.replaced = []
        self.renamed = []

    def finalize(self, root):
        """Drop the backups of replaced files once the install is committed."""
        for _, backup in self.replaced:
            _remove_quietly(_abs(root, backup))
        self.replaced = []


def _abs(root, rel):
    return os.path.join(root, *rel.split("/"))


def _remove_quietly(path):
    try:
        if os.path.lexists(path):
            os.unlink(path)
    except OSError as e:
        logger.warning("Rollback: cannot remove %s: %s", path, e)


def _restore(src, dest):
    if not os.path.lexists(src) or os.path.lexists(dest):
        return
    try:
        os.replace(src, dest)
    except OSError as e:
        logger.warning("Rollback: cannot restore %s to %s: %s", src, dest, e)


def safe_member_path(name):
    """Normalize an archive entry name to a root-relative '/' path.

    Raises:
        SecurityViolationError: On absolute names or any '..' segment.
    """
    normalized = name.replace("\\", "/")
    if normalized.startswith("/") or _DRIVE_RE.match(normalized):
        raise SecurityViolationError(
            f"Security: absolute path in archive entry: {name}")
    parts = normalized.split("/")
    if ".." in parts:
        raise SecurityViolationError(
            f"Security: directory traversal detected in archive entry: {name}")
    return "/".join(p for p in parts if p not in ("", "."))


def conflict_path(path):
    """First free sibling name of the form name-N.ext, N starting at 2."""
    directory, filename = os.path.split(path)
    base, ext = os.path.splitext(filename)
    suffix = 2
    while True:
        candidate = os.path.join(directory, f"{base}-{suffix}{ext}")
        if not os.path.lexists(candidate):
            return candidate
        suffix += 1


def _backup_path(path):
    directory, filename = os.path.split(path)
    n = 1
    while True:
        candidate = os.path.join(directory, f".{filename}.mpm-old-{n}")
        if not os.path.lexists(candidate):
            return candidate
        n += 1


def _rel(root, path):
    return os.path.relpath(path, root).replace(os.sep, "/")


def _inside(root, path):
    real_root = os.path.realpath(root)
    real = os.path.realpath(path)
    return real == real_root or real.startswith(real_root + os.sep)


def _ensure_dir(root, rel_dir, result):
    """Create rel_dir under root, recording each directory created.

    Raises:
        SecurityViolationError: If an existing directory on the way resolves
                                outside root (a symlink pointing elsewhere).
        PackageIOError: If a directory cannot be created.
    """
    if not rel_dir:
        return
    current = root
    parts = rel_dir.split("/")
    for i, part in enumerate(parts):
        current = os.path.join(current, part)
        if os.path.isdir(current):
            if not _inside(root, current):
                raise SecurityViolationError(
                    f"Security: {'/'.join(parts[:i + 1])} resolves outside the target directory")
            continue
        try:
            os.mkdir(current, 0o755)
        except OSError as e:
            raise PackageIOError(f"Cannot create directory: {'/'.join(parts[:i + 1])} ({e})") from e
        result.created_dirs.append("/".join(parts[:i + 1]))


def extract(archive_path, target_root, replaceable=()):
    """Extract a ZIP archive into target_root.

    Args:
        archive_path: Path to the .zip file.
        target_root: Project root the archive paths are relative to.
        replaceable: Root-relative paths that may be replaced in place
                     (the previous version's own files during an upgrade).
                     They are backed up instead of being preserved with a
                     conflict suffix.

    Returns:
        Extraction describing every file written and every conflict warning.

    Raises:
        ArchiveOpenError: If the archive cannot be read.
        SecurityViolationError: If any entry escapes target_root. A bad
                                name is caught before anything is written;
                                a symlinked directory is caught on the way.
        PackageIOError: If an entry cannot be written.

    Whatever the failure, changes already made by this call are undone
    before the exception propagates.
    """
    replaceable = set(replaceable)
    try:
        zf = zipfile.ZipFile(archive_path, "r")
    except (OSError, zipfile.BadZipFile) as e:
        raise ArchiveOpenError(f"Cannot open archive: {archive_path} ({e})") from e

    result = Extraction()
    with zf:
        members = [(info, safe_member_path(info.filename)) for info in zf.infolist()]
        try:
            for info, rel in members:
                if not rel:
                    continue
                if info.is_dir():
                    _ensure_dir(target_root, rel, result)
                    continue
                _extract_member(zf, info, rel, target_root, replaceable, result)
        except BaseException:
            result.rollback(target_root)
            raise

    logger.debug("Extracted %s: %d file(s), %d warning(s)",
                 archive_path, len(result.files), len(result.warnings))
    return result


def _extract_member(zf, info, rel, root, replaceable, result):
    parent = rel.rpartition("/")[0]
    _ensure_dir(root, parent, result)
    target = _abs(root, rel)

    if os.path.lexists(target) and rel not in result.files:
        if rel in replaceable:
            backup = _backup_path(target)
            try:
                os.replace(target, backup)
            except OSError as e:
                raise PackageIOError(f"Cannot replace file: {rel} ({e})") from e
            result.replaced.append((rel, _rel(root, backup)))
        else:
            new_path = conflict_path(target)
            try:
                os.replace(target, new_path)
            except OSError as e:
                raise PackageIOError(f"Cannot rename conflicting file: {rel} ({e})") from e
            new_rel = _rel(root, new_path)
            result.renamed.append((rel, new_rel))
            msg = (f"WARNING: File conflict at {rel} - "
                   f"existing file renamed to {new_rel}")
            logger.warning("%s", msg)
            result.warnings.append(msg)

    try:
        with zf.open(info) as src, open(target, "wb") as dst:
            shutil.copyfileobj(src, dst)
    except (OSError, EOFError, zipfile.BadZipFile, RuntimeError, zlib.error) as e:
        _remove_quietly(target)
        raise PackageIOError(f"Cannot extract file: {rel} ({e})") from e
    except BaseException:
        _remove_quietly(target)
        raise
    if rel not in result.files:
        result.files.append(rel)


def move_aside(root, paths):
    """Move existing files at root-relative paths to hidden backups.

    The returned Extraction records them as replaced: rollback() puts them
    back, finalize() deletes them. Missing paths are skipped.

    Raises:
        PackageIOError: If a file cannot be moved; files already moved are
                        restored first.
    """
    result = Extraction()
    for rel in paths:
        path = _abs(root, rel)
        if not (os.path.isfile(path) or os.path.islink(path)):
            continue
        backup = _backup_path(path)
        try:
            os.replace(path, backup)
        except OSError as e:
            result.rollback(root)
            raise PackageIOError(f"Cannot delete file: {rel} ({e})") from e
        result.replaced.append((rel, _rel(root, backup)))
    return result
