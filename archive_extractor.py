"""
Archive Extractor
Unpacks zip, tar and tar.gz mod archives into a mod folder and normalizes the result
"""

import io
import logging
import os
import shutil
import stat
import sys
import tarfile
import uuid
import zipfile
import zlib
from enum import Enum
from pathlib import Path

from mod_errors import (
    ArchiveReadError,
    InvalidModContentError,
    ModIOError,
    NotFoundError,
    UnsupportedArchiveError,
)

logger = logging.getLogger(__name__)

SCRIPT_EXTENSIONS = ('.lua',)
UNSUPPORTED_MESSAGE = 'Unsupported file format. Only ZIP, TAR, and TAR.GZ are supported.'


class ArchiveFormat(Enum):
    ZIP = 'zip'
    TAR = 'tar'
    TAR_GZ = 'tar.gz'


def detect_format(filename):
    """Map an archive file name to its format.

    Args:
        filename: str/Path - Archive file name or path

    Returns:
        ArchiveFormat - Detected format

    Raises:
        UnsupportedArchiveError - extension is not .zip, .tar, .tar.gz or .tgz
    """
    lower = Path(filename).name.lower()
    if lower.endswith('.zip'):
        return ArchiveFormat.ZIP
    if lower.endswith('.tar.gz') or lower.endswith('.tgz'):
        return ArchiveFormat.TAR_GZ
    if lower.endswith('.tar'):
        return ArchiveFormat.TAR
    raise UnsupportedArchiveError(UNSUPPORTED_MESSAGE, path=filename)


def strip_archive_suffix(filename):
    """Derive a mod folder name from an archive file name."""
    name = Path(filename).name
    for suffix in ('.tar.gz', '.tgz', '.zip', '.tar'):
        if name.lower().endswith(suffix):
            return name[:-len(suffix)]
    return name


def _coerce_format(fmt):
    if isinstance(fmt, ArchiveFormat):
        return fmt
    try:
        return ArchiveFormat(str(fmt).lower().lstrip('.'))
    except ValueError:
        raise UnsupportedArchiveError(UNSUPPORTED_MESSAGE, path=fmt) from None


def _handle_remove_readonly(func, path, exc):
    """Clear the read-only bit and retry, for Windows file locks."""
    os.chmod(path, stat.S_IWRITE)
    func(path)


def remove_directory_safe(path):
    """Remove a directory tree, retrying read-only entries.

    Args:
        path: str/Path - Directory to remove; missing paths are ignored

    Raises:
        ModIOError - tree could not be removed
    """
    path = Path(path)
    if not path.exists():
        return
    try:
        if sys.version_info >= (3, 12):
            shutil.rmtree(path, onexc=_handle_remove_readonly)
        else:
            shutil.rmtree(path, onerror=_handle_remove_readonly)
    except OSError as e:
        raise ModIOError(f'Failed to remove directory {path}: {e}', path=path) from e


def _make_dirs(path):
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ModIOError(f'Failed to create directory {path}: {e}', path=path) from e


def _write_member(source, target):
    try:
        with open(target, 'wb') as out:
            shutil.copyfileobj(source, out)
    except OSError as e:
        raise ModIOError(f'Failed to write file {target}: {e}', path=target) from e


def _resolve_entry(destination, entry_name):
    """Join an archive entry onto destination, or None if it would escape it."""
    name = entry_name.replace('\\', '/')
    if not name or name.startswith('/') or (len(name) > 1 and name[1] == ':'):
        return None
    parts = [part for part in name.split('/') if part not in ('', '.')]
    if not parts or '..' in parts:
        return None
    target = destination.joinpath(*parts)
    try:
        target.resolve().relative_to(destination.resolve())
    except ValueError:
        return None
    return target


def _extract_zip(fileobj, destination):
    try:
        with zipfile.ZipFile(fileobj) as archive:
            for info in archive.infolist():
                target = _resolve_entry(destination, info.filename)
                if target is None:
                    logger.warning('Skipping unsafe archive entry %r', info.filename)
                    continue
                if info.is_dir():
                    _make_dirs(target)
                    continue
                _make_dirs(target.parent)
                with archive.open(info) as source:
                    _write_member(source, target)
    except (zipfile.BadZipFile, zlib.error, EOFError, RuntimeError) as e:
        raise ArchiveReadError(f'Failed to read ZIP archive: {e}') from e


def _extract_tar(fileobj, destination, compressed):
    mode = 'r:gz' if compressed else 'r:'
    label = 'TAR.GZ' if compressed else 'TAR'
    try:
        with tarfile.open(fileobj=fileobj, mode=mode) as archive:
            for member in archive:
                target = _resolve_entry(destination, member.name)
                if target is None:
                    logger.warning('Skipping unsafe archive entry %r', member.name)
                    continue
                if member.isdir():
                    _make_dirs(target)
                    continue
                if not member.isfile():
                    logger.warning('Skipping non-regular archive entry %r', member.name)
                    continue
                _make_dirs(target.parent)
                source = archive.extractfile(member)
                with source:
                    _write_member(source, target)
    except (tarfile.TarError, zlib.error, EOFError, OSError) as e:
        raise ArchiveReadError(f'Failed to read {label} archive: {e}') from e


def collapse_single_folder(destination):
    """Lift the contents of a lone top-level folder into destination.

    Args:
        destination: str/Path - Extracted mod folder

    Returns:
        bool - True if a wrapping folder was removed
    """
    destination = Path(destination)
    entries = list(destination.iterdir())
    if len(entries) != 1 or not entries[0].is_dir() or entries[0].is_symlink():
        return False

    # Rename first so a child sharing the wrapper's name cannot collide with it
    nested = destination / f'.collapse-{uuid.uuid4().hex}'
    try:
        entries[0].rename(nested)
        for child in list(nested.iterdir()):
            child.rename(destination / child.name)
    except OSError as e:
        raise ModIOError(f'Failed to move nested directory contents: {e}', path=destination) from e
    remove_directory_safe(nested)
    logger.debug('Collapsed wrapping folder %s', entries[0].name)
    return True


def contains_script_files(root):
    """Check whether any file under root has a recognized script extension."""
    for path in Path(root).rglob('*'):
        if path.is_file() and path.suffix.lower() in SCRIPT_EXTENSIONS:
            return True
    return False


def _open_source(source):
    if isinstance(source, (bytes, bytearray, memoryview)):
        return io.BytesIO(bytes(source))
    if hasattr(source, 'read'):
        return source
    path = Path(source)
    if not path.exists():
        raise NotFoundError(f'Archive not found: {path}', path=path)
    try:
        return open(path, 'rb')
    except OSError as e:
        raise ArchiveReadError(f'Failed to open archive {path}: {e}', path=path) from e


def extract(source, fmt, destination, validate=False):
    """Extract an archive into destination and normalize it.

    Args:
        source: str/Path/bytes/file - Archive on disk or in memory
        fmt: ArchiveFormat/str - 'zip', 'tar' or 'tar.gz'
        destination: str/Path - Target directory, created if missing
        validate: bool - Require at least one Lua script in the result

    Returns:
        Path - The destination directory

    Raises:
        UnsupportedArchiveError - unknown format, raised before any I/O
        NotFoundError - archive path does not exist
        ArchiveReadError - archive is unreadable or corrupt
        ModIOError - destination could not be written
        InvalidModContentError - validate requested and no script found;
            the destination is deleted first
    """
    fmt = _coerce_format(fmt)
    destination = Path(destination)
    fileobj = _open_source(source)
    try:
        _make_dirs(destination)
        if fmt is ArchiveFormat.ZIP:
            _extract_zip(fileobj, destination)
        else:
            _extract_tar(fileobj, destination, compressed=fmt is ArchiveFormat.TAR_GZ)
    finally:
        if fileobj is not source:
            fileobj.close()

    collapse_single_folder(destination)

    if validate and not contains_script_files(destination):
        remove_directory_safe(destination)
        raise InvalidModContentError(
            "No Lua files found in the archive. This doesn't appear to be a valid Balatro mod.",
            path=destination
        )
    return destination


def extract_file(path, destination):
    """Extract a dropped archive file; content is always validated."""
    return extract(path, detect_format(path), destination, validate=True)


def extract_bytes(data, fmt, destination, validate=False):
    """Extract an in-memory archive; validation only when asked for."""
    return extract(data, fmt, destination, validate=validate)
