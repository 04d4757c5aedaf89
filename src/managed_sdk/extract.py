"""Archive extraction for SDK distributions (tar+gzip and zip).

Entries are materialized one at a time, in the order the archive stores them,
because later entries (symlinks, hard links) may rely on earlier ones already
being on disk. Every destination path is checked before anything is written:
an entry resolving outside the destination aborts the whole extraction.

Directory permission bits are applied after every entry has been written,
deepest directory first, so a read-only directory entry does not block the
entries that populate it.

Known limitation: there is no rollback. Entries written before a failure stay
on disk. Extraction is idempotent for an unchanged archive, but concurrent
extraction into the same destination is not supported (callers serialize
through InstallLock).
"""

import logging
import os
import shutil
import stat
import tarfile
import zipfile
import zlib
from collections.abc import Callable
from collections.abc import Iterator
from contextlib import closing
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import IO

from .exceptions import ExtractionError
from .exceptions import ManagedSdkError
from .exceptions import PathTraversalError

logger = logging.getLogger(__name__)

ProgressListener = Callable[[str], None]

# Zip entries created without unix mode bits
DEFAULT_FILE_MODE = 0o644


class EntryKind(str, Enum):
    FILE = "file"
    DIRECTORY = "directory"
    SYMLINK = "symlink"
    HARDLINK = "hardlink"
    OTHER = "other"


@dataclass(frozen=True)
class ArchiveEntry:
    """One archive member, produced lazily and discarded once materialized."""

    name: str
    kind: EntryKind
    mode: int | None = None
    link_target: str | None = None
    open: Callable[[], IO[bytes]] | None = None


def resolve_entry_path(destination_root: Path, name: str) -> Path:
    """
    Resolve where an entry lands, refusing anything outside the destination.

    `..` components are collapsed lexically and symlinks among the already
    materialized parents are followed, so an earlier link entry cannot be used
    to smuggle a later entry out. The final component is not followed (a
    symlink entry is allowed to point anywhere).

    Args:
        destination_root: Resolved extraction destination
        name: Entry path as stored in the archive

    Returns:
        Absolute destination path for the entry

    Raises:
        PathTraversalError: If the entry escapes destination_root
    """
    candidate = Path(os.path.normpath(destination_root / name))
    if candidate != destination_root:
        candidate = candidate.parent.resolve() / candidate.name
    if candidate != destination_root and not candidate.is_relative_to(destination_root):
        raise PathTraversalError(
            f"Archive entry '{name}' resolves outside of {destination_root}",
            context={"entry": name, "destination": str(destination_root)},
        )
    return candidate


def _remove_existing(target: Path) -> None:
    # Replace files and links, never write through an existing link
    if target.is_symlink() or target.is_file():
        target.unlink()


class ExtractorProvider:
    """
    Base class for archive extractors.

    Subclasses only turn their archive format into a lazy sequence of
    ArchiveEntry objects; materialization and path checks live here.
    """

    suffixes: tuple[str, ...] = ()

    def __init__(self, apply_permissions: bool | None = None):
        """Initialize extractor.

        Args:
            apply_permissions: Whether to apply entry permission bits. Defaults to
                True on POSIX platforms; elsewhere permissions are skipped silently.
        """
        self.apply_permissions = os.name == "posix" if apply_permissions is None else apply_permissions

    def entries(self, archive_path: Path) -> Iterator[ArchiveEntry]:
        raise NotImplementedError

    def extract(
        self,
        archive_path: Path,
        destination_root: Path,
        listener: ProgressListener | None = None,
    ) -> None:
        """
        Extract an archive into destination_root.

        Args:
            archive_path: Archive file
            destination_root: Directory to extract into (created if missing)
            listener: Receives exactly one progress message per entry

        Raises:
            PathTraversalError: If any entry resolves outside destination_root
            ExtractionError: If the archive cannot be read or an entry cannot be written

        Example:
            >>> TarGzExtractorProvider().extract(Path("sdk.tar.gz"), Path("/opt/sdk"), print)
            Created directory: /opt/sdk/google-cloud-sdk
            ...
        """
        logger.debug(f"Extracting {archive_path} to {destination_root}")
        try:
            destination_root.mkdir(parents=True, exist_ok=True)
            root = destination_root.resolve()
            directory_modes: list[tuple[Path, int]] = []
            with closing(self.entries(archive_path)) as entries:
                for entry in entries:
                    message = self._materialize(entry, root, directory_modes)
                    if listener is not None:
                        listener(message)
            for directory, mode in sorted(directory_modes, key=lambda item: len(item[0].parts), reverse=True):
                if directory.is_dir() and not directory.is_symlink():
                    self._apply_mode(directory, mode)
        except ManagedSdkError:
            raise
        except (OSError, EOFError, zlib.error, tarfile.TarError, zipfile.BadZipFile, UnicodeDecodeError) as e:
            raise ExtractionError(
                f"Failed to extract {archive_path}: {e}",
                context={"archive": str(archive_path), "destination": str(destination_root)},
            ) from e

    def _materialize(self, entry: ArchiveEntry, root: Path, directory_modes: list[tuple[Path, int]]) -> str:
        target = resolve_entry_path(root, entry.name)

        if entry.kind is EntryKind.DIRECTORY:
            target.mkdir(parents=True, exist_ok=True)
            if entry.mode is not None:
                directory_modes.append((target, entry.mode))
            return f"Created directory: {target}"

        if entry.kind is EntryKind.FILE:
            assert entry.open is not None
            target.parent.mkdir(parents=True, exist_ok=True)
            _remove_existing(target)
            with entry.open() as source, open(target, "wb") as destination:
                shutil.copyfileobj(source, destination)
            self._apply_mode(target, entry.mode)
            return f"Extracted file: {target}"

        if entry.kind is EntryKind.SYMLINK:
            assert entry.link_target is not None
            target.parent.mkdir(parents=True, exist_ok=True)
            _remove_existing(target)
            os.symlink(entry.link_target, target)
            return f"Created symlink: {target} -> {entry.link_target}"

        if entry.kind is EntryKind.HARDLINK:
            assert entry.link_target is not None
            source = resolve_entry_path(root, entry.link_target)
            # The source may be a symlink extracted earlier; its contents must come from inside too
            if not source.resolve().is_relative_to(root):
                raise PathTraversalError(
                    f"Hard link '{entry.name}' copies '{entry.link_target}' from outside of {root}",
                    context={"entry": entry.name, "link_target": entry.link_target, "destination": str(root)},
                )
            target.parent.mkdir(parents=True, exist_ok=True)
            _remove_existing(target)
            shutil.copyfile(source, target)
            self._apply_mode(target, entry.mode)
            return f"Extracted file: {target} (copy of {source})"

        return f"Skipped unsupported entry: {target}"

    def _apply_mode(self, target: Path, mode: int | None) -> None:
        if self.apply_permissions and mode is not None:
            os.chmod(target, mode & 0o7777)


class TarGzExtractorProvider(ExtractorProvider):
    """Extractor for gzip-compressed tar archives."""

    suffixes = (".tar.gz", ".tgz")

    def entries(self, archive_path: Path) -> Iterator[ArchiveEntry]:
        with tarfile.open(archive_path, "r:gz") as tar:
            # Iterating the TarFile reads headers lazily, in archive order
            for member in tar:
                yield self._to_entry(tar, member)

    @staticmethod
    def _to_entry(tar: tarfile.TarFile, member: tarfile.TarInfo) -> ArchiveEntry:
        mode = member.mode & 0o7777
        if member.isdir():
            return ArchiveEntry(name=member.name, kind=EntryKind.DIRECTORY, mode=mode)
        if member.issym():
            return ArchiveEntry(name=member.name, kind=EntryKind.SYMLINK, link_target=member.linkname)
        if member.islnk():
            return ArchiveEntry(name=member.name, kind=EntryKind.HARDLINK, mode=mode, link_target=member.linkname)
        if member.isfile():

            def _open(member: tarfile.TarInfo = member) -> IO[bytes]:
                stream = tar.extractfile(member)
                assert stream is not None
                return stream

            return ArchiveEntry(name=member.name, kind=EntryKind.FILE, mode=mode, open=_open)
        return ArchiveEntry(name=member.name, kind=EntryKind.OTHER)


class ZipExtractorProvider(ExtractorProvider):
    """Extractor for zip archives.

    Unix permission bits live in the upper 16 bits of `external_attr`. Entries
    written without them (e.g. by Windows tools) get DEFAULT_FILE_MODE.
    """

    suffixes = (".zip",)

    def entries(self, archive_path: Path) -> Iterator[ArchiveEntry]:
        with zipfile.ZipFile(archive_path) as archive:
            for info in archive.infolist():
                yield self._to_entry(archive, info)

    @staticmethod
    def _to_entry(archive: zipfile.ZipFile, info: zipfile.ZipInfo) -> ArchiveEntry:
        unix_mode = info.external_attr >> 16
        if stat.S_ISLNK(unix_mode):
            return ArchiveEntry(
                name=info.filename,
                kind=EntryKind.SYMLINK,
                link_target=archive.read(info).decode("utf-8"),
            )
        if info.is_dir():
            return ArchiveEntry(name=info.filename, kind=EntryKind.DIRECTORY, mode=stat.S_IMODE(unix_mode) or None)

        mode = stat.S_IMODE(unix_mode) or DEFAULT_FILE_MODE

        def _open(info: zipfile.ZipInfo = info) -> IO[bytes]:
            return archive.open(info)

        return ArchiveEntry(name=info.filename, kind=EntryKind.FILE, mode=mode, open=_open)


_PROVIDERS: tuple[type[ExtractorProvider], ...] = (TarGzExtractorProvider, ZipExtractorProvider)


def extractor_for(archive_path: Path, apply_permissions: bool | None = None) -> ExtractorProvider:
    """
    Pick the extractor for an archive by its file name.

    Args:
        archive_path: Archive file (".tar.gz", ".tgz" or ".zip")
        apply_permissions: Passed through to the extractor

    Returns:
        Matching ExtractorProvider

    Raises:
        ExtractionError: If the archive format is not supported
    """
    name = archive_path.name.lower()
    for provider in _PROVIDERS:
        if name.endswith(provider.suffixes):
            return provider(apply_permissions=apply_permissions)
    raise ExtractionError(f"Unsupported archive format: {archive_path.name}", context={"archive": str(archive_path)})
