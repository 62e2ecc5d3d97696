"""Filesystem view of the managed library root."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from pathlib import Path

from ..config import Settings
from ..models import (
    DirectoryEntry,
    LocalRecord,
    ManagedEntry,
    MediaKind,
    MetadataRecord,
    RefreshMode,
    VirtualFolder,
)
from ..ports import CatalogLookup
from ..utils import is_path_under, normalize_path, path_key, sanitize_folder_name

logger = logging.getLogger(__name__)

METADATA_FILENAME = "metadata.json"
IGNORE_FILENAME = ".ignore"
PROBE_FILENAME = ".mediabridge"

KIND_FOLDERS: dict[str, str] = {"movie": "Movies", "show": "Shows"}


class ManagedLibrary:
    """Reads and writes the directories the bridge owns under its root.

    Every managed title lives in its own directory holding a ``metadata.json``
    file with the serialized :class:`MetadataRecord`. A ``.ignore`` file in the
    same directory marks titles that already exist elsewhere in the host.
    """

    def __init__(self, settings: Settings, catalog: CatalogLookup) -> None:
        self._root = Path(normalize_path(settings.library_directory))
        self._use_network_folders = settings.use_network_folders
        self._catalog = catalog

    @property
    def root(self) -> Path:
        return self._root

    def contains(self, path: str | Path) -> bool:
        """Return whether ``path`` lives under the managed root."""

        return is_path_under(path, self._root)

    def network_folder(self, network_tag: str) -> Path:
        return self._root / sanitize_folder_name(network_tag)

    def uses_network_folder(self, record: MetadataRecord) -> bool:
        return self._use_network_folders and bool(record.network_tag)

    def target_folder(self, record: MetadataRecord) -> Path:
        """Folder new directories for ``record`` are created in."""

        if self.uses_network_folder(record):
            return self.network_folder(record.network_tag)
        return self._root / KIND_FOLDERS[record.kind]

    def item_directory(self, record: MetadataRecord) -> Path:
        return self.target_folder(record) / record.folder_name()

    # Metadata files

    async def list_records(
        self,
        kind: MediaKind | None = None,
        *,
        directories: Iterable[str] | None = None,
    ) -> list[MetadataRecord]:
        """Return the metadata records stored below ``directories`` (default: root)."""

        found = await self.list_placed(directories=directories)
        return [record for _, record in found if kind is None or record.kind == kind]

    async def list_placed(
        self, *, directories: Iterable[str] | None = None
    ) -> list[tuple[str, MetadataRecord]]:
        """Return ``(directory, record)`` pairs for every metadata file found."""

        targets = list(directories) if directories is not None else [str(self._root)]
        return await asyncio.to_thread(self._collect_many, targets)

    def write_metadata(self, directory: str | Path, record: MetadataRecord) -> Path:
        target = Path(directory)
        target.mkdir(parents=True, exist_ok=True)
        metadata_path = target / METADATA_FILENAME
        metadata_path.write_text(record.model_dump_json(indent=2), encoding="utf-8")
        logger.debug("Wrote metadata for %s to %s", record.title, metadata_path)
        return metadata_path

    def read_record(self, directory: str | Path) -> MetadataRecord | None:
        """Return the record stored directly in ``directory``, if any."""

        metadata_path = Path(directory) / METADATA_FILENAME
        if not metadata_path.is_file():
            return None
        try:
            return MetadataRecord.model_validate_json(
                metadata_path.read_text(encoding="utf-8")
            )
        except (OSError, ValueError) as exc:
            logger.warning("Skipping unreadable metadata file %s: %s", metadata_path, exc)
            return None

    def _collect_many(self, directories: list[str]) -> list[tuple[str, MetadataRecord]]:
        collected: list[tuple[str, MetadataRecord]] = []
        seen: set[str] = set()
        for directory in directories:
            for item_dir, record in self._collect(Path(directory)):
                key = path_key(item_dir)
                if key in seen:
                    continue
                seen.add(key)
                collected.append((item_dir, record))
        return collected

    def _collect(self, base: Path) -> list[tuple[str, MetadataRecord]]:
        if not base.is_dir():
            return []
        direct = base / METADATA_FILENAME
        candidates = [direct] if direct.is_file() else sorted(base.rglob(METADATA_FILENAME))
        collected: list[tuple[str, MetadataRecord]] = []
        for metadata_path in candidates:
            record = self.read_record(metadata_path.parent)
            if record is not None:
                collected.append((str(metadata_path.parent), record))
        return collected

    # Ignore markers

    def is_ignored(self, directory: str | Path) -> bool:
        return (Path(directory) / IGNORE_FILENAME).exists()

    def write_ignore_marker(self, directory: str | Path, item: LocalRecord) -> bool:
        """Create the ignore marker for ``directory``.

        Returns ``False`` when a marker already exists. The marker holds a JSON
        snapshot of ``item``; it is written empty when serialization fails.
        """

        marker = Path(directory) / IGNORE_FILENAME
        if marker.exists():
            return False
        try:
            content = item.to_snapshot()
        except ValueError as exc:
            logger.debug("Writing empty ignore file for %s: %s", item.name, exc)
            content = ""
        marker.write_text(content, encoding="utf-8")
        return True

    def check_read_write(self) -> bool:
        """Probe the managed root by writing, reading back and deleting a file."""

        if not self._root.is_dir():
            logger.warning("Library directory does not exist: %s", self._root)
            return False

        probe = self._root / PROBE_FILENAME
        expected = "Hello World!"
        try:
            probe.write_text(expected, encoding="utf-8")
            content = probe.read_text(encoding="utf-8")
            if content != expected:
                logger.warning("Library directory probe returned unexpected content")
                return False
            return True
        except OSError as exc:
            logger.error("Library directory read/write test failed: %s", exc)
            return False
        finally:
            try:
                probe.unlink(missing_ok=True)
            except OSError as exc:
                logger.warning("Unable to remove probe file %s: %s", probe, exc)

    # Libraries

    async def managed_folders(self) -> list[VirtualFolder]:
        """Return the host libraries with at least one location under the root."""

        return [
            folder
            for folder in await self._catalog.list_virtual_folders()
            if any(self.contains(location) for location in folder.locations if location)
        ]

    async def managed_libraries(self) -> dict[str, set[str]]:
        """Map library names to the normalized locations that sit under the root."""

        libraries: dict[str, set[str]] = {}
        for folder in await self.managed_folders():
            locations: set[str] = set()
            for location in folder.locations:
                if not location:
                    continue
                try:
                    locations.add(normalize_path(location))
                except (TypeError, ValueError) as exc:
                    logger.warning(
                        "Error normalizing location %s of library %s: %s",
                        location,
                        folder.name,
                        exc,
                    )
            if locations:
                libraries[folder.name] = locations
        return libraries

    async def refresh(self, *, create: bool = False, remove: bool = False) -> int:
        """Queue host refreshes for every managed library.

        Each library gets a light refresh that reloads user data. ``remove``
        adds a full pass that drops vanished or ignored titles first, and
        ``create`` a full pass replacing all metadata for new titles. Returns
        the number of refreshes queued; failures are logged per library.
        """

        try:
            folders = await self.managed_folders()
        except Exception:
            logger.exception("Error reading managed libraries for refresh")
            return 0
        if not folders:
            logger.debug("No managed libraries found to refresh")
            return 0

        passes: list[tuple[str, RefreshMode]] = []
        if remove:
            passes.append(("remove", "full"))
        passes.append(("update", "default"))
        if create:
            passes.append(("create", "replace"))

        queued = 0
        for label, mode in passes:
            for folder in folders:
                if not folder.item_id:
                    logger.warning("Library %s has no item id, skipping refresh", folder.name)
                    continue
                try:
                    await self._catalog.refresh_item(folder.item_id, mode=mode)
                except Exception:
                    logger.exception("Error queueing %s refresh for library %s", label, folder.name)
                    continue
                queued += 1
        logger.info("Queued %s library refreshes", queued)
        return queued

    async def scan(self) -> list[ManagedEntry]:
        """Rescan every managed library and return the titles it holds."""

        try:
            libraries = await self.managed_libraries()
        except Exception:
            logger.exception("Error reading managed libraries")
            return []

        by_directory: dict[str, ManagedEntry] = {}
        for library_name, locations in libraries.items():
            for location in sorted(locations):
                try:
                    found = await asyncio.to_thread(self._collect, Path(location))
                except OSError as exc:
                    logger.warning("Error reading library location %s: %s", location, exc)
                    continue
                for directory, record in found:
                    by_directory[path_key(directory)] = ManagedEntry(
                        library_name, directory, record
                    )

        entries = list(by_directory.values())
        logger.debug("Read %s metadata items from managed libraries", len(entries))
        return entries

    async def list_directories(self) -> list[DirectoryEntry]:
        """Return every managed directory, movies first, with its media kind."""

        entries = await self.scan()
        movies = [
            DirectoryEntry(entry.directory, "movie")
            for entry in entries
            if entry.record.kind == "movie"
        ]
        shows = [
            DirectoryEntry(entry.directory, "show")
            for entry in entries
            if entry.record.kind == "show"
        ]
        return movies + shows
