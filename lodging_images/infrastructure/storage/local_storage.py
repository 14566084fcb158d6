import os
import glob
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from ...core.config import settings
from ...core.layout import (
    DirectoryLayout,
    FALLBACK,
    ORIGINALS,
    PRIMARY,
    THUMBNAILS,
    directory_layout,
    validate_establishment_id,
)
from ...application.ports.image_repo import ProcessedImage
from ...application.ports.storage_repo import CleanupResult, FileStore, OrphanedFile
from ...exceptions import InvalidInputError, StorageFailedError

logger = logging.getLogger(__name__)


class LocalFileStore(FileStore):
    def __init__(
        self,
        base_dir: Optional[str] = None,
        dir_mode: Optional[int] = None,
        file_mode: Optional[int] = None,
        preserve_originals: Optional[bool] = None,
    ) -> None:
        self.base_dir = base_dir or settings.IMAGE_BASE_DIR
        self.dir_mode = settings.DIR_MODE if dir_mode is None else dir_mode
        self.file_mode = settings.FILE_MODE if file_mode is None else file_mode
        self.preserve_originals = settings.PRESERVE_ORIGINALS if preserve_originals is None else preserve_originals

    # --- directories ---

    def ensure_directory(self, path: str) -> str:
        # exist_ok makes concurrent creation of the same tree harmless
        os.makedirs(path, mode=self.dir_mode, exist_ok=True)
        try:
            os.chmod(path, self.dir_mode)
        except OSError as e:
            logger.debug(f"Could not set mode on {path}: {e}")
        return path

    def create_establishment_directories(self, establishment_id: str, when: datetime) -> DirectoryLayout:
        layout = directory_layout(self.base_dir, establishment_id, when)
        try:
            for path in layout.all_directories():
                self.ensure_directory(path)
        except OSError as e:
            raise StorageFailedError(f"Failed to create directories for establishment {establishment_id}: {e}")
        return layout

    # --- writes ---

    def _write(self, path: str, data: bytes) -> str:
        self.ensure_directory(os.path.dirname(path))
        with open(path, "wb") as f:
            f.write(data)
        os.chmod(path, self.file_mode)
        return path

    def _write_all(self, files: Dict[str, bytes], label: str) -> List[str]:
        written = []
        try:
            for path, data in files.items():
                self._write(path, data)
                written.append(path)
        except OSError as e:
            # the failing file may already be on disk, truncated or with the wrong mode
            self.rollback_file_operations(written + [path])
            raise StorageFailedError(f"Failed to store {label}: {e}", {"path": path})
        return written

    def store_original(self, processed: ProcessedImage) -> List[str]:
        return self._write_all({processed.paths.original: processed.original}, "original image")

    def store_primary(self, processed: ProcessedImage) -> List[str]:
        return self._write_all({processed.paths.primary: processed.primary}, "primary image")

    def store_fallback(self, processed: ProcessedImage) -> List[str]:
        return self._write_all({processed.paths.fallback: processed.fallback}, "fallback image")

    def store_thumbnails(self, processed: ProcessedImage) -> List[str]:
        # when the served format is JPEG both renditions share one path
        files: Dict[str, bytes] = {}
        for name, data in processed.thumbnails.items():
            files[processed.paths.thumbnails[name]] = data
        for name, data in processed.fallback_thumbnails.items():
            files.setdefault(processed.paths.fallback_thumbnails[name], data)
        return self._write_all(files, "thumbnails")

    def store_image_files(self, processed: ProcessedImage) -> List[str]:
        """Write every rendition of an image, or none of them."""
        steps = [self.store_primary, self.store_fallback, self.store_thumbnails]
        if self.preserve_originals:
            steps.insert(0, self.store_original)
        written: List[str] = []
        try:
            for step in steps:
                written.extend(step(processed))
        except StorageFailedError as e:
            logger.error(f"Storage failed for image {processed.record.id}, rolling back {len(written)} files: {e}")
            self.rollback_file_operations(written)
            raise
        logger.info(f"Stored {len(written)} files for image {processed.record.id}")
        return written

    # --- reads ---

    def file_exists(self, path: str) -> bool:
        return os.path.isfile(path)

    def read_file(self, path: str) -> bytes:
        with open(path, "rb") as f:
            return f.read()

    # --- deletes ---

    def delete_files(self, paths: List[str]) -> CleanupResult:
        result = CleanupResult()
        for path in paths:
            try:
                os.remove(path)
                result.deleted_files.append(path)
            except FileNotFoundError:
                continue
            except OSError as e:
                result.errors.append(f"Failed to delete {path}: {e}")
        result.success = not result.errors
        return result

    def rollback_file_operations(self, paths: List[str]) -> List[str]:
        """Delete exactly the given paths. Missing files are skipped; never raises."""
        try:
            result = self.delete_files(list(paths))
        except Exception as e:
            logger.error(f"Rollback aborted: {e}")
            return []
        for error in result.errors:
            logger.error(f"Rollback: {error}")
        return result.deleted_files

    def _candidate_files(self, image_id: str, layout: DirectoryLayout) -> List[str]:
        escaped = glob.escape(image_id)
        candidates = []
        for directory in (layout.originals, layout.primary, layout.fallback):
            candidates.extend(glob.glob(os.path.join(glob.escape(directory), f"{escaped}.*")))
        for directory in layout.thumbnails.values():
            candidates.extend(glob.glob(os.path.join(glob.escape(directory), f"{escaped}_*")))
        return sorted(candidates)

    def complete_cleanup(self, image_id: str, establishment_id: str, when: datetime) -> CleanupResult:
        """Remove every file kind that may exist for an image. Kinds that were never written are not errors."""
        if not image_id:
            return CleanupResult(success=False, errors=["Image id is required"])
        try:
            layout = directory_layout(self.base_dir, establishment_id, when)
        except InvalidInputError as e:
            return CleanupResult(success=False, errors=[e.message])
        result = self.delete_files(self._candidate_files(image_id, layout))
        logger.info(f"Cleanup of image {image_id}: {len(result.deleted_files)} deleted, {len(result.errors)} errors")
        return result

    def cleanup_empty_directories(self, establishment_id: Optional[str] = None) -> int:
        root = self.base_dir
        if establishment_id:
            root = os.path.join(self.base_dir, validate_establishment_id(establishment_id))
        if not os.path.isdir(root):
            return 0
        removed = 0
        for dirpath, dirnames, filenames in os.walk(root, topdown=False):
            if dirpath == root or os.path.abspath(dirpath) == os.path.abspath(self.base_dir):
                continue
            try:
                if not os.listdir(dirpath):
                    os.rmdir(dirpath)
                    removed += 1
            except OSError as e:
                logger.warning(f"Could not remove directory {dirpath}: {e}")
        return removed

    # --- orphan scan ---

    def _classify(self, relative: str):
        """Map a path below the base dir to (kind, image_id)."""
        parts = relative.split(os.sep)
        filename = parts[-1]
        # {establishment}/{year}/{month}/{kind}[/{size}]/{file}
        if len(parts) == 5 and parts[3] in (ORIGINALS, PRIMARY, FALLBACK):
            return parts[3], filename.split(".", 1)[0]
        if len(parts) == 6 and parts[3] == THUMBNAILS:
            return f"{THUMBNAILS}/{parts[4]}", filename.split("_", 1)[0]
        return "unknown", None

    def find_orphaned_files(self, establishment_id: Optional[str] = None) -> List[OrphanedFile]:
        """Every stored file, classified. The caller decides which are orphans."""
        root = self.base_dir
        if establishment_id:
            root = os.path.join(self.base_dir, validate_establishment_id(establishment_id))
        if not os.path.isdir(root):
            return []
        found = []
        for dirpath, _dirnames, filenames in os.walk(root):
            for filename in sorted(filenames):
                path = os.path.join(dirpath, filename)
                kind, image_id = self._classify(os.path.relpath(path, self.base_dir))
                try:
                    stat = os.stat(path)
                except OSError as e:
                    logger.warning(f"Could not stat {path}: {e}")
                    continue
                found.append(OrphanedFile(
                    path=path,
                    kind=kind,
                    image_id=image_id,
                    size=stat.st_size,
                    last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                ))
        return found
