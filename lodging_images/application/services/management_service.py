import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .metadata_service import ImageMetadataStore
from ..ports.storage_repo import CleanupResult, FileStore, OrphanedFile
from ...exceptions import InvalidInputError, NotFoundError

logger = logging.getLogger(__name__)


@dataclass
class DeleteResult:
    image_id: str
    success: bool
    deleted_files: List[str] = field(default_factory=list)
    references_removed: List[Tuple[str, str]] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


@dataclass
class OrphanCleanupResult:
    found: List[OrphanedFile] = field(default_factory=list)
    deleted_files: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    removed_directories: int = 0
    dry_run: bool = False


@dataclass
class ImageManagementService:
    metadata: ImageMetadataStore
    file_store: FileStore

    def delete_image(self, url: str, force: bool = False, entity: Optional[Tuple[str, str]] = None) -> DeleteResult:
        """
        Delete an image everywhere: references, files, record.

        An image still referenced by an entity other than `entity` is refused
        unless `force` is set.
        """
        record = self.metadata.find_by_url(url) or self.metadata.find_by_id(url)
        if not record:
            raise NotFoundError(f"Image {url} not found")

        usage = self.metadata.check_usage(record.primary_url)
        users = [(e.entity_type, e.entity_id) for e in usage.entities]
        blocking = [u for u in users if u != entity]
        if blocking and not force:
            raise InvalidInputError(
                f"Image {record.id} is still in use by {len(blocking)} entities",
                {"used_by": [f"{t}:{i}" for t, i in blocking]},
            )

        result = DeleteResult(image_id=record.id, success=True)
        for entity_type, entity_id in users:
            self.metadata.remove_image_references(entity_type, entity_id, record)
            result.references_removed.append((entity_type, entity_id))

        cleanup = self.file_store.complete_cleanup(record.id, record.establishment_id, record.created_at)
        result.deleted_files = cleanup.deleted_files
        result.errors = list(cleanup.errors)
        self.metadata.delete(record.id)
        result.success = cleanup.success
        logger.info(
            f"Deleted image {record.id}: {len(cleanup.deleted_files)} files, "
            f"{len(result.references_removed)} references"
        )
        return result

    def reorder_images(self, entity_type: str, entity_id: str, new_order: List[str]) -> List[str]:
        return self.metadata.reorder_references(entity_type, entity_id, new_order)

    def find_orphaned_files(self, establishment_id: Optional[str] = None) -> List[OrphanedFile]:
        live: Dict[str, bool] = {}
        orphans = []
        for candidate in self.file_store.find_orphaned_files(establishment_id):
            image_id = candidate.image_id
            if image_id and image_id not in live:
                live[image_id] = self.metadata.find_by_id(image_id) is not None
            if not image_id or not live[image_id]:
                orphans.append(candidate)
        return orphans

    def cleanup_orphaned_files(self, establishment_id: Optional[str] = None, dry_run: bool = False) -> OrphanCleanupResult:
        orphans = self.find_orphaned_files(establishment_id)
        result = OrphanCleanupResult(found=orphans, dry_run=dry_run)
        if dry_run or not orphans:
            return result
        deleted: CleanupResult = self.file_store.delete_files([o.path for o in orphans])
        result.deleted_files = deleted.deleted_files
        result.errors = deleted.errors
        result.removed_directories = self.file_store.cleanup_empty_directories(establishment_id)
        logger.info(f"Removed {len(result.deleted_files)} orphaned files")
        return result
