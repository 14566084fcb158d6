import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from .metadata_service import ImageMetadataStore, OverallMigrationStatus
from .processing_service import ImageProcessingService
from .resilience_service import DiskSpaceGuard, as_image_error
from .validation_service import ImageValidator
from ..ports.entity_repo import EntityImagesRepository, EntityRef
from ..ports.image_repo import ImageRecord
from ..ports.storage_repo import FileStore
from ...core.config import settings
from ...core.legacy import (
    estimated_decoded_size,
    is_legacy_image,
    parse_data_url,
    truncate_payload,
)
from ...exceptions import ImageError, NotFoundError, StorageFailedError

logger = logging.getLogger(__name__)

# decoded bytes plus every rendition written for them
DISK_ESTIMATE_FACTOR = 3


@dataclass
class MigrationOptions:
    skip_errors: bool = True
    dry_run: bool = False
    batch_size: Optional[int] = None
    uploader_id: Optional[str] = None
    progress_callback: Optional[Callable[["MigrationProgress"], None]] = None
    error_callback: Optional[Callable[["MigrationFailure"], None]] = None


@dataclass
class MigrationFailure:
    entity_type: str
    entity_id: str
    image_index: Optional[int]
    payload_preview: str
    message: str
    error_kind: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class MigrationProgress:
    total_entities: int = 0
    processed_entities: int = 0
    total_images: int = 0
    processed_images: int = 0
    success_count: int = 0
    failed_count: int = 0
    current_entity: Optional[str] = None
    failures: List[MigrationFailure] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class LegacyImageInfo:
    entity_type: str
    entity_id: str
    establishment_id: str
    image_index: int
    mime_type: Optional[str]
    estimated_size: int
    preview: str


@dataclass
class SingleImageMigration:
    new_url: str
    record: ImageRecord
    written_files: List[str]
    warnings: List[str] = field(default_factory=list)


@dataclass
class EntityMigrationResult:
    entity_type: str
    entity_id: str
    total_images: int = 0
    migrated: int = 0
    failed: int = 0
    new_urls: List[str] = field(default_factory=list)
    failures: List[MigrationFailure] = field(default_factory=list)
    aborted: bool = False

    @property
    def success(self) -> bool:
        return self.failed == 0 and not self.aborted


@dataclass
class MigrationReport:
    success: bool = False
    dry_run: bool = False
    aborted: bool = False
    total_processed: int = 0
    success_count: int = 0
    failed_count: int = 0
    processed_entities: int = 0
    fully_converted_entities: int = 0
    failed_entities: List[str] = field(default_factory=list)
    new_urls: List[str] = field(default_factory=list)
    errors: List[MigrationFailure] = field(default_factory=list)
    progress: Optional[MigrationProgress] = None


@dataclass
class MigrationStats:
    total_entities: int
    entities_with_legacy_images: int
    total_images: int
    total_legacy_images: int
    estimated_legacy_bytes: int
    legacy_by_entity_type: Dict[str, int] = field(default_factory=dict)


class _MigrationAborted(Exception):
    """Raised internally to stop issuing work when errors are not skipped."""

    def __init__(self, failure: MigrationFailure):
        super().__init__(failure.message)
        self.failure = failure


def _unique_legacy_payloads(images: List[str]) -> Dict[str, int]:
    """Legacy payloads in first-seen order, mapped to the index of their first occurrence."""
    unique: Dict[str, int] = {}
    for index, ref in enumerate(images):
        if is_legacy_image(ref) and ref not in unique:
            unique[ref] = index
    return unique


class LegacyImageMigrationService:
    """
    Moves inline data-URL images out of entity reference arrays into file-backed storage.

    Identical payloads within one entity become a single asset and every occurrence
    is replaced by the same URL in one write.
    """

    def __init__(
        self,
        entities: EntityImagesRepository,
        metadata: ImageMetadataStore,
        processor: ImageProcessingService,
        file_store: FileStore,
        validator: Optional[ImageValidator] = None,
        disk_guard: Optional[DiskSpaceGuard] = None,
    ):
        self.entities = entities
        self.metadata = metadata
        self.processor = processor
        self.file_store = file_store
        self.validator = validator or ImageValidator()
        self.disk_guard = disk_guard or DiskSpaceGuard()

    # --- detection ---

    def is_legacy_image(self, value) -> bool:
        return is_legacy_image(value)

    def detect_legacy_images(self) -> List[LegacyImageInfo]:
        found = []
        for entity in self.entities.list_entities():
            for index, ref in enumerate(entity.images):
                if not is_legacy_image(ref):
                    continue
                try:
                    mime_type = parse_data_url(ref).mime_type
                except ImageError:
                    mime_type = None
                found.append(LegacyImageInfo(
                    entity_type=entity.entity_type,
                    entity_id=entity.entity_id,
                    establishment_id=entity.establishment_id,
                    image_index=index,
                    mime_type=mime_type,
                    estimated_size=estimated_decoded_size(ref),
                    preview=truncate_payload(ref),
                ))
        logger.info(f"Detected {len(found)} legacy images")
        return found

    # --- single image ---

    def migrate_single_image(
        self,
        payload: str,
        establishment_id: str,
        uploader_id: Optional[str] = None,
        filename: Optional[str] = None,
    ) -> SingleImageMigration:
        """Decode, process, store and record one legacy payload. Raises on any failure."""
        validation = self.validator.validate_legacy_payload(payload)
        validation.raise_if_invalid()
        legacy = parse_data_url(payload)

        self.disk_guard.ensure_capacity(len(legacy.data) * DISK_ESTIMATE_FACTOR)
        processed = self.processor.process(
            legacy.data,
            filename or f"migrated-image.{legacy.extension}",
            establishment_id,
            uploader_id or settings.MIGRATION_USER_ID,
        )
        written = self.file_store.store_image_files(processed)
        try:
            record = self.metadata.create(processed.record)
        except ImageError:
            self.file_store.rollback_file_operations(written)
            raise
        except Exception as e:
            self.file_store.rollback_file_operations(written)
            raise StorageFailedError(f"Failed to save image metadata: {e}")
        return SingleImageMigration(
            new_url=record.primary_url,
            record=record,
            written_files=written,
            warnings=list(validation.warnings) + list(processed.warnings),
        )

    def _discard(self, migrated: SingleImageMigration) -> None:
        self.file_store.rollback_file_operations(migrated.written_files)
        try:
            self.metadata.delete(migrated.record.id)
        except Exception as e:
            logger.error(f"Could not delete record {migrated.record.id} after failed replacement: {e}")

    def _reference_persisted(self, entity: EntityRef, new_url: str) -> bool:
        try:
            images = self.entities.get_images(entity.entity_type, entity.entity_id)
        except Exception as e:
            # unknown outcome, keep the new image rather than risk a dangling reference
            logger.error(f"Could not read back {entity.entity_type} {entity.entity_id} after failed replacement: {e}")
            return True
        return images is not None and new_url in images

    # --- entity ---

    def _notify(self, callback, value) -> None:
        if callback is None:
            return
        try:
            callback(value)
        except Exception as e:
            logger.warning(f"Migration callback raised: {e}")

    def _record_failure(
        self,
        progress: MigrationProgress,
        options: MigrationOptions,
        entity_type: str,
        entity_id: str,
        image_index: Optional[int],
        payload: Optional[str],
        error: Exception,
    ) -> MigrationFailure:
        normalized = as_image_error(error)
        failure = MigrationFailure(
            entity_type=entity_type,
            entity_id=entity_id,
            image_index=image_index,
            payload_preview=truncate_payload(payload) if payload else "",
            message=normalized.message,
            error_kind=normalized.kind.value,
        )
        progress.failures.append(failure)
        self._notify(options.error_callback, failure)
        return failure

    def _migrate_entity(
        self,
        entity: EntityRef,
        options: MigrationOptions,
        progress: MigrationProgress,
    ) -> EntityMigrationResult:
        current = self.entities.get_entity(entity.entity_type, entity.entity_id)
        if current is None:
            raise NotFoundError(f"{entity.entity_type.capitalize()} {entity.entity_id} not found")

        progress.current_entity = f"{current.entity_type}:{current.entity_id}"
        payloads = _unique_legacy_payloads(current.images)
        result = EntityMigrationResult(current.entity_type, current.entity_id, total_images=len(payloads))

        for payload, index in payloads.items():
            try:
                if options.dry_run:
                    self.validator.validate_legacy_payload(payload).raise_if_invalid()
                else:
                    ext = parse_data_url(payload).extension
                    migrated = self.migrate_single_image(
                        payload,
                        current.establishment_id,
                        options.uploader_id,
                        filename=f"{current.entity_type}-{current.entity_id}-{index}.{ext}",
                    )
                    try:
                        self.metadata.replace_legacy_in_entity(
                            current.entity_type, current.entity_id, payload, migrated.new_url
                        )
                    except Exception:
                        if not self._reference_persisted(current, migrated.new_url):
                            self._discard(migrated)
                        raise
                    result.new_urls.append(migrated.new_url)
                result.migrated += 1
                progress.success_count += 1
            except Exception as e:
                failure = self._record_failure(
                    progress, options, current.entity_type, current.entity_id, index, payload, e
                )
                result.failures.append(failure)
                result.failed += 1
                progress.failed_count += 1
                logger.error(
                    f"Failed to migrate image {index} of {current.entity_type} {current.entity_id}: {failure.message}"
                )
                if not options.skip_errors:
                    progress.processed_images += 1
                    self._notify(options.progress_callback, progress)
                    raise _MigrationAborted(failure)
            progress.processed_images += 1
            self._notify(options.progress_callback, progress)

        return result

    def migrate_entity_images(self, entity: EntityRef, options: Optional[MigrationOptions] = None) -> EntityMigrationResult:
        options = options or MigrationOptions()
        progress = MigrationProgress(total_entities=1, total_images=len(_unique_legacy_payloads(entity.images)))
        try:
            return self._migrate_entity(entity, options, progress)
        except _MigrationAborted:
            return EntityMigrationResult(
                entity.entity_type,
                entity.entity_id,
                total_images=progress.total_images,
                migrated=progress.success_count,
                failed=progress.failed_count,
                failures=list(progress.failures),
                aborted=True,
            )

    # --- batch ---

    def batch_migration(self, options: Optional[MigrationOptions] = None) -> MigrationReport:
        options = options or MigrationOptions()
        batch_size = options.batch_size or settings.MIGRATION_BATCH_SIZE
        candidates = [e for e in self.entities.list_entities() if any(is_legacy_image(r) for r in e.images)]

        progress = MigrationProgress(
            total_entities=len(candidates),
            total_images=sum(len(_unique_legacy_payloads(e.images)) for e in candidates),
        )
        report = MigrationReport(dry_run=options.dry_run, progress=progress)
        logger.info(
            f"Starting legacy image migration: {progress.total_entities} entities, "
            f"{progress.total_images} images (dry_run={options.dry_run}, skip_errors={options.skip_errors})"
        )

        try:
            for start in range(0, len(candidates), batch_size):
                batch = candidates[start:start + batch_size]
                logger.info(f"Processing batch {start // batch_size + 1} ({len(batch)} entities)")
                for entity in batch:
                    try:
                        result = self._migrate_entity(entity, options, progress)
                    except _MigrationAborted:
                        raise
                    except Exception as e:
                        failure = self._record_failure(
                            progress, options, entity.entity_type, entity.entity_id, None, None, e
                        )
                        report.failed_entities.append(entity.entity_id)
                        logger.error(f"Failed to migrate {entity.entity_type} {entity.entity_id}: {failure.message}")
                        if not options.skip_errors:
                            raise _MigrationAborted(failure)
                        continue
                    progress.processed_entities += 1
                    report.new_urls.extend(result.new_urls)
                    if result.success:
                        report.fully_converted_entities += 1
        except _MigrationAborted as e:
            report.aborted = True
            logger.error(f"Migration aborted after first failure: {e.failure.message}")

        report.total_processed = progress.processed_images
        report.success_count = progress.success_count
        report.failed_count = progress.failed_count
        report.processed_entities = progress.processed_entities
        report.errors = list(progress.failures)
        report.success = not report.aborted and (not report.errors or options.skip_errors)
        logger.info(
            f"Migration finished: {report.success_count} migrated, {report.failed_count} failed, "
            f"{report.processed_entities}/{progress.total_entities} entities completed"
        )
        return report

    # --- reporting ---

    def get_migration_stats(self) -> MigrationStats:
        entities = self.entities.list_entities()
        by_type: Dict[str, int] = {}
        with_legacy = 0
        legacy_total = 0
        legacy_bytes = 0
        for entity in entities:
            legacy = [r for r in entity.images if is_legacy_image(r)]
            if legacy:
                with_legacy += 1
            legacy_total += len(legacy)
            legacy_bytes += sum(estimated_decoded_size(r) for r in legacy)
            by_type[entity.entity_type] = by_type.get(entity.entity_type, 0) + len(legacy)
        return MigrationStats(
            total_entities=len(entities),
            entities_with_legacy_images=with_legacy,
            total_images=sum(len(e.images) for e in entities),
            total_legacy_images=legacy_total,
            estimated_legacy_bytes=legacy_bytes,
            legacy_by_entity_type=by_type,
        )

    def validate_migration_completeness(self) -> OverallMigrationStatus:
        status = self.metadata.verify_overall_migration()
        if status.is_complete:
            logger.info("Legacy image migration is complete")
        else:
            logger.warning(
                f"{len(status.remaining_entities)} entities still hold "
                f"{status.remaining_legacy_images} legacy images"
            )
        return status
