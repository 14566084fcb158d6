import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from .metadata_service import ImageMetadataStore
from .processing_service import ImageProcessingService
from .resilience_service import DiskSpaceGuard, as_image_error
from .validation_service import ImageValidator
from ..ports.image_repo import ImageRecord
from ..ports.storage_repo import FileStore
from ..sources import ByteSource, resolve_source, source_name
from ...core.config import settings
from ...exceptions import ImageError, InvalidInputError, StorageFailedError

logger = logging.getLogger(__name__)

# input bytes plus the renditions derived from them
DISK_ESTIMATE_FACTOR = 3


@dataclass
class UploadResult:
    record: ImageRecord
    warnings: List[str] = field(default_factory=list)
    attached_to: Optional[Tuple[str, str]] = None


@dataclass
class UploadFailure:
    filename: str
    error: ImageError

    @property
    def kind(self) -> str:
        return self.error.kind.value

    @property
    def message(self) -> str:
        return self.error.user_message


@dataclass
class BatchUploadResult:
    uploaded: List[UploadResult] = field(default_factory=list)
    failures: List[UploadFailure] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failures


@dataclass
class ImageUploadService:
    validator: ImageValidator
    processor: ImageProcessingService
    file_store: FileStore
    metadata: ImageMetadataStore
    disk_guard: DiskSpaceGuard

    def upload(
        self,
        source: ByteSource,
        establishment_id: str,
        uploader_id: str,
        attach_to: Optional[Tuple[str, str]] = None,
    ) -> UploadResult:
        data, filename = resolve_source(source)
        warnings = []

        disk = self.disk_guard.ensure_capacity(len(data) * DISK_ESTIMATE_FACTOR)
        if disk.warning:
            warnings.append(disk.warning)

        validation = self.validator.validate(data, filename)
        validation.raise_if_invalid()
        warnings.extend(validation.warnings)

        processed = self.processor.process(data, validation.sanitized_filename, establishment_id, uploader_id)
        warnings.extend(processed.warnings)

        written = self.file_store.store_image_files(processed)
        try:
            record = self.metadata.create(processed.record)
        except Exception as e:
            logger.error(f"Metadata save failed for image {processed.record.id}, rolling back files: {e}")
            self.file_store.rollback_file_operations(written)
            raise StorageFailedError(f"Failed to save image metadata: {e}")

        if attach_to:
            entity_type, entity_id = attach_to
            try:
                self.metadata.add_reference(entity_type, entity_id, record.primary_url)
            except Exception as e:
                logger.error(f"Attaching image {record.id} to {entity_type} {entity_id} failed, rolling back: {e}")
                self.file_store.rollback_file_operations(written)
                try:
                    self.metadata.delete(record.id)
                except Exception as delete_error:
                    logger.error(f"Could not delete record {record.id} after failed attach: {delete_error}")
                if isinstance(e, ImageError):
                    raise
                raise StorageFailedError(f"Failed to attach image to {entity_type} {entity_id}: {e}")

        logger.info(f"Uploaded image {record.id} ({record.width}x{record.height}) for establishment {establishment_id}")
        return UploadResult(record=record, warnings=warnings, attached_to=attach_to)

    def upload_many(
        self,
        sources: Sequence[ByteSource],
        establishment_id: str,
        uploader_id: str,
        attach_to: Optional[Tuple[str, str]] = None,
    ) -> BatchUploadResult:
        if not sources:
            raise InvalidInputError("No files provided")
        if len(sources) > settings.MAX_FILES_PER_REQUEST:
            raise InvalidInputError(
                f"Too many files: {len(sources)} (maximum {settings.MAX_FILES_PER_REQUEST})"
            )
        result = BatchUploadResult()
        for source in sources:
            try:
                result.uploaded.append(self.upload(source, establishment_id, uploader_id, attach_to))
            except Exception as e:
                error = as_image_error(e)
                name = source_name(source)
                logger.warning(f"Upload of {name} failed: {error.message}")
                result.failures.append(UploadFailure(filename=name, error=error))
        return result
