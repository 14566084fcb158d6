# Per-request wiring of stores and services. Tests override the leaf providers.
from fastapi import Depends
from sqlmodel import Session

from .database import get_session
from .application.services.management_service import ImageManagementService
from .application.services.metadata_service import ImageMetadataStore
from .application.services.migration_service import LegacyImageMigrationService
from .application.services.processing_service import ImageProcessingService
from .application.services.resilience_service import DiskSpaceGuard, PlaceholderProvider
from .application.services.serving_service import ImageServingService
from .application.services.upload_service import ImageUploadService
from .application.services.validation_service import ImageValidator
from .infrastructure.codec.pillow_codec import PillowImageCodec
from .infrastructure.persistence.sqlalchemy.repositories.entity_repository_sql import SqlEntityImagesRepository
from .infrastructure.persistence.sqlalchemy.repositories.image_repository_sql import SqlImageRepository
from .infrastructure.storage.local_storage import LocalFileStore


def get_file_store() -> LocalFileStore:
    return LocalFileStore()


def get_disk_guard(file_store: LocalFileStore = Depends(get_file_store)) -> DiskSpaceGuard:
    return DiskSpaceGuard(path=file_store.base_dir)


def get_placeholder() -> PlaceholderProvider:
    return PlaceholderProvider()


def get_validator() -> ImageValidator:
    return ImageValidator()


def get_processor(file_store: LocalFileStore = Depends(get_file_store)) -> ImageProcessingService:
    return ImageProcessingService(codec=PillowImageCodec(), base_dir=file_store.base_dir)


def get_entity_repository(session: Session = Depends(get_session)) -> SqlEntityImagesRepository:
    return SqlEntityImagesRepository(session)


def get_metadata_store(
    session: Session = Depends(get_session),
    entities: SqlEntityImagesRepository = Depends(get_entity_repository),
) -> ImageMetadataStore:
    return ImageMetadataStore(images=SqlImageRepository(session), entities=entities)


def get_upload_service(
    validator: ImageValidator = Depends(get_validator),
    processor: ImageProcessingService = Depends(get_processor),
    file_store: LocalFileStore = Depends(get_file_store),
    metadata: ImageMetadataStore = Depends(get_metadata_store),
    disk_guard: DiskSpaceGuard = Depends(get_disk_guard),
) -> ImageUploadService:
    return ImageUploadService(
        validator=validator,
        processor=processor,
        file_store=file_store,
        metadata=metadata,
        disk_guard=disk_guard,
    )


def get_serving_service(
    metadata: ImageMetadataStore = Depends(get_metadata_store),
    file_store: LocalFileStore = Depends(get_file_store),
    placeholder: PlaceholderProvider = Depends(get_placeholder),
) -> ImageServingService:
    return ImageServingService(metadata, file_store, placeholder=placeholder, base_dir=file_store.base_dir)


def get_management_service(
    metadata: ImageMetadataStore = Depends(get_metadata_store),
    file_store: LocalFileStore = Depends(get_file_store),
) -> ImageManagementService:
    return ImageManagementService(metadata=metadata, file_store=file_store)


def get_migration_service(
    entities: SqlEntityImagesRepository = Depends(get_entity_repository),
    metadata: ImageMetadataStore = Depends(get_metadata_store),
    processor: ImageProcessingService = Depends(get_processor),
    file_store: LocalFileStore = Depends(get_file_store),
    validator: ImageValidator = Depends(get_validator),
    disk_guard: DiskSpaceGuard = Depends(get_disk_guard),
) -> LegacyImageMigrationService:
    return LegacyImageMigrationService(
        entities=entities,
        metadata=metadata,
        processor=processor,
        file_store=file_store,
        validator=validator,
        disk_guard=disk_guard,
    )
