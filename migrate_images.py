#!/usr/bin/env python3
"""
Legacy inline image migration script
Moves data:image/...;base64 entries out of establishment and accommodation
records into file-backed images, then verifies nothing is left behind.
"""
import argparse
import logging
import sys

from dotenv import load_dotenv

load_dotenv()

from sqlmodel import Session

from lodging_images.core.config import settings
from lodging_images.database import engine, create_db_and_tables
from lodging_images.application.services.metadata_service import ImageMetadataStore
from lodging_images.application.services.migration_service import (
    LegacyImageMigrationService,
    MigrationFailure,
    MigrationOptions,
    MigrationProgress,
)
from lodging_images.application.services.processing_service import ImageProcessingService
from lodging_images.application.services.resilience_service import DiskSpaceGuard
from lodging_images.application.services.validation_service import ImageValidator
from lodging_images.infrastructure.codec.pillow_codec import PillowImageCodec
from lodging_images.infrastructure.persistence.sqlalchemy.repositories.entity_repository_sql import SqlEntityImagesRepository
from lodging_images.infrastructure.persistence.sqlalchemy.repositories.image_repository_sql import SqlImageRepository
from lodging_images.infrastructure.storage.local_storage import LocalFileStore

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format=settings.LOG_FORMAT
)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Migrate legacy inline images to file storage")
    parser.add_argument("--dry-run", action="store_true", help="validate payloads without writing anything")
    parser.add_argument("--batch-size", type=int, default=settings.MIGRATION_BATCH_SIZE)
    parser.add_argument("--no-skip-errors", action="store_true", help="stop at the first failure")
    parser.add_argument("--uploader-id", default=settings.MIGRATION_USER_ID)
    return parser.parse_args(argv)


def print_progress(progress: MigrationProgress):
    print(
        f"  [{progress.processed_images}/{progress.total_images}] "
        f"{progress.current_entity}: {progress.success_count} ok, {progress.failed_count} failed"
    )


def print_failure(failure: MigrationFailure):
    print(f"  ✗ {failure.entity_type} {failure.entity_id} image {failure.image_index}: {failure.message}")


def build_service(session: Session) -> LegacyImageMigrationService:
    file_store = LocalFileStore()
    entities = SqlEntityImagesRepository(session)
    return LegacyImageMigrationService(
        entities=entities,
        metadata=ImageMetadataStore(images=SqlImageRepository(session), entities=entities),
        processor=ImageProcessingService(codec=PillowImageCodec(), base_dir=file_store.base_dir),
        file_store=file_store,
        validator=ImageValidator(),
        disk_guard=DiskSpaceGuard(path=file_store.base_dir),
    )


def migrate_images(argv=None) -> bool:
    args = parse_args(argv)
    print("Connecting to database...")
    create_db_and_tables()

    with Session(engine) as session:
        service = build_service(session)

        print("Detecting legacy images...")
        legacy = service.detect_legacy_images()
        if not legacy:
            print("✓ No legacy images found")
            return True
        stats = service.get_migration_stats()
        print(
            f"Found {stats.total_legacy_images} legacy images in "
            f"{stats.entities_with_legacy_images} entities (~{stats.estimated_legacy_bytes / 1024:.1f} KB)"
        )

        options = MigrationOptions(
            skip_errors=not args.no_skip_errors,
            dry_run=args.dry_run,
            batch_size=args.batch_size,
            uploader_id=args.uploader_id,
            progress_callback=print_progress,
            error_callback=print_failure,
        )
        print("Dry run: nothing will be written" if args.dry_run else "Migrating...")
        report = service.batch_migration(options)

        print(f"Processed {report.total_processed} images: {report.success_count} ok, {report.failed_count} failed")
        print(f"Entities completed: {report.processed_entities}, fully converted: {report.fully_converted_entities}")
        if report.failed_entities:
            print(f"Entities that failed: {', '.join(report.failed_entities)}")
        if report.aborted:
            print("✗ Migration aborted at the first failure")

        if args.dry_run:
            return report.success

        print("Verifying migration...")
        status = service.validate_migration_completeness()
        if status.is_complete:
            print("✓ No legacy images remain")
        else:
            print(f"✗ {status.remaining_legacy_images} legacy images remain in:")
            for entity in status.remaining_entities:
                print(f"  - {entity.entity_type} {entity.entity_id} ({entity.legacy_count} left)")
        return report.success


if __name__ == "__main__":
    success = migrate_images()
    sys.exit(0 if success else 1)
