import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import List, Optional

from ..ports.entity_repo import EntityImagesRepository, EntityRef
from ..ports.image_repo import ImageRecord, ImageRepository
from ...core.config import THUMBNAIL_SIZES
from ...core.layout import image_id_from_url, strip_extension
from ...core.legacy import is_legacy_image, truncate_payload
from ...exceptions import InvalidInputError, NotFoundError, VerificationFailedError

logger = logging.getLogger(__name__)


@dataclass
class ReplacementResult:
    entity_type: str
    entity_id: str
    replaced_count: int
    images: List[str]


@dataclass
class EntityMigrationStatus:
    entity_type: str
    entity_id: str
    is_complete: bool
    legacy_count: int
    total_images: int


@dataclass
class OverallMigrationStatus:
    is_complete: bool
    total_entities: int
    remaining_legacy_images: int
    remaining_entities: List[EntityMigrationStatus] = field(default_factory=list)


@dataclass
class UsageInfo:
    url: str
    image_id: Optional[str]
    is_used: bool
    entities: List[EntityRef] = field(default_factory=list)


def _references_image(reference: str, url: str, image_id: Optional[str]) -> bool:
    if reference == url:
        return True
    return image_id is not None and image_id_from_url(reference) == image_id


@dataclass
class ImageMetadataStore:
    """Owns image records and every mutation of entity reference arrays."""

    images: ImageRepository
    entities: EntityImagesRepository

    # --- image records ---

    def _check_record(self, record: ImageRecord) -> None:
        problems = []
        if not record.establishment_id:
            problems.append("missing establishment id")
        if not record.original_filename:
            problems.append("empty filename")
        if record.width <= 0 or record.height <= 0:
            problems.append(f"invalid dimensions {record.width}x{record.height}")
        missing = [name for name in THUMBNAIL_SIZES if name not in record.thumbnails]
        if missing:
            problems.append(f"missing thumbnails: {', '.join(missing)}")
        empty = [name for name, t in record.thumbnails.items() if t.file_size <= 0]
        if empty:
            problems.append(f"empty thumbnails: {', '.join(empty)}")
        if problems:
            raise InvalidInputError(f"Refusing to persist image record {record.id}: {'; '.join(problems)}")

    def create(self, record: ImageRecord) -> ImageRecord:
        self._check_record(record)
        created = self.images.create(record)
        logger.info(f"Created image record {created.id} for establishment {created.establishment_id}")
        return created

    def find_by_id(self, image_ref: str) -> Optional[ImageRecord]:
        image_id = strip_extension(image_ref)
        if not image_id:
            return None
        return self.images.get_by_id(image_id)

    def find_by_url(self, url: str) -> Optional[ImageRecord]:
        record = self.images.get_by_url(url)
        if record:
            return record
        image_id = image_id_from_url(url)
        return self.images.get_by_id(image_id) if image_id else None

    def find_by_establishment(self, establishment_id: str) -> List[ImageRecord]:
        return self.images.list_by_establishment(establishment_id)

    def find_by_uploader(self, uploaded_by: str) -> List[ImageRecord]:
        return self.images.list_by_uploader(uploaded_by)

    def update(self, image_id: str, **changes) -> ImageRecord:
        try:
            updated = self.images.update(strip_extension(image_id), changes)
        except ValueError as e:
            raise InvalidInputError(str(e))
        if not updated:
            raise NotFoundError(f"Image {image_id} not found")
        return updated

    def delete(self, image_id: str) -> bool:
        return self.images.delete(strip_extension(image_id))

    def delete_by_url(self, url: str) -> bool:
        record = self.find_by_url(url)
        if not record:
            return False
        return self.images.delete(record.id)

    # --- reference arrays ---

    def add_reference(self, entity_type: str, entity_id: str, url: str, position: Optional[int] = None) -> List[str]:
        def mutate(images: List[str]) -> List[str]:
            if position is None:
                images.append(url)
            else:
                images.insert(position, url)
            return images

        return self.entities.update_images(entity_type, entity_id, mutate)

    def remove_reference(self, entity_type: str, entity_id: str, url: str) -> List[str]:
        return self.entities.update_images(
            entity_type, entity_id, lambda images: [ref for ref in images if ref != url]
        )

    def remove_image_references(self, entity_type: str, entity_id: str, image: ImageRecord) -> List[str]:
        """Drop every reference that points at the image, whichever rendition URL was stored."""
        return self.entities.update_images(
            entity_type,
            entity_id,
            lambda images: [ref for ref in images if not _references_image(ref, image.primary_url, image.id)],
        )

    def reorder_references(self, entity_type: str, entity_id: str, new_order: List[str]) -> List[str]:
        def mutate(images: List[str]) -> List[str]:
            if Counter(images) != Counter(new_order):
                raise InvalidInputError(
                    "Proposed order must contain exactly the current images",
                    {"current": len(images), "proposed": len(new_order)},
                )
            return list(new_order)

        return self.entities.update_images(entity_type, entity_id, mutate)

    def replace_legacy_in_entity(
        self, entity_type: str, entity_id: str, legacy_payload: str, new_url: str
    ) -> ReplacementResult:
        """
        Swap every occurrence of a legacy inline payload for new_url, then verify
        against a fresh read. A write that does not read back is a failure.
        """
        replaced = {}

        def mutate(images: List[str]) -> List[str]:
            occurrences = images.count(legacy_payload)
            if occurrences == 0:
                raise NotFoundError(
                    f"Legacy image not found in {entity_type} {entity_id}",
                    {"preview": truncate_payload(legacy_payload)},
                )
            replaced["count"] = occurrences
            replaced["existing"] = images.count(new_url)
            return [new_url if ref == legacy_payload else ref for ref in images]

        images = self.entities.update_images(entity_type, entity_id, mutate)
        written = images.count(new_url) - replaced["existing"]
        if written != replaced["count"]:
            raise VerificationFailedError(
                f"Replaced {written} of {replaced['count']} legacy occurrences in {entity_type} {entity_id}",
                {"new_url": new_url},
            )
        if not self.verify_replacement(entity_type, entity_id, legacy_payload, new_url):
            raise VerificationFailedError(
                f"Replacement in {entity_type} {entity_id} did not persist",
                {"new_url": new_url},
            )
        logger.info(f"Replaced {replaced['count']} legacy image(s) in {entity_type} {entity_id} with {new_url}")
        return ReplacementResult(entity_type, entity_id, replaced["count"], images)

    def verify_replacement(self, entity_type: str, entity_id: str, legacy_payload: str, new_url: str) -> bool:
        images = self.entities.get_images(entity_type, entity_id)
        if images is None:
            return False
        return legacy_payload not in images and new_url in images

    def _status(self, entity: EntityRef) -> EntityMigrationStatus:
        legacy = sum(1 for ref in entity.images if is_legacy_image(ref))
        return EntityMigrationStatus(
            entity_type=entity.entity_type,
            entity_id=entity.entity_id,
            is_complete=legacy == 0,
            legacy_count=legacy,
            total_images=len(entity.images),
        )

    def verify_entity_migration(self, entity_type: str, entity_id: str) -> EntityMigrationStatus:
        entity = self.entities.get_entity(entity_type, entity_id)
        if not entity:
            raise NotFoundError(f"{entity_type.capitalize()} {entity_id} not found")
        return self._status(entity)

    def verify_overall_migration(self) -> OverallMigrationStatus:
        entities = self.entities.list_entities()
        remaining = [s for s in (self._status(e) for e in entities) if not s.is_complete]
        return OverallMigrationStatus(
            is_complete=not remaining,
            total_entities=len(entities),
            remaining_legacy_images=sum(s.legacy_count for s in remaining),
            remaining_entities=remaining,
        )

    def check_usage(self, url: str) -> UsageInfo:
        record = self.find_by_url(url)
        image_id = record.id if record else image_id_from_url(url)
        using = [
            e for e in self.entities.list_entities()
            if any(_references_image(ref, url, image_id) for ref in e.images)
        ]
        return UsageInfo(url=url, image_id=image_id, is_used=bool(using), entities=using)
