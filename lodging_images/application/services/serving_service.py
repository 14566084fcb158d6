import os
import logging
from dataclasses import dataclass
from typing import Optional

from .metadata_service import ImageMetadataStore
from .resilience_service import PlaceholderProvider
from ..ports.image_repo import ImageRecord
from ..ports.storage_repo import FileStore
from ...core.config import (
    settings,
    THUMBNAIL_SIZES,
    FALLBACK_FORMAT,
    FORMAT_EXTENSIONS,
    FORMAT_MIME_TYPES,
)
from ...core.layout import ImagePaths, image_paths
from ...exceptions import InvalidInputError, NotFoundError

logger = logging.getLogger(__name__)

_MIME_EXTENSIONS = {mime: FORMAT_EXTENSIONS[fmt] for fmt, mime in FORMAT_MIME_TYPES.items()}


@dataclass
class ServedImage:
    data: bytes
    content_type: str
    is_placeholder: bool = False
    path: Optional[str] = None


def paths_for_record(base_dir: str, record: ImageRecord) -> ImagePaths:
    return image_paths(
        base_dir,
        record.establishment_id,
        record.created_at,
        record.id,
        primary_ext=FORMAT_EXTENSIONS.get(record.primary_format, "webp"),
        original_ext=_MIME_EXTENSIONS.get(record.mime_type, "jpg"),
    )


class ImageServingService:
    def __init__(
        self,
        metadata: ImageMetadataStore,
        file_store: FileStore,
        placeholder: Optional[PlaceholderProvider] = None,
        base_dir: Optional[str] = None,
    ):
        self.metadata = metadata
        self.file_store = file_store
        self.placeholder = placeholder or PlaceholderProvider()
        self.base_dir = base_dir or settings.IMAGE_BASE_DIR

    def _require(self, image_ref: str) -> ImageRecord:
        record = self.metadata.find_by_id(image_ref)
        if not record:
            raise NotFoundError(f"Image {image_ref} not found")
        return record

    def _read_or_placeholder(self, path: str, content_type: str) -> ServedImage:
        try:
            return ServedImage(data=self.file_store.read_file(path), content_type=content_type, path=path)
        except OSError as e:
            logger.warning(f"Backing file unavailable, serving placeholder: {path} ({e})")
        placeholder = self.placeholder.get()
        return ServedImage(data=placeholder.data, content_type=placeholder.content_type, is_placeholder=True)

    def serve_image(self, image_ref: str) -> ServedImage:
        """'{id}.jpg' serves the JPEG fallback, anything else the primary rendition."""
        record = self._require(image_ref)
        paths = paths_for_record(self.base_dir, record)
        ext = os.path.splitext(image_ref)[1].lower()
        if ext in (".jpg", ".jpeg"):
            return self._read_or_placeholder(paths.fallback, FORMAT_MIME_TYPES[FALLBACK_FORMAT])
        return self._read_or_placeholder(paths.primary, FORMAT_MIME_TYPES.get(record.primary_format, "image/webp"))

    def serve_thumbnail(self, image_id: str, size: str, prefer_webp: bool = True) -> ServedImage:
        if size not in THUMBNAIL_SIZES:
            raise InvalidInputError(
                f"Invalid thumbnail size: {size}. Valid sizes: {', '.join(THUMBNAIL_SIZES)}"
            )
        record = self._require(image_id)
        paths = paths_for_record(self.base_dir, record)
        if prefer_webp and record.primary_format != FALLBACK_FORMAT:
            return self._read_or_placeholder(paths.thumbnails[size], FORMAT_MIME_TYPES[record.primary_format])
        return self._read_or_placeholder(paths.fallback_thumbnails[size], FORMAT_MIME_TYPES[FALLBACK_FORMAT])
