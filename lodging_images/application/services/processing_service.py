import uuid
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional

from .resilience_service import ConversionFallback
from .validation_service import detect_format, sanitize_filename
from ..ports.codec import ImageCodec
from ..ports.image_repo import ImageRecord, ProcessedImage, ThumbnailInfo
from ...core.config import (
    settings,
    THUMBNAIL_SIZES,
    FALLBACK_FORMAT,
    FORMAT_EXTENSIONS,
    FORMAT_MIME_TYPES,
)
from ...core.layout import (
    fallback_url,
    image_paths,
    primary_url,
    thumbnail_url,
    validate_establishment_id,
)
from ...exceptions import InvalidInputError, ThumbnailFailedError

logger = logging.getLogger(__name__)

DECODER_FORMAT_ALIASES = {"mpo": "jpeg"}


@dataclass
class ImageProcessingService:
    """Turns admitted bytes into every rendition plus the record describing them. Writes nothing."""

    codec: ImageCodec
    base_dir: str = field(default_factory=lambda: settings.IMAGE_BASE_DIR)
    primary_quality: int = field(default_factory=lambda: settings.PRIMARY_QUALITY)
    primary_effort: int = field(default_factory=lambda: settings.PRIMARY_EFFORT)
    fallback_quality: int = field(default_factory=lambda: settings.FALLBACK_QUALITY)

    def __post_init__(self) -> None:
        self.conversion = ConversionFallback(
            self.codec,
            primary_quality=self.primary_quality,
            primary_effort=self.primary_effort,
            fallback_quality=self.fallback_quality,
        )

    def process(
        self,
        data: bytes,
        filename: str,
        establishment_id: str,
        uploader_id: str,
        now: Optional[datetime] = None,
    ) -> ProcessedImage:
        validate_establishment_id(establishment_id)
        warnings = []

        # 1-2. decodability and dimensions
        info = self.codec.inspect(data)
        if info.width <= 0 or info.height <= 0:
            raise InvalidInputError(f"Invalid image dimensions: {info.width}x{info.height}")
        # the signature decides the format; Pillow reports camera JPEGs as "mpo"
        source_format = detect_format(data) or DECODER_FORMAT_ALIASES.get(info.format, info.format)
        if source_format not in FORMAT_MIME_TYPES:
            raise InvalidInputError(f"Unsupported image format: {source_format or 'unknown'}")

        # 3. primary encoding, falling back to JPEG
        outcome = self.conversion.encode(data)
        served_format = outcome.format
        if outcome.warning:
            warnings.append(outcome.warning)

        # 4. fallback encoding, independent of the primary
        if served_format == FALLBACK_FORMAT:
            fallback = outcome.data
        else:
            try:
                fallback = self.codec.encode(data, FALLBACK_FORMAT, self.fallback_quality)
            except Exception as e:
                logger.warning(f"JPEG fallback encoding failed, reusing primary buffer: {e}")
                warnings.append(f"Fallback encoding failed, primary buffer reused: {e}")
                fallback = outcome.data

        # 5. thumbnails, all or nothing
        thumbnails: Dict[str, bytes] = {}
        fallback_thumbnails: Dict[str, bytes] = {}
        dimensions = {}
        for name, (width, height) in THUMBNAIL_SIZES.items():
            try:
                served = self.codec.thumbnail(data, width, height, served_format, self.primary_quality)
                if served_format == FALLBACK_FORMAT:
                    jpeg = served
                else:
                    jpeg = self.codec.thumbnail(data, width, height, FALLBACK_FORMAT, self.fallback_quality)
            except ThumbnailFailedError:
                raise
            except Exception as e:
                raise ThumbnailFailedError(f"Failed to generate {name} thumbnail: {e}", {"size": name})
            if not served.data or not jpeg.data:
                raise ThumbnailFailedError(f"Empty {name} thumbnail produced", {"size": name})
            for rendition in (served, jpeg):
                if rendition.width > width or rendition.height > height:
                    raise ThumbnailFailedError(
                        f"{name} thumbnail {rendition.width}x{rendition.height} exceeds {width}x{height}",
                        {"size": name},
                    )
            thumbnails[name] = served.data
            fallback_thumbnails[name] = jpeg.data
            dimensions[name] = (served.width, served.height)

        image_id = uuid.uuid4().hex
        created_at = now or datetime.now(timezone.utc)
        served_ext = FORMAT_EXTENSIONS[served_format]
        paths = image_paths(
            self.base_dir,
            establishment_id,
            created_at,
            image_id,
            primary_ext=served_ext,
            original_ext=FORMAT_EXTENSIONS[source_format],
        )

        record = ImageRecord(
            id=image_id,
            establishment_id=establishment_id,
            original_filename=sanitize_filename(filename),
            mime_type=FORMAT_MIME_TYPES[source_format],
            file_size=len(data),
            width=info.width,
            height=info.height,
            primary_url=primary_url(image_id, served_ext),
            fallback_url=fallback_url(image_id),
            primary_format=served_format,
            thumbnails={
                name: ThumbnailInfo(
                    path=paths.thumbnails[name],
                    url=thumbnail_url(image_id, name),
                    width=dimensions[name][0],
                    height=dimensions[name][1],
                    file_size=len(thumbnails[name]),
                )
                for name in THUMBNAIL_SIZES
            },
            uploaded_by=uploader_id,
            created_at=created_at,
        )
        logger.info(
            f"Processed image {image_id} ({info.width}x{info.height} {source_format} -> {served_format}) "
            f"for establishment {establishment_id}"
        )
        return ProcessedImage(
            record=record,
            primary=outcome.data,
            fallback=fallback,
            original=data,
            thumbnails=thumbnails,
            fallback_thumbnails=fallback_thumbnails,
            paths=paths,
            warnings=warnings,
        )