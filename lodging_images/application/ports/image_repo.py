from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field
from datetime import datetime

from ...core.layout import ImagePaths


@dataclass
class ThumbnailInfo:
    path: str
    url: str
    width: int
    height: int
    file_size: int


@dataclass
class ImageRecord:
    id: str
    establishment_id: str
    original_filename: str
    mime_type: str
    file_size: int
    width: int
    height: int
    primary_url: str
    fallback_url: str
    thumbnails: Dict[str, ThumbnailInfo]
    uploaded_by: str
    created_at: datetime
    primary_format: str = "webp"

    def urls(self) -> List[str]:
        return [self.primary_url, self.fallback_url, *(t.url for t in self.thumbnails.values())]


@dataclass
class ProcessedImage:
    """Output of the processing pipeline: the record to persist plus every encoded buffer."""
    record: ImageRecord
    primary: bytes
    fallback: bytes
    original: bytes
    thumbnails: Dict[str, bytes]
    fallback_thumbnails: Dict[str, bytes]
    paths: ImagePaths
    warnings: List[str] = field(default_factory=list)


class ImageRepository:
    def create(self, record: ImageRecord) -> ImageRecord:
        ...

    def get_by_id(self, image_id: str) -> Optional[ImageRecord]:
        ...

    def get_by_url(self, url: str) -> Optional[ImageRecord]:
        ...

    def list_by_establishment(self, establishment_id: str) -> List[ImageRecord]:
        ...

    def list_by_uploader(self, uploaded_by: str) -> List[ImageRecord]:
        ...

    def update(self, image_id: str, changes: Dict[str, Any]) -> Optional[ImageRecord]:
        ...

    def delete(self, image_id: str) -> bool:
        ...
