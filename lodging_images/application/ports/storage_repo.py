from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Protocol

from .image_repo import ProcessedImage
from ...core.layout import DirectoryLayout


@dataclass
class CleanupResult:
    success: bool = True
    deleted_files: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


@dataclass
class OrphanedFile:
    path: str
    kind: str
    image_id: Optional[str]
    size: int
    last_modified: datetime


class FileStore(Protocol):
    def create_establishment_directories(self, establishment_id: str, when: datetime) -> DirectoryLayout:
        ...

    def store_original(self, processed: ProcessedImage) -> List[str]:
        ...

    def store_primary(self, processed: ProcessedImage) -> List[str]:
        ...

    def store_fallback(self, processed: ProcessedImage) -> List[str]:
        ...

    def store_thumbnails(self, processed: ProcessedImage) -> List[str]:
        ...

    def store_image_files(self, processed: ProcessedImage) -> List[str]:
        ...

    def file_exists(self, path: str) -> bool:
        ...

    def read_file(self, path: str) -> bytes:
        ...

    def delete_files(self, paths: List[str]) -> CleanupResult:
        ...

    def complete_cleanup(self, image_id: str, establishment_id: str, when: datetime) -> CleanupResult:
        ...

    def rollback_file_operations(self, paths: List[str]) -> List[str]:
        ...

    def find_orphaned_files(self, establishment_id: Optional[str] = None) -> List[OrphanedFile]:
        ...

    def cleanup_empty_directories(self, establishment_id: Optional[str] = None) -> int:
        ...
