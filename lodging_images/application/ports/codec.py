from dataclasses import dataclass
from typing import Optional, Protocol


@dataclass
class ImageInfo:
    format: str
    width: int
    height: int
    channels: int
    has_alpha: bool = False


@dataclass
class EncodedThumbnail:
    data: bytes
    width: int
    height: int


class ImageCodec(Protocol):
    def inspect(self, data: bytes) -> ImageInfo:
        ...

    def encode(self, data: bytes, fmt: str, quality: int, effort: Optional[int] = None) -> bytes:
        ...

    def thumbnail(self, data: bytes, width: int, height: int, fmt: str, quality: int) -> EncodedThumbnail:
        ...
