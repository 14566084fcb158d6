# lodging_images/core/layout.py
"""
Directory layout and URL scheme for stored images.

Everything here is a pure function of (establishment id, upload date, image id):
    {base}/{establishment_id}/{YYYY}/{MM}/originals/{id}{ext}
    {base}/{establishment_id}/{YYYY}/{MM}/primary/{id}.webp
    {base}/{establishment_id}/{YYYY}/{MM}/fallback/{id}.jpg
    {base}/{establishment_id}/{YYYY}/{MM}/thumbnails/{size}/{id}_{W}x{H}.{ext}
"""
import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional

from .config import THUMBNAIL_SIZES
from ..exceptions import InvalidInputError

ORIGINALS = "originals"
PRIMARY = "primary"
FALLBACK = "fallback"
THUMBNAILS = "thumbnails"

API_PREFIX = "/api/images"

_ESTABLISHMENT_ID = re.compile(r"^[A-Za-z0-9_-]+$")
_IMAGE_URL = re.compile(r"^/api/images/([^/.]+)(?:\.[A-Za-z0-9]+)?(?:/thumbnail/[a-z]+)?/?$")


@dataclass
class DirectoryLayout:
    root: str
    originals: str
    primary: str
    fallback: str
    thumbnails: Dict[str, str] = field(default_factory=dict)

    def all_directories(self):
        return [self.originals, self.primary, self.fallback, *self.thumbnails.values()]


@dataclass
class ImagePaths:
    original: str
    primary: str
    fallback: str
    thumbnails: Dict[str, str]
    fallback_thumbnails: Dict[str, str]


def validate_establishment_id(establishment_id: str) -> str:
    if not establishment_id or not _ESTABLISHMENT_ID.match(str(establishment_id)):
        raise InvalidInputError(
            f"Invalid establishment id: {establishment_id!r}",
            {"establishment_id": establishment_id},
        )
    return str(establishment_id)


def image_base_path(base_dir: str, establishment_id: str, when: datetime) -> str:
    establishment_id = validate_establishment_id(establishment_id)
    # aware timestamps are filed under their UTC month; naive ones are taken as UTC already
    if when.tzinfo is not None:
        when = when.astimezone(timezone.utc)
    return os.path.join(base_dir, establishment_id, f"{when.year:04d}", f"{when.month:02d}")


def directory_layout(base_dir: str, establishment_id: str, when: datetime) -> DirectoryLayout:
    root = image_base_path(base_dir, establishment_id, when)
    return DirectoryLayout(
        root=root,
        originals=os.path.join(root, ORIGINALS),
        primary=os.path.join(root, PRIMARY),
        fallback=os.path.join(root, FALLBACK),
        thumbnails={name: os.path.join(root, THUMBNAILS, name) for name in THUMBNAIL_SIZES},
    )


def thumbnail_filename(image_id: str, size: str, ext: str) -> str:
    width, height = THUMBNAIL_SIZES[size]
    return f"{image_id}_{width}x{height}.{ext}"


def image_paths(
    base_dir: str,
    establishment_id: str,
    when: datetime,
    image_id: str,
    primary_ext: str = "webp",
    original_ext: str = ".jpg",
) -> ImagePaths:
    layout = directory_layout(base_dir, establishment_id, when)
    if original_ext and not original_ext.startswith("."):
        original_ext = f".{original_ext}"
    return ImagePaths(
        original=os.path.join(layout.originals, f"{image_id}{original_ext}"),
        primary=os.path.join(layout.primary, f"{image_id}.{primary_ext}"),
        fallback=os.path.join(layout.fallback, f"{image_id}.jpg"),
        thumbnails={
            name: os.path.join(path, thumbnail_filename(image_id, name, primary_ext))
            for name, path in layout.thumbnails.items()
        },
        fallback_thumbnails={
            name: os.path.join(path, thumbnail_filename(image_id, name, "jpg"))
            for name, path in layout.thumbnails.items()
        },
    )


def primary_url(image_id: str, ext: str = "webp") -> str:
    return f"{API_PREFIX}/{image_id}.{ext}"


def fallback_url(image_id: str) -> str:
    return f"{API_PREFIX}/{image_id}.jpg"


def thumbnail_url(image_id: str, size: str) -> str:
    return f"{API_PREFIX}/{image_id}/thumbnail/{size}"


def strip_extension(image_ref: str) -> str:
    """'abc123.webp' -> 'abc123'. Lookup keys never carry an extension."""
    base = os.path.basename(image_ref or "")
    return base.split(".", 1)[0]


def image_id_from_url(url: str) -> Optional[str]:
    """Extract the image id from any of the servable URL shapes, or None for foreign URLs."""
    if not url:
        return None
    match = _IMAGE_URL.match(url)
    return match.group(1) if match else None
