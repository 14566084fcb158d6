# lodging_images/core/legacy.py
"""Grammar for legacy inline images: data:image/{subtype};base64,{payload}"""
import base64
import binascii
import re
from dataclasses import dataclass

from ..exceptions import InvalidInputError

LEGACY_IMAGE_PATTERN = re.compile(r"^data:image/([a-zA-Z0-9+\-.]+);base64,(.+)$", re.DOTALL)

PREVIEW_LENGTH = 100

# subtype -> extension used for the synthetic filename of a migrated image
_SUBTYPE_EXTENSIONS = {
    "jpeg": "jpg",
    "jpg": "jpg",
    "pjpeg": "jpg",
    "png": "png",
    "gif": "gif",
    "webp": "webp",
}


@dataclass
class LegacyPayload:
    subtype: str
    data: bytes

    @property
    def mime_type(self) -> str:
        return f"image/{self.subtype}"

    @property
    def extension(self) -> str:
        return _SUBTYPE_EXTENSIONS.get(self.subtype.lower(), "jpg")


def is_legacy_image(value) -> bool:
    return isinstance(value, str) and LEGACY_IMAGE_PATTERN.match(value) is not None


def parse_data_url(value: str) -> LegacyPayload:
    if not isinstance(value, str):
        raise InvalidInputError("Legacy image payload must be a string")
    match = LEGACY_IMAGE_PATTERN.match(value)
    if not match:
        raise InvalidInputError(
            "Invalid legacy image format: expected data:image/{type};base64,{data}",
            {"preview": truncate_payload(value)},
        )
    subtype, payload = match.group(1), match.group(2)
    # line-wrapped base64 is common in old records
    payload = "".join(payload.split())
    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidInputError(f"Invalid base64 payload: {e}", {"preview": truncate_payload(value)})
    if not data:
        raise InvalidInputError("Legacy image payload decodes to no data")
    return LegacyPayload(subtype=subtype, data=data)


def estimated_decoded_size(value: str) -> int:
    match = LEGACY_IMAGE_PATTERN.match(value or "")
    if not match:
        return 0
    payload = "".join(match.group(2).split())
    return (len(payload) * 3) // 4 - payload.count("=")


def truncate_payload(value, limit: int = PREVIEW_LENGTH) -> str:
    text = value if isinstance(value, str) else repr(value)
    if len(text) <= limit:
        return text
    return text[:limit] + "..."
