import io
import logging
from typing import Optional, Tuple

from PIL import Image, ImageOps

from ...application.ports.codec import EncodedThumbnail, ImageCodec, ImageInfo
from ...exceptions import ConversionFailedError, InvalidInputError, ThumbnailFailedError

logger = logging.getLogger(__name__)

_PIL_FORMATS = {"webp": "WEBP", "jpeg": "JPEG", "png": "PNG", "gif": "GIF"}

_DECODE_ERRORS = (OSError, ValueError, SyntaxError, Image.DecompressionBombError)


def cover_size(source: Tuple[int, int], box: Tuple[int, int]) -> Tuple[int, int]:
    """
    Size of a "cover" thumbnail that never enlarges the source.

    The source is cropped (centered) to the box aspect ratio; the crop is then
    scaled down to the box, or kept as-is when it is already smaller.
    """
    src_w, src_h = source
    box_w, box_h = box
    if src_w * box_h > src_h * box_w:
        crop_w, crop_h = int(src_h * box_w / box_h), src_h
    else:
        crop_w, crop_h = src_w, int(src_w * box_h / box_w)
    return max(1, min(box_w, crop_w)), max(1, min(box_h, crop_h))


class PillowImageCodec(ImageCodec):
    def _decode(self, data: bytes) -> Tuple[Image.Image, str]:
        try:
            image = Image.open(io.BytesIO(data))
            image.load()
        except _DECODE_ERRORS as e:
            raise InvalidInputError(f"Invalid image: {e}")
        fmt = (image.format or "").lower()
        # honour the camera orientation before any resize
        return ImageOps.exif_transpose(image), fmt

    def _open(self, data: bytes) -> Image.Image:
        return self._decode(data)[0]

    def inspect(self, data: bytes) -> ImageInfo:
        image, fmt = self._decode(data)
        bands = image.getbands()
        return ImageInfo(
            format=fmt,
            width=image.width,
            height=image.height,
            channels=len(bands),
            has_alpha="A" in bands or "transparency" in image.info,
        )

    def _prepare(self, image: Image.Image, fmt: str) -> Image.Image:
        if fmt == "jpeg":
            # Convert to RGB if necessary
            if image.mode != "RGB":
                image = image.convert("RGB")
        elif image.mode not in ("RGB", "RGBA"):
            has_alpha = "A" in image.getbands() or "transparency" in image.info
            image = image.convert("RGBA" if has_alpha else "RGB")
        return image

    def _save(self, image: Image.Image, fmt: str, quality: int, effort: Optional[int] = None) -> bytes:
        pil_format = _PIL_FORMATS.get(fmt)
        if pil_format is None:
            raise ConversionFailedError(f"Unsupported output format: {fmt}")
        image = self._prepare(image, fmt)
        buffer = io.BytesIO()
        if fmt == "webp":
            image.save(buffer, pil_format, quality=quality, method=4 if effort is None else effort)
        elif fmt == "jpeg":
            image.save(buffer, pil_format, quality=quality, progressive=True, optimize=True)
        else:
            image.save(buffer, pil_format)
        return buffer.getvalue()

    def encode(self, data: bytes, fmt: str, quality: int, effort: Optional[int] = None) -> bytes:
        image = self._open(data)
        try:
            return self._save(image, fmt, quality, effort)
        except (OSError, ValueError, KeyError) as e:
            raise ConversionFailedError(f"{fmt.upper()} conversion failed: {e}")

    def thumbnail(self, data: bytes, width: int, height: int, fmt: str, quality: int) -> EncodedThumbnail:
        image = self._open(data)
        size = cover_size((image.width, image.height), (width, height))
        try:
            fitted = ImageOps.fit(image, size, method=Image.Resampling.LANCZOS, centering=(0.5, 0.5))
            encoded = self._save(fitted, fmt, quality)
        except (OSError, ValueError, KeyError) as e:
            raise ThumbnailFailedError(f"Failed to generate {width}x{height} thumbnail: {e}")
        return EncodedThumbnail(data=encoded, width=fitted.width, height=fitted.height)
