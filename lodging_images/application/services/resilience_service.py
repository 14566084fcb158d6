import os
import shutil
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from ..ports.codec import ImageCodec
from ...core.config import settings, PRIMARY_FORMAT, FALLBACK_FORMAT
from ...exceptions import (
    ConversionFailedError,
    DiskSpaceLowError,
    ErrorKind,
    ImageError,
    StorageFailedError,
    error_for_kind,
)

logger = logging.getLogger(__name__)

PLACEHOLDER_SVG = """<svg width="400" height="300" xmlns="http://www.w3.org/2000/svg">
  <rect width="100%" height="100%" fill="#f0f0f0"/>
  <text x="50%" y="50%" text-anchor="middle" dy=".3em" font-family="Arial, sans-serif" font-size="16" fill="#666">
    Image not available
  </text>
</svg>
"""

TEST_WRITE_FILENAME = ".disk-space-test"
TEST_WRITE_SIZE = 1024


@dataclass
class DiskSpaceStatus:
    has_space: bool
    available_bytes: Optional[int] = None
    total_bytes: Optional[int] = None
    used_percent: Optional[float] = None
    warning: Optional[str] = None
    method: str = "disk_usage"


def _test_write(path: str) -> None:
    scratch = os.path.join(path, TEST_WRITE_FILENAME)
    with open(scratch, "wb") as f:
        f.write(b"0" * TEST_WRITE_SIZE)
    os.remove(scratch)


def _existing_ancestor(path: str) -> str:
    current = os.path.abspath(path)
    while not os.path.exists(current):
        parent = os.path.dirname(current)
        if parent == current:
            break
        current = parent
    return current


class DiskSpaceGuard:
    """
    Refuses writes when free space drops below the configured minimum.

    When the platform cannot report usage, a small test write decides instead:
    a failed test write means no space, while a total inability to determine space
    lets the upload through with a warning.
    """

    def __init__(
        self,
        path: Optional[str] = None,
        min_free_bytes: Optional[int] = None,
        warning_percent: Optional[float] = None,
        usage_fn: Callable = shutil.disk_usage,
        write_check: Callable[[str], None] = _test_write,
    ):
        self.path = path or settings.IMAGE_BASE_DIR
        self.min_free_bytes = settings.min_free_disk_bytes if min_free_bytes is None else min_free_bytes
        self.warning_percent = settings.DISK_WARNING_PERCENT if warning_percent is None else warning_percent
        self.usage_fn = usage_fn
        self.write_check = write_check

    def check(self, required_bytes: int = 0) -> DiskSpaceStatus:
        target = _existing_ancestor(self.path)
        try:
            usage = self.usage_fn(target)
        except (NotImplementedError, AttributeError):
            return self._check_by_writing(target)
        except Exception as e:
            logger.warning(f"Could not determine disk space for {target}: {e}")
            return DiskSpaceStatus(
                has_space=True,
                warning="Could not determine available disk space; assuming space is available",
                method="unknown",
            )

        available = usage.free
        used_percent = (usage.used / usage.total * 100.0) if usage.total else 0.0
        status = DiskSpaceStatus(
            has_space=available - required_bytes >= self.min_free_bytes,
            available_bytes=available,
            total_bytes=usage.total,
            used_percent=used_percent,
        )
        available_mb = available / (1024 * 1024)
        min_mb = self.min_free_bytes / (1024 * 1024)
        if not status.has_space:
            status.warning = f"Low disk space: {available_mb:.2f}MB available (minimum {min_mb:.0f}MB required)"
        elif used_percent > self.warning_percent:
            status.warning = f"Disk usage is high: {used_percent:.1f}% used"
        return status

    def _check_by_writing(self, target: str) -> DiskSpaceStatus:
        try:
            self.write_check(target)
        except OSError as e:
            logger.error(f"Disk space test write failed in {target}: {e}")
            return DiskSpaceStatus(
                has_space=False,
                warning=f"Test write failed: {e}",
                method="test_write",
            )
        return DiskSpaceStatus(
            has_space=True,
            warning="Disk space could not be queried directly; test write succeeded",
            method="test_write",
        )

    def ensure_capacity(self, required_bytes: int = 0) -> DiskSpaceStatus:
        status = self.check(required_bytes)
        if not status.has_space:
            raise DiskSpaceLowError(
                status.warning or "Insufficient disk space",
                {
                    "available_bytes": status.available_bytes,
                    "required_bytes": required_bytes,
                    "min_free_bytes": self.min_free_bytes,
                },
            )
        if status.warning:
            logger.warning(status.warning)
        return status


@dataclass
class EncodeOutcome:
    data: bytes
    format: str
    used_fallback: bool = False
    warning: Optional[str] = None


class ConversionFallback:
    """Encode in the primary format, dropping to the fallback format when the primary encoder fails."""

    def __init__(
        self,
        codec: ImageCodec,
        primary_quality: Optional[int] = None,
        primary_effort: Optional[int] = None,
        fallback_quality: Optional[int] = None,
    ):
        self.codec = codec
        self.primary_quality = settings.PRIMARY_QUALITY if primary_quality is None else primary_quality
        self.primary_effort = settings.PRIMARY_EFFORT if primary_effort is None else primary_effort
        self.fallback_quality = settings.FALLBACK_QUALITY if fallback_quality is None else fallback_quality

    def encode(self, data: bytes) -> EncodeOutcome:
        try:
            encoded = self.codec.encode(data, PRIMARY_FORMAT, self.primary_quality, effort=self.primary_effort)
            return EncodeOutcome(data=encoded, format=PRIMARY_FORMAT)
        except Exception as primary_error:
            logger.warning(f"WebP conversion failed, attempting JPEG fallback: {primary_error}")
            try:
                encoded = self.codec.encode(data, FALLBACK_FORMAT, self.fallback_quality)
            except Exception as fallback_error:
                raise ConversionFailedError(
                    f"Both WebP and JPEG conversion failed. WebP error: {primary_error}. JPEG error: {fallback_error}",
                    {"primary_error": str(primary_error), "fallback_error": str(fallback_error)},
                )
            return EncodeOutcome(
                data=encoded,
                format=FALLBACK_FORMAT,
                used_fallback=True,
                warning=f"WebP conversion failed, served as JPEG: {primary_error}",
            )


@dataclass
class Placeholder:
    data: bytes
    content_type: str


class PlaceholderProvider:
    def __init__(self, path: Optional[str] = None):
        self.path = path if path is not None else settings.PLACEHOLDER_IMAGE_PATH

    def get(self) -> Placeholder:
        """Never raises. Prefers the on-disk JPEG, otherwise a generated SVG."""
        try:
            with open(self.path, "rb") as f:
                data = f.read()
            if data:
                return Placeholder(data=data, content_type="image/jpeg")
        except (OSError, TypeError, ValueError) as e:
            logger.debug(f"Placeholder file unavailable ({self.path}): {e}")
        return Placeholder(data=PLACEHOLDER_SVG.encode("utf-8"), content_type="image/svg+xml")


def as_image_error(exc: Exception, default_kind: ErrorKind = ErrorKind.STORAGE_FAILED) -> ImageError:
    """Normalize any failure into the pipeline taxonomy."""
    if isinstance(exc, ImageError):
        return exc
    if isinstance(exc, OSError):
        return StorageFailedError(f"File system error: {exc}")
    return error_for_kind(default_kind, str(exc) or type(exc).__name__)
