import os
import re
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from ...core.config import settings, FORMAT_MIME_TYPES
from ...core.legacy import parse_data_url
from ...exceptions import ErrorKind, ImageError, error_for_kind

logger = logging.getLogger(__name__)

FALLBACK_FILENAME = "unnamed_file"
MAX_FILENAME_BYTES = 255
EXIF_WARNING_BYTES = 64 * 1024

SIGNATURES = (
    ("jpeg", b"\xff\xd8\xff"),
    ("png", b"\x89PNG\r\n\x1a\n"),
    ("gif", b"GIF87a"),
    ("gif", b"GIF89a"),
)

INJECTION_PATTERNS = [re.compile(p, re.IGNORECASE) for p in (
    rb"<script",
    rb"javascript:",
    rb"vbscript:",
    rb"onload\s*=",
    rb"onerror\s*=",
    rb"onclick\s*=",
    rb"onmouseover\s*=",
    rb"<iframe",
    rb"<object",
    rb"<embed",
    rb"data:text/html",
)]

POLYGLOT_HEADERS = (
    (b"MZ", "PE executable"),
    (b"PK", "ZIP archive"),
    (b"%PDF", "PDF document"),
)

_UNSAFE_CHARS = re.compile(r'[/\\:*?"<>|\x00-\x1f\x7f]')


@dataclass
class ValidationResult:
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    detected_format: Optional[str] = None
    mime_type: Optional[str] = None
    sanitized_filename: Optional[str] = None
    error_kind: Optional[ErrorKind] = None

    def raise_if_invalid(self) -> None:
        if self.is_valid:
            return
        raise error_for_kind(
            self.error_kind or ErrorKind.INVALID_INPUT,
            "; ".join(self.errors) or "Invalid image",
            {"errors": list(self.errors)},
        )


@dataclass
class SecurityScan:
    threats: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def is_safe(self) -> bool:
        return not self.threats


def detect_format(data: bytes) -> Optional[str]:
    for fmt, signature in SIGNATURES:
        if data.startswith(signature):
            return fmt
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "webp"
    return None


def _sanitize_once(filename: str) -> str:
    cleaned = _UNSAFE_CHARS.sub("_", filename)
    cleaned = cleaned.replace("..", "_")
    cleaned = cleaned.lstrip(".").strip()
    if not cleaned or cleaned == "_":
        return FALLBACK_FILENAME
    encoded = cleaned.encode("utf-8")
    if len(encoded) > MAX_FILENAME_BYTES:
        stem, ext = os.path.splitext(cleaned)
        ext_bytes = ext.encode("utf-8")
        if len(ext_bytes) >= MAX_FILENAME_BYTES:
            ext, ext_bytes = "", b""
        budget = MAX_FILENAME_BYTES - len(ext_bytes)
        stem = stem.encode("utf-8")[:budget].decode("utf-8", errors="ignore")
        cleaned = stem + ext
    return cleaned


def sanitize_filename(filename: Optional[str]) -> str:
    """Make a client filename safe to store. sanitize_filename(sanitize_filename(x)) == sanitize_filename(x)."""
    current = filename or ""
    while True:
        cleaned = _sanitize_once(current)
        if cleaned == current:
            return cleaned
        current = cleaned


def exif_segment_bytes(data: bytes) -> int:
    """Total payload of JPEG APP1 segments before the start of scan."""
    if not data.startswith(b"\xff\xd8"):
        return 0
    total = 0
    offset = 2
    while offset + 4 <= len(data):
        if data[offset] != 0xFF:
            break
        marker = data[offset + 1]
        if marker == 0xFF:
            # fill byte
            offset += 1
            continue
        if marker == 0xDA or marker == 0xD9:
            break
        length = (data[offset + 2] << 8) | data[offset + 3]
        if length < 2:
            break
        if marker == 0xE1:
            total += length
        offset += 2 + length
    return total


class ImageValidator:
    def __init__(
        self,
        max_file_size: Optional[int] = None,
        allowed_formats: Optional[List[str]] = None,
        enable_security_scan: Optional[bool] = None,
    ):
        self.max_file_size = max_file_size if max_file_size is not None else settings.MAX_FILE_SIZE
        self.allowed_formats = [f.lower() for f in (allowed_formats or settings.allowed_image_formats_list)]
        self.enable_security_scan = (
            settings.ENABLE_SECURITY_SCAN if enable_security_scan is None else enable_security_scan
        )

    def validate(self, data: bytes, filename: Optional[str]) -> ValidationResult:
        sanitized = sanitize_filename(filename)
        result = ValidationResult(is_valid=False, sanitized_filename=sanitized)

        if not data:
            result.errors.append("File is empty")
            result.error_kind = ErrorKind.INVALID_INPUT
            return result

        if len(data) > self.max_file_size:
            result.errors.append(
                f"File size {len(data)} bytes exceeds maximum allowed size of {self.max_file_size} bytes"
            )
            result.error_kind = ErrorKind.SIZE_EXCEEDED
            return result

        detected = detect_format(data)
        if detected is None:
            result.errors.append("Unable to detect valid image format from file content")
            result.error_kind = ErrorKind.INVALID_INPUT
            return result
        result.detected_format = detected
        result.mime_type = FORMAT_MIME_TYPES[detected]
        if detected not in self.allowed_formats:
            result.errors.append(
                f'Format "{detected}" is not allowed. Allowed formats: {", ".join(self.allowed_formats)}'
            )
            result.error_kind = ErrorKind.INVALID_INPUT
            return result

        if filename is not None and sanitized != filename:
            result.warnings.append(f'Filename was sanitized from "{filename}" to "{sanitized}"')

        if self.enable_security_scan:
            scan = self.scan_content(data)
            result.warnings.extend(scan.warnings)
            if not scan.is_safe:
                logger.warning(f"Security scan rejected {sanitized}: {scan.threats}")
                result.errors.extend(scan.threats)
                result.error_kind = ErrorKind.SECURITY_REJECTED
                return result

        result.is_valid = True
        return result

    def scan_content(self, data: bytes) -> SecurityScan:
        scan = SecurityScan()
        for pattern in INJECTION_PATTERNS:
            if pattern.search(data):
                scan.threats.append(
                    f"Potentially malicious content detected: {pattern.pattern.decode('ascii')}"
                )
        for header, label in POLYGLOT_HEADERS:
            if data.startswith(header):
                scan.warnings.append(
                    f"File starts with a {label} signature and might be a polyglot file"
                )
        exif_bytes = exif_segment_bytes(data)
        if exif_bytes > EXIF_WARNING_BYTES:
            scan.warnings.append(f"File contains unusually large metadata sections ({exif_bytes} bytes of EXIF)")
        return scan

    def sanitize_filename(self, filename: Optional[str]) -> str:
        return sanitize_filename(filename)

    def validate_legacy_payload(self, text: str) -> ValidationResult:
        try:
            payload = parse_data_url(text)
        except ImageError as e:
            return ValidationResult(is_valid=False, errors=[e.message], error_kind=e.kind)
        return self.validate(payload.data, f"legacy-image.{payload.extension}")
