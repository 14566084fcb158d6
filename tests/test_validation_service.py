import pytest

from conftest import make_data_url, make_image_bytes

from lodging_images.application.services.validation_service import (
    ImageValidator,
    detect_format,
    exif_segment_bytes,
    sanitize_filename,
)
from lodging_images.exceptions import ErrorKind, SecurityRejectedError, SizeExceededError


SIGNED = {
    "jpeg": b"\xff\xd8\xff\xe0" + b"\x00" * 32,
    "png": b"\x89PNG\r\n\x1a\n" + b"\x00" * 32,
    "gif": b"GIF89a" + b"\x00" * 32,
    "webp": b"RIFF\x24\x00\x00\x00WEBPVP8 " + b"\x00" * 32,
}


@pytest.mark.parametrize("fmt", ["jpeg", "png", "gif", "webp"])
def test_detect_format_by_signature(fmt):
    assert detect_format(SIGNED[fmt]) == fmt


def test_detect_format_gif87a():
    assert detect_format(b"GIF87a" + b"\x00" * 8) == "gif"


def test_detect_format_rejects_riff_without_webp():
    assert detect_format(b"RIFF\x24\x00\x00\x00WAVEfmt ") is None


@pytest.mark.parametrize("fmt", ["jpeg", "png", "gif", "webp"])
def test_signed_input_is_admitted_regardless_of_name(fmt):
    v = ImageValidator(enable_security_scan=False)
    result = v.validate(SIGNED[fmt], "anything.bin")
    assert result.is_valid is True
    assert result.detected_format == fmt


def test_unsigned_input_rejected_even_with_image_extension():
    v = ImageValidator()
    result = v.validate(b"just some text, definitely not pixels", "photo.jpg")
    assert result.is_valid is False
    assert result.error_kind == ErrorKind.INVALID_INPUT
    assert "detect" in result.errors[0]


def test_jpeg_with_png_extension_validates_as_jpeg(jpeg_bytes):
    result = ImageValidator().validate(jpeg_bytes, "photo.png")
    assert result.is_valid is True
    assert result.detected_format == "jpeg"
    assert result.mime_type == "image/jpeg"


def test_empty_file_rejected():
    result = ImageValidator().validate(b"", "a.jpg")
    assert result.is_valid is False
    assert result.error_kind == ErrorKind.INVALID_INPUT


def test_oversize_file_rejected_before_format_check():
    v = ImageValidator(max_file_size=10)
    result = v.validate(b"x" * 11, "a.jpg")
    assert result.error_kind == ErrorKind.SIZE_EXCEEDED
    with pytest.raises(SizeExceededError):
        result.raise_if_invalid()


def test_format_not_in_allow_list(png_bytes):
    v = ImageValidator(allowed_formats=["jpeg"])
    result = v.validate(png_bytes, "a.png")
    assert result.is_valid is False
    assert result.detected_format == "png"
    assert "not allowed" in result.errors[0]


def test_script_injection_is_rejected():
    data = SIGNED["jpeg"] + b"<SCRIPT>alert(1)</script>"
    result = ImageValidator().validate(data, "a.jpg")
    assert result.is_valid is False
    assert result.error_kind == ErrorKind.SECURITY_REJECTED
    with pytest.raises(SecurityRejectedError):
        result.raise_if_invalid()


def test_event_handler_injection_is_rejected():
    data = SIGNED["gif"] + b' onerror = "x()"'
    assert ImageValidator().validate(data, "a.gif").error_kind == ErrorKind.SECURITY_REJECTED


def test_security_scan_can_be_disabled():
    data = SIGNED["jpeg"] + b"<script>"
    assert ImageValidator(enable_security_scan=False).validate(data, "a.jpg").is_valid is True


def test_polyglot_header_only_warns():
    scan = ImageValidator().scan_content(b"PK\x03\x04rest")
    assert scan.is_safe
    assert any("ZIP" in w for w in scan.warnings)


def test_large_exif_warns_but_admits():
    segment = b"\xff\xe1" + (0xFFFF).to_bytes(2, "big") + b"\x00" * (0xFFFF - 2)
    data = b"\xff\xd8" + segment + segment + b"\xff\xda\x00\x02"
    assert exif_segment_bytes(data) == 2 * 0xFFFF
    result = ImageValidator(enable_security_scan=True).validate(data, "a.jpg")
    assert result.is_valid is True
    assert any("EXIF" in w for w in result.warnings)


def test_sanitized_filename_produces_warning(jpeg_bytes):
    result = ImageValidator().validate(jpeg_bytes, "../../etc/passwd.jpg")
    assert result.is_valid is True
    assert result.sanitized_filename == sanitize_filename("../../etc/passwd.jpg")
    assert any("sanitized" in w for w in result.warnings)


@pytest.mark.parametrize("name", [
    "../../etc/passwd",
    "..\\..\\windows\\system32",
    "....//....//x.jpg",
    ".hidden",
    "...",
    "a:b*c?d\"e<f>g|h.png",
    " .. / .. ",
    "normal photo.jpg",
    "",
    "_",
    "\x00\x01name.gif",
    "." * 10 + "/" * 5 + "x",
])
def test_sanitize_is_idempotent_and_safe(name):
    once = sanitize_filename(name)
    assert sanitize_filename(once) == once
    assert "../" not in once
    assert not any(c in once for c in '/\\:*?"<>|')
    assert not once.startswith(".")
    assert once


def test_sanitize_empty_gets_fallback_name():
    assert sanitize_filename("") == "unnamed_file"
    assert sanitize_filename(None) == "unnamed_file"


def test_sanitize_truncates_and_keeps_extension():
    name = "é" * 300 + ".jpeg"
    cleaned = sanitize_filename(name)
    assert len(cleaned.encode("utf-8")) <= 255
    assert cleaned.endswith(".jpeg")


def test_legacy_payload_validation(jpeg_bytes):
    v = ImageValidator()
    assert v.validate_legacy_payload(make_data_url(jpeg_bytes)).is_valid is True

    bad = v.validate_legacy_payload("data:image/png;base64,@@@@")
    assert bad.is_valid is False
    assert bad.error_kind == ErrorKind.INVALID_INPUT

    not_legacy = v.validate_legacy_payload("/api/images/abc.webp")
    assert not_legacy.is_valid is False


def test_legacy_payload_with_mismatched_subtype_still_detects_content():
    png = make_image_bytes("PNG", (10, 10))
    result = ImageValidator().validate_legacy_payload(make_data_url(png, subtype="jpeg"))
    assert result.is_valid is True
    assert result.detected_format == "png"
