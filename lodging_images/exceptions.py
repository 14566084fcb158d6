from enum import Enum
from typing import Any, Dict, Optional

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse


class ErrorKind(str, Enum):
    INVALID_INPUT = "InvalidInput"
    SECURITY_REJECTED = "SecurityRejected"
    SIZE_EXCEEDED = "SizeExceeded"
    DISK_SPACE_LOW = "DiskSpaceLow"
    CONVERSION_FAILED = "ConversionFailed"
    THUMBNAIL_FAILED = "ThumbnailFailed"
    STORAGE_FAILED = "StorageFailed"
    NOT_FOUND = "NotFound"
    VERIFICATION_FAILED = "VerificationFailed"


USER_MESSAGES: Dict[ErrorKind, str] = {
    ErrorKind.DISK_SPACE_LOW: "Upload failed: insufficient disk space. Please try again later.",
    ErrorKind.CONVERSION_FAILED: "Image processing failed. Please try a different image format.",
    ErrorKind.THUMBNAIL_FAILED: "Image processing failed while generating thumbnails.",
    ErrorKind.STORAGE_FAILED: "Failed to save image. Please try again.",
    ErrorKind.SECURITY_REJECTED: "The file was rejected by the security scan.",
}


class ImageError(Exception):
    """Base error for the image pipeline. Every instance carries a machine-checkable kind."""

    kind: ErrorKind = ErrorKind.INVALID_INPUT

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    @property
    def user_message(self) -> str:
        return USER_MESSAGES.get(self.kind, self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "message": self.message, "details": self.details}


class InvalidInputError(ImageError):
    kind = ErrorKind.INVALID_INPUT


class SecurityRejectedError(ImageError):
    kind = ErrorKind.SECURITY_REJECTED


class SizeExceededError(ImageError):
    kind = ErrorKind.SIZE_EXCEEDED


class DiskSpaceLowError(ImageError):
    kind = ErrorKind.DISK_SPACE_LOW


class ConversionFailedError(ImageError):
    kind = ErrorKind.CONVERSION_FAILED


class ThumbnailFailedError(ImageError):
    kind = ErrorKind.THUMBNAIL_FAILED


class StorageFailedError(ImageError):
    kind = ErrorKind.STORAGE_FAILED


class NotFoundError(ImageError):
    kind = ErrorKind.NOT_FOUND


class VerificationFailedError(ImageError):
    kind = ErrorKind.VERIFICATION_FAILED


ERROR_CLASSES = {cls.kind: cls for cls in (
    InvalidInputError,
    SecurityRejectedError,
    SizeExceededError,
    DiskSpaceLowError,
    ConversionFailedError,
    ThumbnailFailedError,
    StorageFailedError,
    NotFoundError,
    VerificationFailedError,
)}


def error_for_kind(kind: ErrorKind, message: str, details: Optional[Dict[str, Any]] = None) -> ImageError:
    return ERROR_CLASSES[kind](message, details)


# HTTP mapping used by the routers
STATUS_BY_KIND: Dict[ErrorKind, int] = {
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.SECURITY_REJECTED: 400,
    ErrorKind.SIZE_EXCEEDED: 413,
    ErrorKind.DISK_SPACE_LOW: 507,
    ErrorKind.CONVERSION_FAILED: 422,
    ErrorKind.THUMBNAIL_FAILED: 500,
    ErrorKind.STORAGE_FAILED: 500,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.VERIFICATION_FAILED: 500,
}


def create_error_response(error_message: str, status_code: int = 400, kind: Optional[str] = None) -> dict:
    """Create a standardized error response"""
    return {
        "success": False,
        "data": None,
        "error": error_message,
        "kind": kind,
    }

def create_success_response(data: Any) -> dict:
    """Create a standardized success response"""
    return {
        "success": True,
        "data": data,
        "error": None
    }

async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Custom exception handler for HTTPException"""
    return JSONResponse(
        status_code=exc.status_code,
        content=create_error_response(exc.detail, exc.status_code)
    )

async def image_error_handler(request: Request, exc: ImageError) -> JSONResponse:
    """Map pipeline errors to HTTP responses"""
    status_code = STATUS_BY_KIND.get(exc.kind, 500)
    return JSONResponse(
        status_code=status_code,
        content=create_error_response(exc.user_message, status_code, kind=exc.kind.value)
    )
