from dataclasses import dataclass
from typing import Tuple, Union

from fastapi import UploadFile

from ..exceptions import InvalidInputError


@dataclass(frozen=True)
class UploadedBlob:
    """A named upload as received by the HTTP layer."""
    upload: UploadFile


@dataclass(frozen=True)
class RawBytes:
    data: bytes
    filename: str = "upload"


ByteSource = Union[UploadedBlob, RawBytes]


def resolve_source(source: ByteSource) -> Tuple[bytes, str]:
    if isinstance(source, RawBytes):
        return bytes(source.data), source.filename or "upload"
    if isinstance(source, UploadedBlob):
        data = source.upload.file.read()
        source.upload.file.seek(0)
        return data, source.upload.filename or "upload"
    raise InvalidInputError(f"Unsupported byte source: {type(source).__name__}")


def source_name(source: ByteSource) -> str:
    if isinstance(source, RawBytes):
        return source.filename or "upload"
    if isinstance(source, UploadedBlob):
        return source.upload.filename or "upload"
    return "upload"
