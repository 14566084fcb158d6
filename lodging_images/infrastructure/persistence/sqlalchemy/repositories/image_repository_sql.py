from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from sqlmodel import Session, select
from sqlalchemy import or_

from .....db.models.media.image import ImageRecordRow
from .....application.ports.image_repo import ImageRecord, ImageRepository, ThumbnailInfo

_UPDATABLE = {
    "original_filename",
    "mime_type",
    "file_size",
    "width",
    "height",
    "primary_url",
    "fallback_url",
    "primary_format",
    "thumbnails",
    "uploaded_by",
}


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive values even for timezone-aware columns
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SqlImageRepository(ImageRepository):
    def __init__(self, session: Session):
        self.session = session

    def _to_dto(self, r: ImageRecordRow) -> ImageRecord:
        return ImageRecord(
            id=r.id,
            establishment_id=r.establishment_id,
            original_filename=r.original_filename,
            mime_type=r.mime_type,
            file_size=r.file_size,
            width=r.width,
            height=r.height,
            primary_url=r.primary_url,
            fallback_url=r.fallback_url,
            primary_format=r.primary_format,
            thumbnails={name: ThumbnailInfo(**info) for name, info in (r.thumbnails or {}).items()},
            uploaded_by=r.uploaded_by,
            created_at=_as_utc(r.created_at),
        )

    def _serialize_thumbnails(self, thumbnails: Dict[str, Any]) -> Dict[str, Any]:
        return {
            name: asdict(info) if isinstance(info, ThumbnailInfo) else dict(info)
            for name, info in thumbnails.items()
        }

    def create(self, record: ImageRecord) -> ImageRecord:
        row = ImageRecordRow(
            id=record.id,
            establishment_id=record.establishment_id,
            original_filename=record.original_filename,
            mime_type=record.mime_type,
            file_size=record.file_size,
            width=record.width,
            height=record.height,
            primary_url=record.primary_url,
            fallback_url=record.fallback_url,
            primary_format=record.primary_format,
            thumbnails=self._serialize_thumbnails(record.thumbnails),
            uploaded_by=record.uploaded_by,
            created_at=_as_utc(record.created_at),
        )
        try:
            self.session.add(row)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(row)
        return self._to_dto(row)

    def get_by_id(self, image_id: str) -> Optional[ImageRecord]:
        r = self.session.exec(select(ImageRecordRow).where(ImageRecordRow.id == image_id)).first()
        return self._to_dto(r) if r else None

    def get_by_url(self, url: str) -> Optional[ImageRecord]:
        r = self.session.exec(
            select(ImageRecordRow).where(
                or_(ImageRecordRow.primary_url == url, ImageRecordRow.fallback_url == url)
            )
        ).first()
        return self._to_dto(r) if r else None

    def list_by_establishment(self, establishment_id: str) -> List[ImageRecord]:
        rows = self.session.exec(
            select(ImageRecordRow)
            .where(ImageRecordRow.establishment_id == establishment_id)
            .order_by(ImageRecordRow.created_at.desc())
        ).all()
        return [self._to_dto(r) for r in rows]

    def list_by_uploader(self, uploaded_by: str) -> List[ImageRecord]:
        rows = self.session.exec(
            select(ImageRecordRow)
            .where(ImageRecordRow.uploaded_by == uploaded_by)
            .order_by(ImageRecordRow.created_at.desc())
        ).all()
        return [self._to_dto(r) for r in rows]

    def update(self, image_id: str, changes: Dict[str, Any]) -> Optional[ImageRecord]:
        r = self.session.exec(select(ImageRecordRow).where(ImageRecordRow.id == image_id)).first()
        if not r:
            return None
        for key, value in changes.items():
            if key not in _UPDATABLE:
                raise ValueError(f"Field {key} cannot be updated")
            if key == "thumbnails":
                value = self._serialize_thumbnails(value)
            setattr(r, key, value)
        try:
            self.session.add(r)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(r)
        return self._to_dto(r)

    def delete(self, image_id: str) -> bool:
        r = self.session.exec(select(ImageRecordRow).where(ImageRecordRow.id == image_id)).first()
        if not r:
            return False
        try:
            self.session.delete(r)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        return True
